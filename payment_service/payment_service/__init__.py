"""Payment service: checkout orders, gateway verification and webhooks."""

__version__ = "0.1.0"
