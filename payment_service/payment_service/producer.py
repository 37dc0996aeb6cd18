"""Kafka producer for publishing payment events."""

from confluent_kafka import Producer
from logging_utils.config import get_component_logger

from .schemas import Order

logger = get_component_logger("payment-service", "kafka")

PAYMENT_COMPLETED_TOPIC = "payments.completed"
PAYMENT_FAILED_TOPIC = "payments.failed"


class PaymentEventProducer:
    """Kafka producer for publishing payment status changes.

    Messages are keyed by order id so that every event of an order lands on the
    same partition and is consumed in order.

    Attributes:
        _producer: The underlying Kafka producer instance.
    """

    def __init__(self, bootstrap_servers: str):
        """Initialize the Kafka producer with the given bootstrap servers.

        Args:
            bootstrap_servers (str): Comma-separated list of Kafka broker addresses.
        """
        self._producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "message.timeout.ms": 5000,
                "partitioner": "consistent_random",  # Same key → same partition
                "client.id": "payment-service",
            }
        )

    @property
    def producer(self):
        """Get the underlying Kafka producer instance.

        Returns:
            Producer: The Kafka producer instance.
        """
        return self._producer

    def _delivery_callback(self, err, msg):
        """Callback function for message delivery reports.

        Args:
            err: Error that occurred during message delivery, if any.
            msg: Message that was delivered or failed.
        """
        if err:
            logger.error(f"Payment event failed delivery to {msg.topic()}: {err}")
        else:
            logger.debug(f"Payment event delivered to {msg.topic()} [p:{msg.partition()}]")

    def publish_payment_completed(self, order: Order) -> None:
        """Publish an order whose payment was completed."""
        self._publish(PAYMENT_COMPLETED_TOPIC, order)

    def publish_payment_failed(self, order: Order) -> None:
        """Publish an order whose payment failed."""
        self._publish(PAYMENT_FAILED_TOPIC, order)

    def _publish(self, topic: str, order: Order) -> None:
        """Publish an order to a topic.

        Publishing is best effort: errors are logged and never raised, since the
        status transition has already been committed.

        Args:
            topic (str): Kafka topic
            order (Order): The order to publish
        """
        try:
            self._producer.produce(
                topic=topic,
                key=order.id.encode("utf-8"),
                value=order.model_dump_json(by_alias=True, exclude={"gateway_signature"}),
                on_delivery=self._delivery_callback,
            )
            self._producer.poll(0)  # Trigger delivery callbacks
        except BufferError:
            logger.error(f"Producer buffer full, dropped {topic} for order {order.id}; flushing...")
            self._producer.flush()
        except Exception as e:
            logger.error(f"Failed to publish {topic} for order {order.id}: {e}")

    def close(self, timeout: float = 10.0) -> None:
        """Wait for pending messages to be delivered."""
        remaining = self._producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} payment events still pending delivery")
        logger.info("Producer closed")
