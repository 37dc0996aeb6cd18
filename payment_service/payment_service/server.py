"""FastAPI server implementation for the Payment Service."""

from contextlib import asynccontextmanager

from confluent_kafka.admin import AdminClient
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .auth import SessionAuthGuard
from .config import PaymentSettings
from .exceptions import GatewayUnavailableError, PaymentServiceError
from .gateway import GatewayClient, PaymentGateway
from .lifecycle import OrderLifecycleManager
from .logger import logger
from .producer import PaymentEventProducer
from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    CreateUpiPaymentRequest,
    Order,
    PaymentDetails,
    PaymentStatusResponse,
    UpiPaymentResponse,
    User,
    VerificationResult,
    VerifyPaymentRequest,
    VerifyUpiRequest,
)
from .store import InMemoryOrderStore, OrderStore
from .webhook import WebhookHandler

WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"


class PaymentState:
    """Class to manage payment service state."""

    def __init__(self):
        """Initialize payment state from the environment."""
        self.configure(PaymentSettings.from_env())

    def configure(
        self,
        settings: PaymentSettings,
        store: OrderStore | None = None,
        gateway: PaymentGateway | None = None,
        events: PaymentEventProducer | None = None,
    ) -> None:
        """Wire the components from explicit settings and collaborators.

        Args:
            settings: Service settings
            store: Order store, in-memory by default
            gateway: Gateway client, the REST client by default
            events: Optional payment event producer
        """
        self.settings = settings
        self.auth = SessionAuthGuard.from_settings(settings)
        self.store = store or InMemoryOrderStore()
        self.gateway = gateway or GatewayClient(settings)
        self.events = events
        self.manager = OrderLifecycleManager(settings, self.store, self.gateway, events)
        self.webhooks = WebhookHandler(settings, self.manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    if state.settings.kafka_bootstrap_servers:
        events = PaymentEventProducer(state.settings.kafka_bootstrap_servers)
        state.configure(state.settings, state.store, state.gateway, events)
        logger.info(f"Publishing payment events to {state.settings.kafka_bootstrap_servers}")
    else:
        logger.info("No Kafka bootstrap servers configured, payment events disabled")

    yield

    logger.info("Shutting down payment service...")
    if state.events:
        state.events.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Payment Service", lifespan=lifespan)
router = APIRouter(prefix="/payment")
state = PaymentState()


def current_user(request: Request) -> User:
    """Resolve the authenticated user of a request."""
    return state.auth.resolve_request(request)


@app.exception_handler(PaymentServiceError)
async def payment_error_handler(request: Request, exc: PaymentServiceError):
    """Map service errors to JSON responses."""
    content = {"success": False, "message": exc.message}
    if exc.retryable:
        content["retryable"] = True
    if isinstance(exc, GatewayUnavailableError) and exc.order_id:
        content["orderId"] = exc.order_id
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def readiness_check():
    """Check if the service is ready to handle requests.

    Returns:
        dict: Service readiness status and Kafka connection status.
    """
    if not state.settings.kafka_bootstrap_servers:
        return {"status": "ready", "kafka": "disabled"}
    kafka_ok = _check_kafka_connection(state.settings.kafka_bootstrap_servers)
    return {"status": "ready" if kafka_ok else "not ready", "kafka": "connected" if kafka_ok else "disconnected"}


@router.post("/create-order", response_model=CreateOrderResponse)
async def create_order(body: CreateOrderRequest, user: User = Depends(current_user)):
    """Create a pending order and its gateway order.

    Args:
        body (CreateOrderRequest): Cart items and shipping address.

    Returns:
        CreateOrderResponse: Ids, amount in minor units, currency and public key id.
    """
    return await state.manager.create_order(body.items, body.shipping_address, user)


@router.post("/verify-payment")
async def verify_payment(body: VerifyPaymentRequest, user: User = Depends(current_user)):
    """Verify a card payment with the gateway-issued identifiers and signature.

    Returns:
        dict: The verified order, or a 400 verification-failure message.
    """
    result = await state.manager.verify_payment(
        body.order_id, body.gateway_order_id, body.gateway_payment_id, body.signature, user
    )
    return _verification_response(result)


@router.post("/create-upi-payment", response_model=UpiPaymentResponse)
async def create_upi_payment(body: CreateUpiPaymentRequest, user: User = Depends(current_user)):
    """Create a pending UPI order and the deep link for the payer's UPI app."""
    return await state.manager.create_upi_payment(body.items, body.shipping_address, body.upi_vpa, user)


@router.post("/verify-upi/{order_id}")
async def verify_upi_payment(order_id: str, body: VerifyUpiRequest, user: User = Depends(current_user)):
    """Verify a UPI payment against the gateway's payment record."""
    result = await state.manager.verify_upi_payment(
        order_id, body.payment_id, body.gateway_order_id, body.signature, user
    )
    return _verification_response(result)


@router.post("/retry/{order_id}", response_model=CreateOrderResponse)
async def retry_gateway_order(order_id: str, user: User = Depends(current_user)):
    """Open the gateway order again for a pending order left without one."""
    return await state.manager.retry_gateway_order(order_id, user)


@router.get("/status/{order_id}", response_model=PaymentStatusResponse)
async def get_payment_status(order_id: str, user: User = Depends(current_user)):
    """Get the payment status of one of the user's orders.

    Args:
        order_id: The order to look up

    Returns:
        PaymentStatusResponse: Payment status, method, order status and total.
    """
    return await state.manager.get_payment_status(order_id, user)


@router.get("/details/{payment_id}", response_model=PaymentDetails)
async def get_payment_details(payment_id: str, user: User = Depends(current_user)):
    """Get the gateway's record of a payment made for one of the user's orders."""
    return await state.manager.get_payment_details(payment_id, user)


@router.get("/orders", response_model=list[Order])
async def list_orders(user: User = Depends(current_user)):
    """List the user's orders, newest first."""
    return await state.manager.list_orders(user)


@router.post("/webhook")
async def payment_webhook(request: Request):
    """Receive a gateway webhook delivery.

    Authenticity rests on the signature header over the raw body, so the body is
    read as bytes and never re-serialized before verification.
    """
    raw_body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
    try:
        return await state.webhooks.handle(raw_body, signature)
    except PaymentServiceError:
        raise
    except Exception as e:
        logger.exception(f"Webhook handler failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})


def _verification_response(result: VerificationResult) -> JSONResponse:
    content = jsonable_encoder(result, by_alias=True, exclude_none=True)
    return JSONResponse(status_code=200 if result.success else 400, content=content)


def _check_kafka_connection(bootstrap_servers: str) -> bool:
    """Check if Kafka connection is available.

    Returns:
        bool: True if Kafka is accessible, False otherwise.
    """
    try:
        admin = AdminClient({"bootstrap.servers": bootstrap_servers})
        return bool(admin.list_topics(timeout=5))
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
        return False


app.include_router(router)
logger.info("API router mounted.")
