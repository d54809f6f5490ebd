"""Payment Service API with event bus integration and PostgreSQL."""

from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.errors import ServiceError
from core.logger import setup_service_logger
from core.nats_client import create_event_bus

from .factory import create_payment_service
from .models import (
    PaymentCancelRequest, PaymentCreateRequest, PaymentFailRequest, PaymentStatusHistory,
    PaymentTransaction, Refund, RefundCreateRequest, RefundProcessRequest,
)
from .payment_service import PaymentService
from .routes_registry import SERVICE_METADATA, get_route_summary

settings = get_settings()
logger = setup_service_logger("payment_service", config=settings.logging)

event_bus = None
payment_service: Optional[PaymentService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global event_bus, payment_service

    event_bus = await create_event_bus("payment_service", settings)
    logger.info("Event bus initialized successfully")

    payment_service = await create_payment_service(settings, event_bus=event_bus)
    logger.info("Payment repository initialized with PostgreSQL")

    from .events.handlers import get_event_handlers
    handler_map = get_event_handlers(payment_service)
    for (topic, model), handler_func in handler_map.items():
        event_bus.subscribe(topic, model, handler_func)
    await event_bus.start()
    logger.info(f"Event handlers registered successfully - Subscribed to {len(handler_map)} event types")

    payment_service.outbox.start()
    logger.info("Payment Service started")

    yield

    await payment_service.outbox.stop()
    await event_bus.close()
    logger.info("Event bus closed")
    await payment_service.repository.db.close()

    logger.info("Payment Service shutting down...")


app = FastAPI(title="payment_service", version=SERVICE_METADATA["version"], lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if not exc.kind.is_caller_error:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_payment_service() -> PaymentService:
    if payment_service is None:
        raise HTTPException(status_code=503, detail="Payment service not initialized")
    return payment_service


@app.get("/api/v1/payments/health")
@app.get("/health")
async def health():
    return {"status": "ok", "service": "payment_service", **get_route_summary()}


# Transactions

@app.post("/api/v1/payments", response_model=PaymentTransaction, status_code=201)
async def create_payment(
    request: PaymentCreateRequest,
    x_user_id: str = Header(...),
    svc: PaymentService = Depends(get_payment_service),
):
    return await svc.create_payment(
        order_id=request.order_id,
        user_id=x_user_id,
        amount=request.amount,
        currency=request.currency,
        payment_method_id=request.payment_method_id,
    )


@app.get("/api/v1/payments", response_model=List[PaymentTransaction])
async def list_payments(
    order_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    x_user_id: str = Header(...),
    svc: PaymentService = Depends(get_payment_service),
):
    if order_id:
        return await svc.list_order_payments(order_id)
    return await svc.list_user_payments(x_user_id, limit)


# Refund routes are declared before /{transaction_id} so "refunds" is not read as an id

@app.post("/api/v1/payments/refunds", response_model=Refund, status_code=201)
async def create_refund(
    request: RefundCreateRequest,
    x_user_id: Optional[str] = Header(None),
    svc: PaymentService = Depends(get_payment_service),
):
    return await svc.create_refund(request, requested_by=x_user_id)


@app.get("/api/v1/payments/refunds/{refund_id}", response_model=Refund)
async def get_refund(refund_id: str, svc: PaymentService = Depends(get_payment_service)):
    return await svc.get_refund(refund_id)


@app.post("/api/v1/payments/refunds/{refund_id}/process", response_model=Refund)
async def process_refund(
    refund_id: str, request: RefundProcessRequest, svc: PaymentService = Depends(get_payment_service)
):
    return await svc.process_refund(
        refund_id,
        success=request.success,
        external_refund_id=request.external_refund_id,
        failure_reason=request.failure_reason,
    )


@app.get("/api/v1/payments/{transaction_id}", response_model=PaymentTransaction)
async def get_payment(transaction_id: str, svc: PaymentService = Depends(get_payment_service)):
    return await svc.get_payment(transaction_id)


@app.get("/api/v1/payments/{transaction_id}/history", response_model=List[PaymentStatusHistory])
async def get_status_history(transaction_id: str, svc: PaymentService = Depends(get_payment_service)):
    return await svc.get_status_history(transaction_id)


@app.get("/api/v1/payments/{transaction_id}/refunds", response_model=List[Refund])
async def list_refunds(transaction_id: str, svc: PaymentService = Depends(get_payment_service)):
    return await svc.list_refunds(transaction_id)


@app.post("/api/v1/payments/{transaction_id}/authorize", response_model=PaymentTransaction)
async def authorize_payment(
    transaction_id: str,
    transaction_reference: Optional[str] = None,
    svc: PaymentService = Depends(get_payment_service),
):
    return await svc.authorize_payment(transaction_id, transaction_reference)


@app.post("/api/v1/payments/{transaction_id}/capture", response_model=PaymentTransaction)
async def capture_payment(transaction_id: str, svc: PaymentService = Depends(get_payment_service)):
    return await svc.capture_payment(transaction_id)


@app.post("/api/v1/payments/{transaction_id}/fail", response_model=PaymentTransaction)
async def fail_payment(
    transaction_id: str, request: PaymentFailRequest, svc: PaymentService = Depends(get_payment_service)
):
    return await svc.fail_payment(transaction_id, request.reason, request.can_retry)


@app.post("/api/v1/payments/{transaction_id}/cancel", response_model=PaymentTransaction)
async def cancel_payment(
    transaction_id: str, request: PaymentCancelRequest, svc: PaymentService = Depends(get_payment_service)
):
    return await svc.cancel_payment(transaction_id, request.reason)


if __name__ == "__main__":
    uvicorn.run(
        "microservices.payment_service.main:app",
        host="0.0.0.0",
        port=settings.services.payment_port,
    )
