"""Order Service API with event bus integration, outbox dispatch and PostgreSQL."""

from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.errors import ServiceError
from core.logger import setup_service_logger
from core.nats_client import create_event_bus

from .factory import create_order_service
from .models import (
    Cart, CartCreateRequest, Order, OrderCancelRequest, OrderCreateRequest, OrderEvent,
    OrderStatusHistory, OrderStatusUpdateRequest,
)
from .order_service import OrderService
from .routes_registry import SERVICE_METADATA, get_route_summary

settings = get_settings()
logger = setup_service_logger("order_service", config=settings.logging)

event_bus = None
order_service: Optional[OrderService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global event_bus, order_service

    event_bus = await create_event_bus("order_service", settings)
    logger.info("Event bus initialized successfully")

    order_service = await create_order_service(settings, event_bus=event_bus)
    logger.info("Order repository initialized with PostgreSQL")

    from .events.handlers import get_event_handlers
    handler_map = get_event_handlers(order_service)
    for (topic, model), handler_func in handler_map.items():
        event_bus.subscribe(topic, model, handler_func)
    await event_bus.start()
    logger.info(f"Event handlers registered successfully - Subscribed to {len(handler_map)} event types")

    # Publishes order_events left pending by a failed post-commit dispatch
    order_service.outbox.start()
    logger.info("Order Service started")

    yield

    await order_service.outbox.stop()
    await event_bus.close()
    logger.info("Event bus closed")
    await order_service.inventory_client.close()
    await order_service.repository.db.close()

    logger.info("Order Service shutting down...")


app = FastAPI(title="order_service", version=SERVICE_METADATA["version"], lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if not exc.kind.is_caller_error:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_order_service() -> OrderService:
    if order_service is None:
        raise HTTPException(status_code=503, detail="Order service not initialized")
    return order_service


@app.get("/api/v1/orders/health")
@app.get("/health")
async def health():
    return {"status": "ok", "service": "order_service", **get_route_summary()}


# Carts

@app.post("/api/v1/orders/carts", response_model=Cart, status_code=201)
async def create_cart(
    request: CartCreateRequest,
    x_user_id: str = Header(...),
    svc: OrderService = Depends(get_order_service),
):
    return await svc.create_cart(x_user_id, request.items)


@app.get("/api/v1/orders/carts/{cart_id}", response_model=Cart)
async def get_cart(cart_id: str, x_user_id: str = Header(...), svc: OrderService = Depends(get_order_service)):
    return await svc.get_cart(cart_id, x_user_id)


# Orders

@app.post("/api/v1/orders", response_model=Order, status_code=201)
async def create_order(
    request: OrderCreateRequest,
    x_user_id: str = Header(...),
    svc: OrderService = Depends(get_order_service),
):
    return await svc.create_order(request.cart_id, x_user_id, request.shipping_address)


@app.get("/api/v1/orders", response_model=List[Order])
async def list_orders(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    x_user_id: str = Header(...),
    svc: OrderService = Depends(get_order_service),
):
    return await svc.list_user_orders(x_user_id, limit, offset)


@app.get("/api/v1/orders/{order_id}", response_model=Order)
async def get_order(order_id: str, svc: OrderService = Depends(get_order_service)):
    return await svc.get_order(order_id)


@app.get("/api/v1/orders/{order_id}/history", response_model=List[OrderStatusHistory])
async def get_status_history(order_id: str, svc: OrderService = Depends(get_order_service)):
    return await svc.get_status_history(order_id)


@app.get("/api/v1/orders/{order_id}/events", response_model=List[OrderEvent])
async def get_order_events(order_id: str, svc: OrderService = Depends(get_order_service)):
    return await svc.get_order_events(order_id)


@app.put("/api/v1/orders/{order_id}/status", response_model=Order)
async def update_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    x_user_id: Optional[str] = Header(None),
    svc: OrderService = Depends(get_order_service),
):
    return await svc.update_status(order_id, request.status, request.comment, changed_by=x_user_id)


@app.post("/api/v1/orders/{order_id}/cancel", response_model=Order)
async def cancel_order(
    order_id: str,
    request: OrderCancelRequest,
    x_user_id: Optional[str] = Header(None),
    svc: OrderService = Depends(get_order_service),
):
    return await svc.cancel_order(order_id, request.reason, changed_by=x_user_id)


if __name__ == "__main__":
    uvicorn.run(
        "microservices.order_service.main:app",
        host="0.0.0.0",
        port=settings.services.order_port,
    )
