"""Inventory Service API with event bus integration and PostgreSQL."""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.errors import ServiceError
from core.logger import setup_service_logger
from core.nats_client import create_event_bus

from .factory import InventoryServices, create_inventory_services
from .models import (
    AlertResolveRequest, InventoryAlert, InventoryChange, ProductCreateRequest,
    Reservation, ReservationConfirmRequest, ReservationCreateRequest,
    ReservationStatus, RollbackRequest, StockAdjustRequest,
)
from .routes_registry import SERVICE_METADATA, get_route_summary

settings = get_settings()
logger = setup_service_logger("inventory_service", config=settings.logging)

event_bus = None
services: Optional[InventoryServices] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global event_bus, services

    event_bus = await create_event_bus("inventory_service", settings)
    logger.info("Event bus initialized successfully")

    services = await create_inventory_services(settings, event_bus=event_bus)
    logger.info("Inventory repository initialized with PostgreSQL")

    from .events.handlers import get_event_handlers
    handler_map = get_event_handlers(services.inventory)
    for (topic, model), handler_func in handler_map.items():
        event_bus.subscribe(topic, model, handler_func)
    await event_bus.start()
    logger.info(f"Event handlers registered successfully - Subscribed to {len(handler_map)} event types")

    services.reservations.start_sweeper(settings.services.reservation_sweep_interval_seconds)
    services.alerts.start_monitor(settings.services.alert_notify_interval_seconds)

    logger.info("Inventory Service started")

    yield

    await services.reservations.stop_sweeper()
    await services.alerts.stop_monitor()
    await event_bus.close()
    logger.info("Event bus closed")
    await services.repository.db.close()

    logger.info("Inventory Service shutting down...")


app = FastAPI(title="inventory_service", version=SERVICE_METADATA["version"], lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if not exc.kind.is_caller_error:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_services() -> InventoryServices:
    if services is None:
        raise HTTPException(status_code=503, detail="Inventory service not initialized")
    return services


@app.get("/api/v1/inventory/health")
@app.get("/health")
async def health():
    return {"status": "ok", "service": "inventory_service", **get_route_summary()}


# Products and stock

@app.post("/api/v1/inventory/products", status_code=201)
async def register_product(request: ProductCreateRequest, svc: InventoryServices = Depends(get_services)):
    product = await svc.inventory.register_product(request)
    return {"product": product, "stock": await svc.inventory.list_stock(product.product_id)}


@app.get("/api/v1/inventory/products/{product_id}")
async def get_product(product_id: str, svc: InventoryServices = Depends(get_services)):
    product = await svc.inventory.get_product(product_id)
    return {"product": product, "stock": await svc.inventory.list_stock(product_id)}


@app.post("/api/v1/inventory/products/{product_id}/adjust")
async def adjust_stock(
    product_id: str,
    request: StockAdjustRequest,
    x_user_id: Optional[str] = Header(None),
    svc: InventoryServices = Depends(get_services),
):
    new_quantity, new_reserved = await svc.inventory.adjust_stock(
        product_id=product_id,
        variant_id=request.variant_id,
        delta=request.delta,
        change_type=request.change_type,
        reason=request.reason,
        reference_id=request.reference_id,
        user_id=x_user_id,
    )
    return {
        "product_id": product_id,
        "variant_id": request.variant_id,
        "quantity": new_quantity,
        "reserved": new_reserved,
        "available": new_quantity - new_reserved,
    }


@app.get("/api/v1/inventory/products/{product_id}/changes", response_model=List[InventoryChange])
async def get_inventory_changes(
    product_id: str,
    variant_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    svc: InventoryServices = Depends(get_services),
):
    return await svc.inventory.get_inventory_changes(product_id, variant_id, limit)


@app.post("/api/v1/inventory/rollback")
async def rollback_inventory(
    request: RollbackRequest,
    x_user_id: Optional[str] = Header(None),
    svc: InventoryServices = Depends(get_services),
):
    outcomes = await svc.inventory.rollback_inventory(
        reference_id=request.reference_id, items=request.items, reason=request.reason, user_id=x_user_id
    )
    return {
        "reference_id": request.reference_id,
        "applied": sum(1 for o in outcomes if o.applied),
        "stock": [o.stock for o in outcomes],
    }


# Reservations

@app.post("/api/v1/inventory/reservations", response_model=Reservation, status_code=201)
async def create_reservation(
    request: ReservationCreateRequest,
    x_user_id: Optional[str] = Header(None),
    svc: InventoryServices = Depends(get_services),
):
    return await svc.reservations.create_reservation_for_items(
        request.items, session_id=request.session_id, user_id=x_user_id, ttl_minutes=request.ttl_minutes
    )


@app.get("/api/v1/inventory/reservations", response_model=List[Reservation])
async def list_reservations(
    owner_id: str,
    status: Optional[ReservationStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    svc: InventoryServices = Depends(get_services),
):
    return await svc.reservations.list_reservations(owner_id, status, limit)


@app.post("/api/v1/inventory/reservations/expire-overdue")
async def expire_overdue_reservations(
    limit: int = Query(100, ge=1, le=1000), svc: InventoryServices = Depends(get_services)
):
    return {"expired": await svc.reservations.expire_overdue_reservations(limit)}


@app.get("/api/v1/inventory/reservations/{reservation_id}", response_model=Reservation)
async def get_reservation(reservation_id: str, svc: InventoryServices = Depends(get_services)):
    return await svc.reservations.get_reservation(reservation_id)


@app.post("/api/v1/inventory/reservations/{reservation_id}/confirm", response_model=Reservation)
async def confirm_reservation(
    reservation_id: str, request: ReservationConfirmRequest, svc: InventoryServices = Depends(get_services)
):
    return await svc.reservations.confirm_reservation(reservation_id, request.reference_id)


@app.post("/api/v1/inventory/reservations/{reservation_id}/cancel", response_model=Reservation)
async def cancel_reservation(reservation_id: str, svc: InventoryServices = Depends(get_services)):
    return await svc.reservations.cancel_reservation(reservation_id)


# Alerts

@app.get("/api/v1/inventory/alerts", response_model=List[InventoryAlert])
async def list_alerts(
    product_id: Optional[str] = None,
    include_resolved: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    svc: InventoryServices = Depends(get_services),
):
    if product_id:
        return await svc.alerts.get_alerts_by_product(product_id, include_resolved)
    return await svc.alerts.list_active_alerts(page, page_size)


@app.post("/api/v1/inventory/alerts/{alert_id}/resolve", response_model=InventoryAlert)
async def resolve_alert(
    alert_id: str,
    request: AlertResolveRequest,
    x_user_id: str = Header(...),
    svc: InventoryServices = Depends(get_services),
):
    return await svc.alerts.resolve_alert(alert_id, x_user_id, request.notes)


@app.post("/api/v1/inventory/alerts/{alert_id}/ignore", response_model=InventoryAlert)
async def ignore_alert(
    alert_id: str,
    request: AlertResolveRequest,
    x_user_id: str = Header(...),
    svc: InventoryServices = Depends(get_services),
):
    return await svc.alerts.ignore_alert(alert_id, x_user_id, request.notes)


@app.post("/api/v1/inventory/alerts/{alert_id}/notify", response_model=InventoryAlert)
async def notify_alert(alert_id: str, svc: InventoryServices = Depends(get_services)):
    return await svc.alerts.mark_notified(alert_id)


@app.post("/api/v1/inventory/alerts/notify-pending")
async def notify_pending_alerts(svc: InventoryServices = Depends(get_services)):
    return {"notified": await svc.alerts.notify_pending_alerts()}


if __name__ == "__main__":
    uvicorn.run(
        "microservices.inventory_service.main:app",
        host="0.0.0.0",
        port=settings.services.inventory_port,
    )
