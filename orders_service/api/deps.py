"""
FastAPI dependencies for database sessions, event publishing and services.

This module provides the request-scoped dependencies used by the order
endpoints and the shared rate limiter.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from orders_service.core.logging import get_logger
from orders_service.database.connection import get_db
from orders_service.messaging.emitter import EventEmitter
from orders_service.services.orders.service import OrderService

logger = get_logger(__name__)

limiter = Limiter(key_func=get_remote_address)


def get_event_emitter(request: Request) -> EventEmitter:
    """
    Get the application event emitter created during startup.

    Raises:
        HTTPException: 503 if the emitter is not available
    """
    emitter = getattr(request.app.state, "event_emitter", None)
    if emitter is None:
        logger.error("Event emitter not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready",
        )
    return emitter


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Emitter = Annotated[EventEmitter, Depends(get_event_emitter)]


def get_order_service(db: DatabaseSession, emitter: Emitter) -> OrderService:
    """Create an order service bound to the request session."""
    return OrderService(db, emitter)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
