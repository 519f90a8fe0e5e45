"""
Celery application for the order notification consumers.

Run with ``celery -A orders_service.worker worker``.
"""

from typing import Any

from celery import Celery
from celery.signals import worker_process_init

from orders_service.core.config import get_settings
from orders_service.core.logging import configure_logging, get_logger

settings = get_settings()
logger = get_logger(__name__)

celery_app = Celery(
    "orders_service",
    broker=settings.celery_broker_url,
    include=["orders_service.services.orders.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_ignore_result=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
)


@worker_process_init.connect
def init_worker_process(**kwargs: Any) -> None:
    configure_logging()
    logger.info(
        "Order worker process initialized",
        environment=settings.environment,
    )
