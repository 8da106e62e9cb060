"""Celery worker.

Delivers fulfillment notifications for committed redemptions and runs the
credit expiry sweep. Nothing is scheduled implicitly: point celery beat (or
any scheduler) at ``rally_credits.expire_credits`` to enable the sweep.
"""

import asyncio
import logging

import httpx
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from rally_credits.core.config import settings
from rally_credits.core.logging_config import setup_logging
from rally_credits.services.expiry import CreditExpiry
from rally_credits.services.ledger import CreditLedger

logger = logging.getLogger(__name__)

celery_app = Celery(
    "rally_credits",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)


@celery_setup_logging.connect
def _configure_logging(**kwargs) -> None:
    setup_logging()


@celery_app.task(
    name="rally_credits.notify_fulfillment",
    bind=True,
    acks_late=True,
    autoretry_for=(httpx.HTTPError,),
    retry_backoff=True,
    retry_backoff_max=600,
    max_retries=10,
)
def notify_fulfillment(self, payload: dict) -> None:
    """POST a committed redemption to the fulfillment service."""
    logger.info(
        "Delivering redemption %s to fulfillment (attempt %d)", payload["request_id"], self.request.retries + 1
    )
    with httpx.Client(timeout=10.0) as client:
        resp = client.post(settings.fulfillment_webhook_url, json=payload)
        resp.raise_for_status()


async def _expire_all() -> dict:
    # Each task run gets its own event loop, so it gets its own engine too
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        sweep = await CreditExpiry(CreditLedger(session_factory=factory)).expire_all()
    finally:
        await engine.dispose()
    return {
        "accounts_checked": sweep.accounts_checked,
        "accounts_expired": sweep.accounts_expired,
        "credits_expired": sweep.credits_expired,
        "failures": sweep.failures,
    }


@celery_app.task(name="rally_credits.expire_credits")
def expire_credits() -> dict:
    """Expire credits older than RC_CREDIT_LIFETIME_DAYS across every account."""
    return asyncio.run(_expire_all())
