from __future__ import annotations

import logging

from celery import Celery, states
from celery.signals import task_postrun

from advisory_api.core.config import settings


logger = logging.getLogger(__name__)

BROKER_CONFIGURED = bool(settings.OTP_QUEUE_BROKER_URL)

JOB_HISTORY_KEY = "advisory-otp:job-history:{state}"

celery_app = Celery("advisory-otp", include=["advisory_api.tasks.otp_delivery"])

if BROKER_CONFIGURED:
    broker_url = settings.OTP_QUEUE_BROKER_URL
else:
    broker_url = "memory://"
    logger.warning("OTP_QUEUE_BROKER_URL is not configured; OTP delivery will run inline.")

celery_app.conf.update(
    broker_url=broker_url,
    result_backend=settings.OTP_QUEUE_RESULT_BACKEND or None,
    # Job history is kept for a bounded time, never indefinitely. See record_job_outcome for the count cap.
    result_expires=settings.OTP_JOB_RESULT_EXPIRES_SECONDS,
    task_default_queue=settings.OTP_QUEUE_NAME,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    # A failed publish must surface to the caller right away so the OTP can be invalidated.
    task_publish_retry=False,
    broker_connection_retry_on_startup=True,
    timezone="UTC",
    enable_utc=True,
)


def enqueue(task, *args, **kwargs):
    """
    Convenience helper so the API can enqueue tasks without caring
    whether the broker is configured. In tests/local dev we execute tasks inline.
    """
    if BROKER_CONFIGURED:
        return task.apply_async(args=args, kwargs=kwargs, queue=settings.OTP_QUEUE_NAME)
    logger.info("Celery broker not configured; running %s synchronously", task.name)
    return task.apply(args=args, kwargs=kwargs)


def record_job_outcome(task_id: str, state: str, *, backend=None, limit: int | None = None) -> list[str]:
    """
    Keep at most `limit` finished OTP job results per final state.

    Ids are pushed onto a capped Redis list next to the results; results that fall off
    the end are forgotten right away instead of waiting for result_expires. Backends
    without a Redis client (including the disabled backend) keep no history to trim.
    """
    backend = backend if backend is not None else celery_app.backend
    client = getattr(backend, "client", None)
    if client is None or state not in (states.SUCCESS, states.FAILURE):
        return []

    limit = max(int(limit if limit is not None else settings.OTP_JOB_HISTORY_MAX), 1)
    key = JOB_HISTORY_KEY.format(state=state.lower())
    client.lpush(key, task_id)
    evicted = [v.decode() if isinstance(v, bytes) else v for v in client.lrange(key, limit, -1)]
    client.ltrim(key, 0, limit - 1)
    for old_id in evicted:
        backend.forget(old_id)
    if evicted:
        logger.debug("Trimmed %s old %s OTP job result(s)", len(evicted), state)
    return evicted


@task_postrun.connect
def _trim_job_history(sender=None, task_id=None, state=None, **kwargs):
    if sender is not None and str(getattr(sender, "name", "")).startswith("otp."):
        record_job_outcome(task_id, state)
