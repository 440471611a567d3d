"""Operational API for the classification/routing workers: health, worker status, queues, activity."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from redis.exceptions import RedisError

from ticketai import config
from ticketai.activity import get_recent as activity_get_recent, start_redis_subscriber
from ticketai.broker import RedisJobQueue, get_redis
from ticketai.worker import WORKER_STATUS_PREFIX

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_redis_subscriber()
    yield


app = FastAPI(
    title="TicketAI Workers",
    description="Health and status of the ticket classification and routing workers.",
    version="0.3.0",
    lifespan=lifespan,
)


def read_worker_statuses() -> list[dict]:
    """All worker status hashes written by running workers."""
    r = get_redis()
    statuses = []
    for key in sorted(r.scan_iter(match=f"{WORKER_STATUS_PREFIX}*")):
        raw = r.hgetall(key)
        if raw:
            statuses.append(raw)
    return statuses


def queue_lengths() -> dict[str, int]:
    queue = RedisJobQueue()
    return {
        name: queue.length(name)
        for name in (config.CLASSIFICATION_QUEUE, config.CLASSIFICATION_RETRY_QUEUE, config.ROUTING_QUEUE)
    }


@app.get("/health")
def health() -> dict:
    """'degraded' when any worker reports a permanent classification-service error."""
    out = {"status": "ok"}
    try:
        workers = read_worker_statuses()
    except RedisError as e:
        logger.warning("Health check could not reach Redis: %s", e)
        return {"status": "degraded", "error": f"redis unavailable: {e}"}
    out["workers"] = [
        {"name": w.get("name", ""), "state": w.get("state", ""), "last_permanent_error": w.get("last_permanent_error", "")}
        for w in workers
    ]
    if any(w.get("last_permanent_error") for w in workers):
        out["status"] = "degraded"
    return out


@app.get("/workers")
def workers() -> dict:
    return {"workers": read_worker_statuses()}


@app.get("/queues")
def queues() -> dict:
    """Pending jobs per queue."""
    return {"queues": queue_lengths()}


@app.get("/activity")
def get_activity(limit: int = 100, type: Optional[str] = None, tenant: Optional[str] = None) -> dict:
    """Return recent worker activity events (classified, failed, retry queued, routed)."""
    if limit < 1 or limit > 200:
        limit = 100
    return {"events": activity_get_recent(limit=limit, event_type=type, tenant_id=tenant)}
