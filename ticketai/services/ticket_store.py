"""
Ticket store: live ticket records plus classification audit and routing history.

Redis layout:
  ticket:{id}                  hash, one JSON-encoded value per ticket field
  ticket:{id}:classifications  hash, result fingerprint -> audit record
  ticket:{id}:history          list of routing history entries
  lock:ticket:{id}             per-ticket lock for read-decide-write sequences

Writes are field-level (HSET), so concurrent writers are last-write-wins per field.
"""

import hashlib
import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol

from redis.exceptions import LockError

from ticketai.broker import get_redis, redis_errors
from ticketai.config import TICKET_LOCK_TIMEOUT_SECONDS
from ticketai.errors import ServiceErrorKind, TicketNotFoundError, TransientServiceError
from ticketai.models import ClassificationResult, RoutingDecision, Ticket

logger = logging.getLogger(__name__)


def _ticket_key(ticket_id: str) -> str:
    return f"ticket:{ticket_id}"


def _audit_key(ticket_id: str) -> str:
    return f"ticket:{ticket_id}:classifications"


def _history_key(ticket_id: str) -> str:
    return f"ticket:{ticket_id}:history"


def classification_fingerprint(result: ClassificationResult) -> str:
    """Content hash of a result, ignoring timing, so a re-applied result is recognized."""
    payload = result.model_dump_json(exclude={"processing_time_ms"})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def classification_projection(result: ClassificationResult) -> dict[str, Any]:
    """Live ticket fields derived from a classification."""
    return {
        "category": result.category.value,
        "priority": result.priority.value,
        "sentiment": result.sentiment.label.value,
        "sentiment_score": result.sentiment.score,
        "ai_confidence": result.overall_confidence,
        "ai_processed": True,
    }


def merge_tags(current: list[str], added) -> list[str]:
    """Union preserving first-seen order."""
    merged = list(current)
    for tag in added:
        if tag not in merged:
            merged.append(tag)
    return merged


def routing_projection(ticket: Ticket, decision: RoutingDecision) -> dict[str, Any]:
    """Ticket fields to write for a decision; unset decision fields leave the ticket alone."""
    update: dict[str, Any] = {}
    if decision.assign_to_user:
        update["assigned_to"] = decision.assign_to_user
    if decision.assign_to_team:
        update["assigned_team"] = decision.assign_to_team
    if decision.set_priority:
        update["priority"] = decision.set_priority
    if decision.add_tags:
        update["tags"] = merge_tags(ticket.tags, decision.add_tags)
    return update


class TicketStore(Protocol):
    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        ...

    def update_classification(self, ticket_id: str, result: ClassificationResult) -> None:
        ...

    def update_routing(self, ticket_id: str, decision: RoutingDecision) -> None:
        ...

    def ticket_lock(self, ticket_id: str):
        ...


class RedisTicketStore:
    def __init__(self, client=None, lock_timeout: float = TICKET_LOCK_TIMEOUT_SECONDS):
        self._client = client
        self.lock_timeout = lock_timeout

    @property
    def r(self):
        return self._client if self._client is not None else get_redis()

    def create_ticket(self, ticket: Ticket) -> None:
        fields = {k: json.dumps(v) for k, v in ticket.model_dump(mode="json").items() if v is not None}
        with redis_errors("create ticket"):
            self.r.hset(_ticket_key(ticket.ticket_id), mapping=fields)

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with redis_errors("get ticket"):
            raw = self.r.hgetall(_ticket_key(ticket_id))
        if not raw:
            return None
        return Ticket.model_validate({k: json.loads(v) for k, v in raw.items()})

    def _require(self, ticket_id: str) -> None:
        with redis_errors("check ticket"):
            exists = self.r.exists(_ticket_key(ticket_id))
        if not exists:
            raise TicketNotFoundError(ticket_id)

    def update_classification(self, ticket_id: str, result: ClassificationResult) -> None:
        """
        Audit row + live projection in one MULTI/EXEC. The audit hash is keyed by
        the result fingerprint, so applying the same result twice changes nothing.
        """
        self._require(ticket_id)
        audit = json.dumps(
            {"recorded_at": time.time(), "ticket_id": ticket_id, **result.model_dump(mode="json")}
        )
        projection = {k: json.dumps(v) for k, v in classification_projection(result).items()}
        with redis_errors("update classification"):
            pipe = self.r.pipeline(transaction=True)
            pipe.hsetnx(_audit_key(ticket_id), classification_fingerprint(result), audit)
            pipe.hset(_ticket_key(ticket_id), mapping=projection)
            pipe.execute()

    def list_classifications(self, ticket_id: str) -> list[dict]:
        with redis_errors("list classifications"):
            raw = self.r.hvals(_audit_key(ticket_id))
        return sorted((json.loads(v) for v in raw), key=lambda rec: rec.get("recorded_at", 0))

    def update_routing(self, ticket_id: str, decision: RoutingDecision) -> None:
        ticket = self.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        update = {k: json.dumps(v) for k, v in routing_projection(ticket, decision).items()}
        entry = json.dumps({"ts": time.time(), "action": "auto_assigned", "decision": decision.model_dump(mode="json")})
        with redis_errors("update routing"):
            pipe = self.r.pipeline(transaction=True)
            if update:
                pipe.hset(_ticket_key(ticket_id), mapping=update)
            pipe.rpush(_history_key(ticket_id), entry)
            pipe.execute()

    def list_history(self, ticket_id: str) -> list[dict]:
        with redis_errors("list history"):
            return [json.loads(v) for v in self.r.lrange(_history_key(ticket_id), 0, -1)]

    @contextmanager
    def ticket_lock(self, ticket_id: str) -> Iterator[None]:
        """Per-ticket critical section. Failing to acquire in time is a transient error."""
        lock = self.r.lock(
            f"lock:ticket:{ticket_id}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )
        with redis_errors("acquire ticket lock"):
            acquired = lock.acquire()
        if not acquired:
            raise TransientServiceError(ServiceErrorKind.TIMEOUT, f"Ticket {ticket_id} is locked")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError as e:
                # expired while held; the next holder already owns it
                logger.warning("Lock for ticket %s released late: %s", ticket_id, e)
