"""
Queue workers: classification (classify -> persist -> optionally enqueue routing)
and routing (route -> apply decision).

Each worker is a single sequential loop handling one job at a time; scale out
by running more worker processes against the same queues. Delivery is
at-least-once, so handlers are safe to re-run for the same ticket.

States: stopped -> running -> stopping -> stopped. stop() only sets a flag;
the loop notices it after the current blocking pop or job and never
interrupts an in-flight service call.
"""

import argparse
import json
import logging
import os
import signal
import socket
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel
from redis.exceptions import RedisError

from ticketai import config
from ticketai.activity import publish_event
from ticketai.broker import JobQueue, RedisJobQueue, get_redis
from ticketai.classifier import Classifier, build_classifier
from ticketai.errors import (
    ServiceError,
    ServiceErrorKind,
    TicketNotFoundError,
    error_kind,
    service_error_for,
)
from ticketai.models import ClassificationJob, RoutingDecision, RoutingJob
from ticketai.services.agent_registry import AgentDirectory, seed_mock_directory
from ticketai.services.routing_engine import ESCALATED_TAG, route
from ticketai.services.rule_store import RuleStore
from ticketai.services.ticket_store import RedisTicketStore, TicketStore
from ticketai.webhook import send_alert

logger = logging.getLogger(__name__)

WORKER_STATUS_PREFIX = "worker:"
EventSink = Callable[[str, dict[str, Any]], None]
AlertSink = Callable[[str, dict[str, Any]], Any]


class WorkerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


def default_worker_name(kind: str) -> str:
    return f"{kind}-{socket.gethostname()}-{os.getpid()}"


class QueueConsumer:
    """
    Blocking pop loop shared by the workers. Subclasses set `job_model` and
    implement handle(); on_failure() decides what a failed job becomes.
    """

    job_model: type[BaseModel] = BaseModel
    kind = "consumer"

    def __init__(
        self,
        queue: JobQueue,
        queues: Sequence[str],
        name: Optional[str] = None,
        block_timeout: int = config.QUEUE_BLOCK_TIMEOUT_SECONDS,
        error_backoff: float = config.WORKER_ERROR_BACKOFF_SECONDS,
        status_client=None,
        status_ttl: int = config.WORKER_STATUS_TTL_SECONDS,
        events: EventSink = publish_event,
        alert: AlertSink = send_alert,
    ):
        self.queue = queue
        self.queues = list(queues)
        self.name = name or default_worker_name(self.kind)
        self.block_timeout = block_timeout
        self.error_backoff = error_backoff
        self.status_client = status_client
        self.status_ttl = status_ttl
        self.events = events
        self.alert = alert

        self.state = WorkerState.STOPPED
        self.processed = 0
        self.failed = 0
        self.in_flight: Optional[str] = None
        self.last_error: Optional[str] = None
        self.last_permanent_error: Optional[str] = None
        self._stop = threading.Event()
        self._state_lock = threading.Lock()

    # --- lifecycle ---

    def start(self) -> None:
        """Run the loop in the calling thread until stop() is requested."""
        with self._state_lock:
            if self.state != WorkerState.STOPPED:
                logger.warning("Worker %s already %s.", self.name, self.state.value)
                return
            self.state = WorkerState.RUNNING
        logger.info("Worker %s started (queues: %s).", self.name, ", ".join(self.queues))
        self._report_status()
        try:
            self._loop()
        finally:
            with self._state_lock:
                self.state = WorkerState.STOPPED
                # a stop requested before start() is honored once, then forgotten
                self._stop.clear()
            self._clear_status()
            logger.info("Worker %s stopped (processed=%d, failed=%d).", self.name, self.processed, self.failed)

    def start_in_thread(self) -> threading.Thread:
        t = threading.Thread(target=self.start, name=self.name, daemon=True)
        t.start()
        return t

    def stop(self) -> None:
        """Request a stop; the loop exits after its current wait or job. Before start(), the next run exits at once."""
        with self._state_lock:
            if self.state == WorkerState.RUNNING:
                self.state = WorkerState.STOPPING
                logger.info("Worker %s stopping...", self.name)
            self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "state": self.state.value,
            "processed": self.processed,
            "failed": self.failed,
            "in_flight": self.in_flight or "",
            "last_error": self.last_error or "",
            "last_permanent_error": self.last_permanent_error or "",
        }

    # --- loop ---

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                item = self.queue.pop(self.queues, self.block_timeout)
                if item is None:
                    self._report_status()
                    continue
                source, raw = item
                self.process(source, raw)
            except Exception:
                # Queue transport failure (or a failure while re-queueing): never crash the loop.
                logger.exception("Worker %s queue error; backing off %.1fs.", self.name, self.error_backoff)
                self._stop.wait(self.error_backoff)

    def parse_job(self, raw: str) -> BaseModel:
        return self.job_model.model_validate(json.loads(raw))

    def process(self, source: str, raw: str) -> bool:
        """Handle one raw payload popped from `source`. Returns True on success."""
        try:
            job = self.parse_job(raw)
        except ValueError as e:
            self.failed += 1
            self.last_error = f"undecodable job: {e}"
            logger.error("Dropping undecodable job from %s: %s", source, e)
            self.events("job_dropped", {"queue": source, "error": str(e)})
            self._report_status()
            return False

        self.in_flight = getattr(job, "ticket_id", None)
        try:
            self.handle(job)
            self.processed += 1
            return True
        except Exception as e:
            self.failed += 1
            self.last_error = f"{type(e).__name__}: {e}"
            self.on_failure(source, job, e)
            return False
        finally:
            self.in_flight = None
            self._report_status()

    def handle(self, job: BaseModel) -> None:
        raise NotImplementedError

    def on_failure(self, source: str, job: BaseModel, exc: Exception) -> None:
        logger.error("Job for ticket %s failed and was dropped: %s", getattr(job, "ticket_id", "?"), exc)

    def record_permanent_error(self, exc: Exception, ticket_id: str) -> None:
        self.last_permanent_error = f"{type(exc).__name__}: {exc}"
        self.alert(
            "Classification service failing permanently",
            {"worker": self.name, "ticket": ticket_id, "error": str(exc)},
        )

    def _report_status(self) -> None:
        """Publish stats to Redis for the ops API (best effort)."""
        if self.status_client is None:
            return
        try:
            key = f"{WORKER_STATUS_PREFIX}{self.name}"
            self.status_client.hset(key, mapping={**self.stats(), "updated_at": time.time()})
            self.status_client.expire(key, self.status_ttl)
        except RedisError as e:
            logger.debug("Could not report status for worker %s: %s", self.name, e)

    def _clear_status(self) -> None:
        """Remove this worker's status hash on a clean stop."""
        if self.status_client is None:
            return
        try:
            self.status_client.delete(f"{WORKER_STATUS_PREFIX}{self.name}")
        except RedisError as e:
            logger.debug("Could not clear status for worker %s: %s", self.name, e)


class ClassificationWorker(QueueConsumer):
    """
    Consumes classification jobs from the primary and retry queues.

    Failure policy: retryable kinds (reset/timeout/refused/rate-limited) are
    pushed to the retry queue once; a job that fails again from the retry
    queue, or fails for any other reason, is dropped with an error log and a
    `classification_failed` event. A fallback classification is never
    persisted, so a failed ticket keeps its pre-classification state.
    """

    job_model = ClassificationJob
    kind = "classification"

    def __init__(
        self,
        classifier: Classifier,
        store: TicketStore,
        queue: JobQueue,
        auto_routing: bool = config.ENABLE_AUTO_ROUTING,
        primary_queue: str = config.CLASSIFICATION_QUEUE,
        retry_queue: str = config.CLASSIFICATION_RETRY_QUEUE,
        routing_queue: str = config.ROUTING_QUEUE,
        **kwargs,
    ):
        super().__init__(queue, [primary_queue, retry_queue], **kwargs)
        self.classifier = classifier
        self.store = store
        self.auto_routing = auto_routing
        self.primary_queue = primary_queue
        self.retry_queue = retry_queue
        self.routing_queue = routing_queue

    def handle(self, job: ClassificationJob) -> None:
        started = time.perf_counter()
        logger.info("Processing classification job for ticket %s.", job.ticket_id)

        result = self.classifier.classify(job.subject, job.body)
        if result.failed:
            raise service_error_for(result.failure, f"classification service failed ({result.failure.value})")

        self.store.update_classification(job.ticket_id, result)
        if self.last_permanent_error:
            logger.info("Worker %s recovered from permanent error: %s", self.name, self.last_permanent_error)
            self.last_permanent_error = None

        if self.auto_routing:
            routing_job = RoutingJob(ticket_id=job.ticket_id, tenant_id=job.tenant_id)
            self.queue.push(self.routing_queue, routing_job.model_dump(by_alias=True))

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Classification completed for ticket %s (category=%s, priority=%s, sentiment=%s, confidence=%.2f, %d ms).",
            job.ticket_id, result.category.value, result.priority.value,
            result.sentiment.label.value, result.overall_confidence, duration_ms,
        )
        self.events(
            "ticket_classified",
            {
                "ticket_id": job.ticket_id,
                "tenant_id": job.tenant_id,
                "category": result.category.value,
                "priority": result.priority.value,
                "sentiment": result.sentiment.label.value,
                "confidence": round(result.overall_confidence, 3),
                "routing_queued": self.auto_routing,
            },
        )

    def on_failure(self, source: str, job: ClassificationJob, exc: Exception) -> None:
        kind = error_kind(exc)
        if isinstance(exc, ServiceError):
            logger.error("Classification job failed for ticket %s (%s): %s", job.ticket_id, kind.value, exc)
        else:
            logger.exception("Classification job failed for ticket %s", job.ticket_id)

        if kind is not None and kind.permanent:
            self.record_permanent_error(exc, job.ticket_id)

        if kind is not None and kind.retryable and source != self.retry_queue:
            self.queue.push(self.retry_queue, job.model_dump(by_alias=True))
            logger.warning("Ticket %s re-queued on %s after %s.", job.ticket_id, self.retry_queue, kind.value)
            self.events(
                "classification_retry_queued",
                {"ticket_id": job.ticket_id, "tenant_id": job.tenant_id, "kind": kind.value},
            )
            return

        reason = kind.value if kind is not None else (
            "ticket_not_found" if isinstance(exc, TicketNotFoundError) else ServiceErrorKind.UNKNOWN.value
        )
        logger.error("Classification job for ticket %s dropped (terminal: %s).", job.ticket_id, reason)
        self.events(
            "classification_failed",
            {"ticket_id": job.ticket_id, "tenant_id": job.tenant_id, "reason": reason, "queue": source},
        )


class RoutingWorker(QueueConsumer):
    """
    Consumes routing jobs: load ticket + organizational state, route, apply.
    The read-decide-write sequence runs under the ticket's lock.
    """

    job_model = RoutingJob
    kind = "routing"

    def __init__(
        self,
        store: TicketStore,
        directory: AgentDirectory,
        rules: RuleStore,
        queue: JobQueue,
        routing_queue: str = config.ROUTING_QUEUE,
        rule_confidence_floor: bool = config.ROUTING_RULE_CONFIDENCE_FLOOR,
        **kwargs,
    ):
        super().__init__(queue, [routing_queue], **kwargs)
        self.store = store
        self.directory = directory
        self.rules = rules
        self.rule_confidence_floor = rule_confidence_floor

    def route_ticket(self, ticket_id: str, tenant_id: str) -> RoutingDecision:
        """Route one ticket and apply the decision. Also usable synchronously."""
        with self.store.ticket_lock(ticket_id):
            ticket = self.store.get_ticket(ticket_id)
            if ticket is None:
                raise TicketNotFoundError(ticket_id)
            decision = route(
                ticket,
                self.directory.list_active_agents(tenant_id),
                self.directory.list_teams(tenant_id),
                self.rules.list_active_rules(tenant_id),
                rule_confidence_floor=self.rule_confidence_floor,
            )
            self.store.update_routing(ticket_id, decision)
            if decision.assign_to_user:
                self.directory.assign_ticket_to_agent(tenant_id, ticket_id, decision.assign_to_user)
        return decision

    def handle(self, job: RoutingJob) -> None:
        decision = self.route_ticket(job.ticket_id, job.tenant_id)
        logger.info(
            "Ticket %s routed (team=%s, user=%s, priority=%s, confidence=%.2f): %s",
            job.ticket_id, decision.assign_to_team, decision.assign_to_user,
            decision.set_priority, decision.confidence, decision.reason,
        )
        self.events(
            "ticket_routed",
            {"ticket_id": job.ticket_id, "tenant_id": job.tenant_id, **decision.model_dump(mode="json")},
        )
        if not decision.assigned:
            self.alert("Ticket could not be routed", {"ticket": job.ticket_id, "tenant": job.tenant_id,
                                                      "reason": decision.reason})
        elif ESCALATED_TAG in decision.add_tags:
            self.alert("Ticket escalated", {"ticket": job.ticket_id, "tenant": job.tenant_id,
                                            "assignee": decision.assign_to_user or "-",
                                            "reason": decision.reason})

    def on_failure(self, source: str, job: RoutingJob, exc: Exception) -> None:
        if isinstance(exc, (ServiceError, TicketNotFoundError)):
            logger.error("Routing job for ticket %s dropped: %s", job.ticket_id, exc)
        else:
            logger.exception("Routing job for ticket %s dropped", job.ticket_id)
        self.events("routing_failed", {"ticket_id": job.ticket_id, "tenant_id": job.tenant_id,
                                       "error": f"{type(exc).__name__}: {exc}"})


def build_worker(role: str) -> QueueConsumer:
    queue = RedisJobQueue()
    store = RedisTicketStore()
    if role == "routing":
        directory = AgentDirectory()
        if config.SEED_MOCK_DIRECTORY:
            seed_mock_directory(directory, config.DEFAULT_TENANT)
        return RoutingWorker(store, directory, RuleStore(), queue, status_client=get_redis())
    return ClassificationWorker(build_classifier(), store, queue, status_client=get_redis())


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run a ticket classification or routing worker.")
    parser.add_argument("role", nargs="?", default="classification", choices=["classification", "routing"])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Worker starting (role=%s, Redis: %s).", args.role,
                config.REDIS_URL.split("@")[-1] if "@" in config.REDIS_URL else config.REDIS_URL)
    worker = build_worker(args.role)
    signal.signal(signal.SIGTERM, lambda *_: worker.stop())
    signal.signal(signal.SIGINT, lambda *_: worker.stop())
    worker.start()


if __name__ == "__main__":
    main()
