"""In-memory stand-ins for the queue, ticket store and directory used by worker tests."""

from collections import deque
from contextlib import contextmanager
from typing import Any, Optional, Sequence

from ticketai.models import ClassificationResult, RoutingDecision, Ticket
from ticketai.services.ticket_store import classification_projection, routing_projection


class FakeService:
    """Completion service returning canned payloads (or raising)."""

    model = "test-model"
    provider = "test"

    def __init__(self, response: Any = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: list[tuple] = []

    def complete(self, system_prompt, prompt, *, json_mode=True, temperature=None, max_tokens=None):
        self.calls.append((system_prompt, prompt, json_mode))
        if self.error is not None:
            raise self.error
        return self.response


class InMemoryQueue:
    """LPUSH/BRPOP semantics over deques; pop() never blocks."""

    def __init__(self):
        self.queues: dict[str, deque] = {}
        self.on_empty = None

    def push(self, queue: str, payload: dict) -> None:
        import json
        self.queues.setdefault(queue, deque()).appendleft(json.dumps(payload))

    def push_raw(self, queue: str, raw: str) -> None:
        self.queues.setdefault(queue, deque()).appendleft(raw)

    def pop(self, queues: Sequence[str], timeout: int):
        for name in queues:
            q = self.queues.get(name)
            if q:
                return name, q.pop()
        if self.on_empty is not None:
            self.on_empty()
        return None

    def length(self, queue: str) -> int:
        return len(self.queues.get(queue, ()))

    def payloads(self, queue: str) -> list[dict]:
        import json
        return [json.loads(raw) for raw in reversed(self.queues.get(queue, ()))]


class FakeTicketStore:
    def __init__(self, tickets: Sequence[Ticket] = ()):
        self.tickets: dict[str, dict] = {t.ticket_id: t.model_dump() for t in tickets}
        self.audit: dict[str, list[ClassificationResult]] = {}
        self.history: dict[str, list[RoutingDecision]] = {}
        self.error: Optional[Exception] = None
        self.locked: list[str] = []

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        raw = self.tickets.get(ticket_id)
        return Ticket.model_validate(raw) if raw is not None else None

    def update_classification(self, ticket_id: str, result: ClassificationResult) -> None:
        if self.error is not None:
            raise self.error
        self.audit.setdefault(ticket_id, [])
        if result not in self.audit[ticket_id]:
            self.audit[ticket_id].append(result)
        self.tickets.setdefault(ticket_id, {"ticket_id": ticket_id}).update(classification_projection(result))

    def update_routing(self, ticket_id: str, decision: RoutingDecision) -> None:
        ticket = self.get_ticket(ticket_id)
        self.tickets[ticket_id].update(routing_projection(ticket, decision))
        self.history.setdefault(ticket_id, []).append(decision)

    @contextmanager
    def ticket_lock(self, ticket_id: str):
        self.locked.append(ticket_id)
        yield


class FakeDirectory:
    def __init__(self, agents=(), teams=()):
        self.agents = list(agents)
        self.teams = list(teams)
        self.assignments: dict[str, str] = {}

    def list_active_agents(self, tenant_id: str):
        return [a for a in self.agents if a.active]

    def list_teams(self, tenant_id: str):
        return list(self.teams)

    def assign_ticket_to_agent(self, tenant_id: str, ticket_id: str, agent_id: str) -> None:
        self.assignments[ticket_id] = agent_id


class FakeRules:
    def __init__(self, rules=()):
        self.rules = list(rules)

    def list_active_rules(self, tenant_id: str):
        return list(self.rules)


class Recorder:
    """Collects (name, data) calls; usable as both event and alert sink."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, name: str, data: dict) -> None:
        self.calls.append((name, data))

    def names(self) -> list[str]:
        return [n for n, _ in self.calls]


class FakeStatusClient:
    """Records the hash/expire/delete calls a worker makes for its status key."""

    def __init__(self):
        self.hashes: dict[str, dict] = {}
        self.ttls: dict[str, int] = {}

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def delete(self, key):
        self.hashes.pop(key, None)
        self.ttls.pop(key, None)
