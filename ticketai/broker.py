"""
Redis-backed job queues.

Producers LPUSH JSON jobs; consumers BRPOP (oldest first). BRPOP hands each
job to exactly one consumer, but a consumer crash after the pop loses the
in-flight attempt, so producers and handlers must tolerate redelivery.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol, Sequence

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ticketai.config import REDIS_CONN_TIMEOUT, REDIS_URL
from ticketai.errors import ServiceErrorKind, TransientServiceError

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis():
    """Process-wide Redis client (lazy)."""
    import redis
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=REDIS_CONN_TIMEOUT,
        )
    return _redis_client


@contextmanager
def redis_errors(what: str) -> Iterator[None]:
    """Re-raise Redis transport failures as TransientServiceError."""
    try:
        yield
    except RedisTimeoutError as e:
        raise TransientServiceError(ServiceErrorKind.TIMEOUT, f"{what}: {e}") from e
    except RedisConnectionError as e:
        raise TransientServiceError(ServiceErrorKind.CONNECTION_RESET, f"{what}: {e}") from e


class JobQueue(Protocol):
    def push(self, queue: str, payload: dict[str, Any]) -> None:
        ...

    def pop(self, queues: Sequence[str], timeout: int) -> Optional[tuple[str, str]]:
        ...

    def length(self, queue: str) -> int:
        ...


class RedisJobQueue:
    """List-based queue. Earlier names passed to pop() are served first."""

    def __init__(self, client=None):
        self._client = client

    @property
    def r(self):
        return self._client if self._client is not None else get_redis()

    def push(self, queue: str, payload: dict[str, Any]) -> None:
        with redis_errors(f"enqueue to {queue}"):
            self.r.lpush(queue, json.dumps(payload))

    def pop(self, queues: Sequence[str], timeout: int) -> Optional[tuple[str, str]]:
        """Block up to `timeout` seconds; returns (queue, raw_json) or None. Transport errors propagate."""
        result = self.r.brpop(list(queues), timeout=timeout)
        if not result:
            return None
        queue, raw = result
        return queue, raw

    def length(self, queue: str) -> int:
        return int(self.r.llen(queue))
