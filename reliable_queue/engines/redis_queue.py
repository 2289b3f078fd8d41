import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

import redis

from reliable_queue.core.exceptions import (
    MessageDecodingError,
    RetryableTransportError,
    TransportError,
)
from reliable_queue.core.logging import get_logger
from reliable_queue.engines.base import QueueEngine
from reliable_queue.schemas.message import QueueMessage
from reliable_queue.schemas.options import RedisQueueOptions

T = TypeVar("T")

# KEYS: ready list, delayed zset, claims zset, payload hash
# ARGV: now (ms), claim cutoff (exclusive score bound), reclaim flag
POLL_SCRIPT = """
    local queue = KEYS[1]
    local delayed = KEYS[2]
    local claims = KEYS[3]
    local messages = KEYS[4]
    local now = ARGV[1]
    local cutoff = ARGV[2]
    local reclaim = ARGV[3] == '1'

    local due = redis.call('ZRANGEBYSCORE', delayed, '-inf', now)
    for _, id in ipairs(due) do
        redis.call('RPUSH', queue, id)
    end
    if #due > 0 then
        redis.call('ZREMRANGEBYSCORE', delayed, '-inf', now)
    end

    local reclaimed = 0
    if reclaim then
        local expired = redis.call('ZRANGEBYSCORE', claims, '-inf', cutoff)
        -- oldest claim ends up at the head of the list
        for i = #expired, 1, -1 do
            local id = expired[i]
            redis.call('ZREM', claims, id)
            if redis.call('HEXISTS', messages, id) == 1 then
                redis.call('LPUSH', queue, id)
                reclaimed = reclaimed + 1
            end
        end
    end

    while true do
        local id = redis.call('LPOP', queue)
        if not id then
            return {reclaimed}
        end
        local payload = redis.call('HGET', messages, id)
        if payload then
            redis.call('ZADD', claims, now, id)
            return {reclaimed, id, payload}
        end
    end
"""

# KEYS: ready list, delayed zset, payload hash
# ARGV: id, payload, available_at (ms), delayed flag, max entries
SEND_SCRIPT = """
    local queue = KEYS[1]
    local delayed = KEYS[2]
    local messages = KEYS[3]
    local id = ARGV[1]
    local max_entries = tonumber(ARGV[5])

    redis.call('HSET', messages, id, ARGV[2])
    if ARGV[4] == '1' then
        redis.call('ZADD', delayed, ARGV[3], id)
        return 0
    end

    redis.call('RPUSH', queue, id)
    if max_entries <= 0 then
        return 0
    end

    local excess = redis.call('LLEN', queue) - max_entries
    if excess <= 0 then
        return 0
    end
    local dropped = redis.call('LRANGE', queue, '0', tostring(excess - 1))
    redis.call('LTRIM', queue, tostring(excess), '-1')
    for _, old in ipairs(dropped) do
        redis.call('HDEL', messages, old)
    end
    return #dropped
"""


def _text(value: Union[str, bytes, None]) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _from_ms(value: Union[int, float]) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def translate_redis_error(exc: redis.RedisError) -> TransportError:
    if isinstance(exc, (redis.ConnectionError, redis.TimeoutError)):
        return RetryableTransportError(str(exc))
    return TransportError(str(exc))


class RedisQueueEngine(QueueEngine):
    """
    Queue engine over Redis keys.

    Layout per queue:
    - ``<queue>``: list of ready message ids, oldest first
    - ``<delayed_queue>``: sorted set of delayed ids scored by available-at ms
    - ``<queue>:messages``: hash of id to JSON payload
    - ``<queue>:claims``: sorted set of in-flight ids scored by claim ms

    Claims live in the store so every process polling the queue shares them.
    Abandoned claims are only moved back to the ready list by a later poll;
    nothing reclaims them while the queue is not being polled.
    """

    def __init__(
        self,
        client: redis.Redis,
        options: Union[None, RedisQueueOptions, Mapping[str, Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.options = RedisQueueOptions.from_options(options)
        self._auto_setup = self.options.auto_setup
        self._clock = clock
        self._next_claim = 0
        self.logger = get_logger(self.__class__.__name__, queue=self.options.queue)

    @property
    def queue_name(self) -> str:
        return self.options.queue

    @property
    def redeliver_timeout(self) -> int:
        return self.options.redeliver_timeout

    @property
    def delayed_key(self) -> str:
        return self.options.delayed_queue

    @property
    def messages_key(self) -> str:
        return f"{self.options.queue}:messages"

    @property
    def claims_key(self) -> str:
        return f"{self.options.queue}:claims"

    def _now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _call(self, operation: Callable[[], T], action: str) -> T:
        try:
            return operation()
        except redis.RedisError as e:
            self.logger.error(f"Redis {action} failed", error=str(e))
            raise translate_redis_error(e) from e

    def send(self, body: str, headers: Dict[str, str], delay_ms: int = 0) -> str:
        self._check_delay(delay_ms)
        now = self._now_ms()
        message_id = uuid.uuid4().hex
        payload = json.dumps(
            {
                "body": body,
                "headers": headers,
                "created_at": now,
                "available_at": now + delay_ms,
            }
        )

        dropped = self._call(
            lambda: self.client.eval(
                SEND_SCRIPT,
                3,
                self.options.queue,
                self.delayed_key,
                self.messages_key,
                message_id,
                payload,
                now + delay_ms,
                "1" if delay_ms > 0 else "0",
                self.options.queue_max_entries,
            ),
            "send",
        )
        if dropped:
            self.logger.warning(
                "Queue at capacity, oldest messages dropped",
                dropped=int(dropped),
                max_entries=self.options.queue_max_entries,
            )

        self.logger.debug("Message stored", message_id=message_id, delay_ms=delay_ms)
        return message_id

    def poll(self) -> Optional[QueueMessage]:
        now = self._now_ms()
        reclaim = now >= self._next_claim
        if reclaim:
            self._next_claim = now + self.options.claim_interval
        cutoff = f"({now - self.options.redeliver_timeout * 1000}"

        result = self._call(
            lambda: self.client.eval(
                POLL_SCRIPT,
                4,
                self.options.queue,
                self.delayed_key,
                self.claims_key,
                self.messages_key,
                now,
                cutoff,
                "1" if reclaim else "0",
            ),
            "poll",
        )

        reclaimed = int(result[0])
        if reclaimed:
            self.logger.info("Abandoned claims returned to the queue", reclaimed=reclaimed)
        if len(result) < 3:
            return None

        message_id = _text(result[1])
        message = self._to_message(message_id, result[2], delivered_at=_from_ms(now))
        self.logger.debug("Message claimed", message_id=message_id)
        return message

    def ack(self, message_id: str) -> bool:
        return self._remove(message_id, "ack")

    def reject(self, message_id: str) -> bool:
        return self._remove(message_id, "reject")

    def _remove(self, message_id: str, action: str) -> bool:
        def _delete() -> List[Any]:
            pipe = self.client.pipeline()
            pipe.zrem(self.claims_key, message_id)
            pipe.hdel(self.messages_key, message_id)
            pipe.lrem(self.options.queue, 0, message_id)
            pipe.zrem(self.delayed_key, message_id)
            return pipe.execute()

        results = self._call(_delete, action)
        removed = int(results[1]) > 0
        self.logger.debug(f"Message {action}ed", message_id=message_id, removed=removed)
        return removed

    def keepalive(self, message_id: str, extend_seconds: Optional[int] = None) -> None:
        self._check_keepalive_interval(extend_seconds, "Redis")
        # xx: an acked or unknown id is not turned into a claim
        self._call(
            lambda: self.client.zadd(self.claims_key, {message_id: self._now_ms()}, xx=True),
            "keepalive",
        )

    def count(self) -> int:
        def _count() -> List[int]:
            pipe = self.client.pipeline(transaction=False)
            pipe.llen(self.options.queue)
            pipe.zcard(self.delayed_key)
            pipe.zcard(self.claims_key)
            return pipe.execute()

        return sum(int(n) for n in self._call(_count, "count"))

    def find_all(self, limit: Optional[int] = None) -> List[QueueMessage]:
        end = -1 if limit is None else limit - 1
        if limit is not None and limit <= 0:
            return []

        ids = [_text(i) for i in self._call(lambda: self.client.lrange(self.options.queue, 0, end), "find_all")]
        if not ids:
            return []
        payloads = self._call(lambda: self.client.hmget(self.messages_key, ids), "find_all")
        return [
            self._to_message(message_id, payload)
            for message_id, payload in zip(ids, payloads)
            if payload is not None
        ]

    def find(self, message_id: str) -> Optional[QueueMessage]:
        def _find() -> List[Any]:
            pipe = self.client.pipeline(transaction=False)
            pipe.hget(self.messages_key, message_id)
            pipe.zscore(self.claims_key, message_id)
            return pipe.execute()

        payload, claimed_at = self._call(_find, "find")
        if payload is None:
            return None
        delivered_at = _from_ms(float(claimed_at)) if claimed_at is not None else None
        return self._to_message(message_id, payload, delivered_at=delivered_at)

    def setup(self) -> None:
        # Keys are created on first write
        self._auto_setup = False
        self.logger.debug("Redis queue needs no setup")

    def cleanup(self) -> None:
        """Drop every key belonging to this queue."""
        self._call(
            lambda: self.client.delete(
                self.options.queue, self.delayed_key, self.messages_key, self.claims_key
            ),
            "cleanup",
        )
        self.logger.info("Queue keys deleted")

    def _to_message(
        self,
        message_id: str,
        payload: Union[str, bytes],
        delivered_at: Optional[datetime] = None,
    ) -> QueueMessage:
        try:
            data = json.loads(_text(payload))
            headers = data["headers"]
            if not isinstance(headers, dict):
                raise TypeError("headers are not a map")
            return QueueMessage(
                id=message_id,
                body=data["body"],
                headers={str(k): str(v) for k, v in headers.items()},
                queue_name=self.options.queue,
                created_at=_from_ms(data["created_at"]),
                available_at=_from_ms(data["available_at"]),
                delivered_at=delivered_at,
            )
        except (TypeError, ValueError, KeyError) as e:
            raise MessageDecodingError(
                f"Invalid payload for message {message_id}: {e}", message_id=message_id
            ) from e
