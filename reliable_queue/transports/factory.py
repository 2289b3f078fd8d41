from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import redis
from sqlalchemy.engine import Engine

from reliable_queue.core.database import create_queue_engine
from reliable_queue.core.exceptions import InvalidConfigurationError
from reliable_queue.core.logging import get_logger
from reliable_queue.core.redis_client import RedisClient
from reliable_queue.core.retry_policies import DEFAULT_RETRY_POLICY, RetryPolicy
from reliable_queue.engines.redis_queue import RedisQueueEngine
from reliable_queue.engines.relational import RelationalQueueEngine
from reliable_queue.failover.transport import FailoverTransport
from reliable_queue.schemas.options import CircuitBreakerOptions
from reliable_queue.serialization import JsonSerializer, Serializer
from reliable_queue.transports.transport import QueueTransport

Transport = Union[QueueTransport, FailoverTransport]

RELATIONAL_SCHEMES = ("relational",)
REDIS_SCHEMES = ("redis", "rediss")
FAILOVER_SCHEMES = ("failover",)


class TransportFactory:
    """
    Builds named transports from DSNs and keeps them for later lookup.

    - ``relational://?table_name=..&queue_name=..``
    - ``redis://host:port/db?queue=..``
    - ``failover://first,second?consumption_strategy=..``: composes transports
      created earlier under those names
    """

    def __init__(
        self,
        db_engine: Optional[Engine] = None,
        redis_client: Optional[redis.Redis] = None,
        serializer: Optional[Serializer] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ):
        self.db_engine = db_engine
        self.redis_client = redis_client
        self.serializer = serializer or JsonSerializer()
        self.retry_policy = retry_policy
        self.transports: Dict[str, Transport] = {}
        self.logger = get_logger(self.__class__.__name__)

    def register(self, name: str, transport: Transport) -> Transport:
        self.transports[name] = transport
        return transport

    def get(self, name: str) -> Transport:
        try:
            return self.transports[name]
        except KeyError:
            raise InvalidConfigurationError(
                f'Unknown transport "{name}". Registered: {", ".join(self.transports) or "none"}.'
            ) from None

    def create(self, name: str, dsn: str, options: Optional[Mapping[str, Any]] = None) -> Transport:
        parts = urlsplit(dsn)
        scheme = parts.scheme.lower()
        merged = {**dict(options or {}), **dict(parse_qsl(parts.query, keep_blank_values=True))}

        if scheme in RELATIONAL_SCHEMES:
            transport = self._relational(name, merged)
        elif scheme in REDIS_SCHEMES:
            transport = self._redis(name, parts, merged)
        elif scheme in FAILOVER_SCHEMES:
            transport = self._failover(parts, merged)
        else:
            raise InvalidConfigurationError(f'Unsupported transport DSN scheme "{parts.scheme}" in "{name}".')

        self.logger.info("Transport created", transport=name, scheme=scheme)
        return self.register(name, transport)

    def _relational(self, name: str, options: Dict[str, Any]) -> QueueTransport:
        if self.db_engine is None:
            self.db_engine = create_queue_engine()
        engine = RelationalQueueEngine(self.db_engine, options)
        return QueueTransport(name, engine, self.serializer, self.retry_policy)

    def _redis(self, name: str, parts, options: Dict[str, Any]) -> QueueTransport:
        client = self.redis_client
        if client is None:
            url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
            client = RedisClient(url=url).connect()
        engine = RedisQueueEngine(client, options)
        return QueueTransport(name, engine, self.serializer, self.retry_policy)

    def _failover(self, parts, options: Dict[str, Any]) -> FailoverTransport:
        members = (parts.netloc + parts.path).strip("/")
        names = [n.strip() for n in members.split(",") if n.strip()]
        if len(names) < 2:
            raise InvalidConfigurationError(
                f"Failover transport requires at least 2 transport names, got {len(names)}."
            )

        breaker_options = {k: options.pop(k) for k in list(options) if k in CircuitBreakerOptions.model_fields}
        if breaker_options:
            options["circuit_breaker"] = {**dict(options.get("circuit_breaker") or {}), **breaker_options}

        return FailoverTransport({n: self.get(n) for n in names}, options)
