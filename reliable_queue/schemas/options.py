from typing import Any, Dict, Literal, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from reliable_queue.core.config import settings
from reliable_queue.core.exceptions import InvalidConfigurationError
from reliable_queue.models.message import QUEUE_NAME_LENGTH

OptionsT = TypeVar("OptionsT", bound="QueueOptions")


class QueueOptions(BaseModel):
    """Base for option models; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_options(
        cls: Type[OptionsT],
        options: Union[None, "QueueOptions", Mapping[str, Any]] = None,
    ) -> OptionsT:
        """Validate a mapping (or pass an instance through) at construction time."""
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(dict(options or {}))
        except ValidationError as e:
            allowed = ", ".join(cls.model_fields)
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or cls.__name__}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidConfigurationError(
                f"Invalid {cls.__name__}: {problems}. Allowed options are [{allowed}]."
            ) from e


class RelationalQueueOptions(QueueOptions):
    table_name: str = Field(default="messenger_messages", min_length=1)
    queue_name: str = Field(default="default", min_length=1, max_length=QUEUE_NAME_LENGTH)
    redeliver_timeout: int = Field(default_factory=lambda: settings.REDELIVER_TIMEOUT, gt=0)
    auto_setup: bool = Field(default_factory=lambda: settings.AUTO_SETUP)


class RedisQueueOptions(QueueOptions):
    queue: str = Field(default="async_messages", min_length=1)
    delayed_queue: Optional[str] = None
    auto_setup: bool = Field(default_factory=lambda: settings.AUTO_SETUP)
    # any value higher than 0 bounds the ready list, dropping the oldest entries
    queue_max_entries: int = Field(default=0, ge=0)
    redeliver_timeout: int = Field(default_factory=lambda: settings.REDELIVER_TIMEOUT, gt=0)
    # milliseconds between two scans for abandoned claims
    claim_interval: int = Field(default=60000, ge=0)

    @model_validator(mode="after")
    def _default_delayed_queue(self) -> "RedisQueueOptions":
        if not self.delayed_queue:
            self.delayed_queue = f"{self.queue}_delayed"
        if self.delayed_queue == self.queue:
            raise ValueError('"delayed_queue" must differ from "queue"')
        return self


class CircuitBreakerOptions(QueueOptions):
    failure_threshold: int = Field(
        default_factory=lambda: settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD, ge=1
    )
    success_threshold: int = Field(
        default_factory=lambda: settings.CIRCUIT_BREAKER_SUCCESS_THRESHOLD, ge=1
    )
    cooldown: float = Field(default_factory=lambda: settings.CIRCUIT_BREAKER_COOLDOWN, ge=0)
    cooldown_multiplier: float = Field(
        default_factory=lambda: settings.CIRCUIT_BREAKER_COOLDOWN_MULTIPLIER, ge=1
    )
    max_cooldown: float = Field(default_factory=lambda: settings.CIRCUIT_BREAKER_MAX_COOLDOWN, ge=0)


StrategyName = Literal["round_robin", "weighted_round_robin", "latency_aware", "adaptive_priority"]


class FailoverOptions(QueueOptions):
    consumption_strategy: StrategyName = "round_robin"
    try_unhealthy_on_failure: bool = False
    circuit_breaker: CircuitBreakerOptions = Field(default_factory=CircuitBreakerOptions)
    strategy_options: Dict[str, Any] = Field(default_factory=dict)
