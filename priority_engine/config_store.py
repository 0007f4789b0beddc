"""
Config store: holds the single active PriorityConfig.

Candidates are validated at this boundary; rejected documents never reach scoring.
Replacement is an atomic reference swap under a lock, so an in-flight evaluation
keeps using the config snapshot it already read. An optional Redis backend persists
the document (settings store); its failures are logged and never block the engine.
"""

import json
import logging
import math
import threading
from datetime import datetime
from typing import Any, Callable, Optional, Union

import pydantic
import redis

from priority_engine.config import CONFIG_KEY, FETCH_TIMEOUT_SECONDS, REDIS_CONN_TIMEOUT, REDIS_URL
from priority_engine.errors import ConfigValidationError, FieldError, StaleDataWarning
from priority_engine.models import DEFAULT_CONFIG, PriorityConfig
from priority_engine.scoring import utc_now

logger = logging.getLogger(__name__)

ConfigListener = Callable[[PriorityConfig], None]


class RedisConfigBackend:
    """Settings store: the config document as JSON under a single Redis key."""

    def __init__(self, url: str = REDIS_URL, key: str = CONFIG_KEY, timeout: float = FETCH_TIMEOUT_SECONDS):
        self.url = url
        self.key = key
        self.timeout = timeout
        self._client = None

    def _redis(self):
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.timeout,
                socket_connect_timeout=REDIS_CONN_TIMEOUT,
            )
        return self._client

    def load(self) -> Optional[dict[str, Any]]:
        """Stored document, or None if nothing was ever saved."""
        try:
            raw = self._redis().get(self.key)
        except (redis.RedisError, OSError) as e:
            raise StaleDataWarning(f"config fetch from {self.key} failed: {e}") from e
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StaleDataWarning(f"config at {self.key} is not valid JSON: {e}") from e

    def save(self, config: PriorityConfig) -> None:
        try:
            self._redis().set(self.key, config.model_dump_json(by_alias=True))
        except (redis.RedisError, OSError) as e:
            raise StaleDataWarning(f"config persist to {self.key} failed: {e}") from e


def _field_errors(exc: pydantic.ValidationError) -> list[FieldError]:
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "<document>"
        errors.append(FieldError(field=field, message=err["msg"]))
    return errors


def validate_config(candidate: Union[PriorityConfig, dict[str, Any]]) -> PriorityConfig:
    """Parse and validate a config document. Raises ConfigValidationError with field-level errors."""
    if isinstance(candidate, PriorityConfig):
        candidate = candidate.model_dump(by_alias=True, exclude_unset=True)
    try:
        config = PriorityConfig.model_validate(candidate)
    except pydantic.ValidationError as e:
        raise ConfigValidationError(_field_errors(e)) from e

    seen: set[str] = set()
    duplicates = []
    for index, rule in enumerate(config.rules):
        if rule.id in seen:
            duplicates.append(FieldError(field=f"rules.{index}.id", message=f"duplicate rule id {rule.id!r}"))
        seen.add(rule.id)
    if duplicates:
        raise ConfigValidationError(duplicates)

    # Every normalized factor is in [0, 1], so this bounds |total| for any item.
    weights = config.weights
    weight_sum = weights.urgency + weights.wait_time + weights.historical_value + weights.technical_complexity
    if not math.isfinite(weight_sum):
        raise ConfigValidationError([FieldError(field="weights", message="weights too large; scores would overflow")])
    bonus_sum = sum(abs(rule.effect.priority_bonus) for rule in config.rules)
    if not math.isfinite(weight_sum + bonus_sum):
        raise ConfigValidationError([FieldError(field="rules", message="rule bonuses too large; scores would overflow")])
    return config


class ConfigStore:
    """The single active PriorityConfig, with a built-in default until one is set."""

    def __init__(
        self,
        initial: Optional[PriorityConfig] = None,
        backend: Optional[RedisConfigBackend] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._active: Optional[PriorityConfig] = initial
        self._backend = backend
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: list[ConfigListener] = []

    def get(self) -> PriorityConfig:
        """Active config, or DEFAULT_CONFIG if none has ever been set."""
        active = self._active
        return active if active is not None else DEFAULT_CONFIG

    def add_listener(self, listener: ConfigListener) -> None:
        """Call ``listener(config)`` after every accepted replace."""
        self._listeners.append(listener)

    def replace(self, candidate: Union[PriorityConfig, dict[str, Any]]) -> PriorityConfig:
        """
        Validate ``candidate`` and make it the active config.

        Returns the accepted config (with a new version and updatedAt).
        Raises ConfigValidationError; the active config is then left unchanged.
        A candidate whose ``version`` differs from the active one was edited from an
        older copy: the conflict is logged and the last writer wins.
        """
        parsed = validate_config(candidate)
        with self._lock:
            current = self.get()
            if "version" in parsed.model_fields_set and parsed.version != current.version:
                logger.warning(
                    "Concurrent config edit: candidate based on v%d, active is v%d (updated %s); last writer wins.",
                    parsed.version, current.version, current.updated_at,
                )
            accepted = parsed.model_copy(update={"version": current.version + 1, "updated_at": self._clock()})
            self._active = accepted
            logger.info(
                "Priority config v%d active (%d rules).", accepted.version, len(accepted.rules),
            )
            if self._backend is not None:
                try:
                    self._backend.save(accepted)
                except StaleDataWarning as e:
                    logger.warning("%s; config v%d is active in memory only.", e, accepted.version)
        for listener in list(self._listeners):
            try:
                listener(accepted)
            except Exception:
                logger.exception("Config listener failed for v%d", accepted.version)
        return accepted

    def load(self) -> PriorityConfig:
        """
        Load the stored document from the backend and make it active as stored.

        On fetch failure or an invalid stored document the last-known-good config
        stays active. A stored document older than the active config (a save that
        failed after a replace) never rolls it back.
        """
        if self._backend is None:
            return self.get()
        try:
            document = self._backend.load()
        except StaleDataWarning as e:
            logger.warning("%s; keeping config v%d.", e, self.get().version)
            return self.get()
        if document is None:
            logger.info("No stored priority config; using v%d.", self.get().version)
            return self.get()
        try:
            stored = validate_config(document)
        except ConfigValidationError as e:
            logger.warning(
                "Stored priority config rejected (%s); keeping v%d.",
                ", ".join(f"{err.field}: {err.message}" for err in e.errors), self.get().version,
            )
            return self.get()
        with self._lock:
            current = self.get()
            if stored.version < current.version:
                logger.warning(
                    "Stored priority config v%d is older than active v%d; keeping v%d.",
                    stored.version, current.version, current.version,
                )
                return current
            self._active = stored
        logger.info("Loaded stored priority config v%d.", stored.version)
        return stored
