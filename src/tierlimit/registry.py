"""Limit class registry.

Maps a limit class name to its quota and window. The registry is read-only
at request time; changing it requires an explicit reload().
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Union

from tierlimit.exceptions import UnknownLimitClass

logger = logging.getLogger(__name__)


class LimitClass(str, Enum):
    """Built-in limit classes, ordered roughly by cost per call."""

    API = "api"
    POLLING = "polling"
    SENSITIVE = "sensitive"
    AI = "ai"
    PAYMENT = "payment"
    ADMIN = "admin"


@dataclass(frozen=True)
class LimitClassConfig:
    """Quota for one limit class.

    Attributes:
        name: Limit class name
        max_requests: Requests allowed per window (must be positive)
        window_seconds: Window duration in seconds (must be positive)
    """

    name: str
    max_requests: int
    window_seconds: float

    def __post_init__(self):
        """Validate configuration."""
        if not self.name:
            raise ValueError("limit class name cannot be empty")
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be positive for '{self.name}'")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive for '{self.name}'")

    @property
    def window_ms(self) -> int:
        return int(self.window_seconds * 1000)


# Built-in tiers.
DEFAULT_LIMIT_CLASSES: Dict[str, Dict[str, float]] = {
    LimitClass.API.value: {"max_requests": 100, "window_seconds": 60},
    LimitClass.POLLING.value: {"max_requests": 300, "window_seconds": 60},
    LimitClass.SENSITIVE.value: {"max_requests": 20, "window_seconds": 60},
    LimitClass.AI.value: {"max_requests": 5, "window_seconds": 3600},
    LimitClass.PAYMENT.value: {"max_requests": 3, "window_seconds": 3600},
    LimitClass.ADMIN.value: {"max_requests": 50, "window_seconds": 60},
}

ClassName = Union[str, LimitClass]


def _name(limit_class: ClassName) -> str:
    if isinstance(limit_class, LimitClass):
        return limit_class.value
    return str(limit_class)


class LimitClassRegistry:
    """Static table of limit class configurations.

    Example:
        >>> registry = LimitClassRegistry.default()
        >>> registry.get_config("payment").max_requests
        3
    """

    def __init__(self, configs: Iterable[LimitClassConfig]):
        self._lock = threading.Lock()
        self._configs = self._index(configs)

    @staticmethod
    def _index(configs: Iterable[LimitClassConfig]) -> Dict[str, LimitClassConfig]:
        table: Dict[str, LimitClassConfig] = {}
        for config in configs:
            if config.name in table:
                raise ValueError(f"Duplicate limit class '{config.name}'")
            table[config.name] = config
        if not table:
            raise ValueError("At least one limit class must be configured")
        return table

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Mapping[str, float]]
    ) -> "LimitClassRegistry":
        """Build a registry from ``{name: {"max_requests", "window_seconds"}}``."""
        return cls(_configs_from_mapping(mapping))

    @classmethod
    def default(cls) -> "LimitClassRegistry":
        return cls.from_mapping(DEFAULT_LIMIT_CLASSES)

    def get_config(self, limit_class: ClassName) -> LimitClassConfig:
        """Look up the configuration for a limit class.

        Raises:
            UnknownLimitClass: If the class is not registered
        """
        name = _name(limit_class)
        config = self._configs.get(name)
        if config is None:
            raise UnknownLimitClass(name, available=list(self._configs))
        return config

    def names(self) -> List[str]:
        return list(self._configs)

    def __contains__(self, limit_class: object) -> bool:
        if not isinstance(limit_class, (str, LimitClass)):
            return False
        return _name(limit_class) in self._configs

    def longest_window(self) -> float:
        """Longest configured window, in seconds."""
        return max(config.window_seconds for config in self._configs.values())

    def validate(self, names: Iterable[Optional[ClassName]]) -> None:
        """Check that every referenced class is registered.

        ``None`` entries (routes excluded from rate limiting) are skipped.

        Raises:
            UnknownLimitClass: For the first missing class
        """
        for limit_class in names:
            if limit_class is None:
                continue
            self.get_config(limit_class)

    def reload(self, configs: Iterable[LimitClassConfig]) -> None:
        """Replace the whole table.

        Records already open in the store keep their max_requests snapshot
        until their window resets.
        """
        table = self._index(configs)
        with self._lock:
            self._configs = table
        logger.info("Limit class registry reloaded: %s", sorted(table))


def _configs_from_mapping(
    mapping: Mapping[str, Mapping[str, float]],
) -> List[LimitClassConfig]:
    configs = []
    for name, values in mapping.items():
        try:
            configs.append(
                LimitClassConfig(
                    name=_name(name),
                    max_requests=int(values["max_requests"]),
                    window_seconds=float(values["window_seconds"]),
                )
            )
        except KeyError as e:
            raise ValueError(f"Limit class '{name}' is missing {e}") from e
    return configs
