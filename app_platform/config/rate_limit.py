from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, Mapping, Tuple

from domains.auth.exceptions import ConfigurationError


@dataclass(frozen=True)
class ScopeLimit:
    """``max_requests`` per ``window_s`` seconds for one logical scope."""

    max_requests: int
    window_s: int

    @property
    def window_ms(self) -> int:
        return self.window_s * 1000

    @classmethod
    def parse(cls, raw: str) -> "ScopeLimit":
        """Parse ``"max/window_s"``."""

        try:
            max_part, window_part = raw.split("/", 1)
            return cls(int(max_part), int(window_part))
        except ValueError:
            raise ConfigurationError(f"invalid rate limit {raw!r}, expected 'max/window_s'") from None


@dataclass(frozen=True)
class RateLimitScopes:
    """Per-scope fixed-window limits."""

    login: ScopeLimit = ScopeLimit(5, 15 * 60)
    mfa: ScopeLimit = ScopeLimit(10, 5 * 60)
    storage: ScopeLimit = ScopeLimit(100, 60)
    email: ScopeLimit = ScopeLimit(20, 60)
    ai: ScopeLimit = ScopeLimit(5, 60)

    SCOPES: ClassVar[Tuple[str, ...]] = ("login", "mfa", "storage", "email", "ai")

    @classmethod
    def from_env(cls, source: Mapping[str, str]) -> "RateLimitScopes":
        """Read ``ITINERA_RATE_LIMIT_<SCOPE>`` overrides."""

        overrides: Dict[str, Any] = {}
        for scope in cls.SCOPES:
            raw = source.get(f"ITINERA_RATE_LIMIT_{scope.upper()}")
            if raw:
                overrides[scope] = raw
        return cls().with_overrides(overrides)

    def with_overrides(self, overrides: Mapping[str, Any]) -> "RateLimitScopes":
        parsed: Dict[str, ScopeLimit] = {}
        for scope, value in overrides.items():
            if scope not in self.SCOPES:
                raise ConfigurationError(f"unknown rate limit scope {scope!r}")
            if isinstance(value, ScopeLimit):
                parsed[scope] = value
            elif isinstance(value, Mapping):
                parsed[scope] = ScopeLimit(int(value["max_requests"]), int(value["window_s"]))
            else:
                parsed[scope] = ScopeLimit.parse(str(value))
        return replace(self, **parsed) if parsed else self

    def get(self, scope: str) -> ScopeLimit:
        if scope not in self.SCOPES:
            raise KeyError(scope)
        return getattr(self, scope)

    def validate(self) -> None:
        for scope in self.SCOPES:
            limit = self.get(scope)
            if limit.max_requests <= 0 or limit.window_s <= 0:
                raise ConfigurationError(f"rate limit scope {scope} must be positive")
