"""Configuration utilities and loaders."""

from .auth import AuthConfig
from .rate_limit import RateLimitScopes, ScopeLimit

__all__ = [
    "AuthConfig",
    "RateLimitScopes",
    "ScopeLimit",
]
