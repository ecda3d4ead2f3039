"""Auth service package bootstrap."""

from __future__ import annotations

from .main import AuthRuntime, bootstrap_runtime, create_app, register_healthcheck

__all__ = ["AuthRuntime", "create_app", "bootstrap_runtime", "register_healthcheck"]
