"""HTTP blueprints for the auth service."""

from __future__ import annotations

from .auth_routes import auth_bp
from .security_routes import security_bp

__all__ = ["auth_bp", "security_bp"]
