"""Authentication service composition root.

Entry points:
    - :func:`create_app` constructs and wires a Flask application instance.
    - :func:`bootstrap_runtime` builds the underlying service dependencies.
    - :func:`register_healthcheck` exposes a lightweight readiness endpoint.

All runtime state is carried inside the Flask application factory; no
module-level singletons are required. The rate limiter and the audit trail
are process-local, so every worker process enforces its own windows.

Missing key material is fatal: :func:`bootstrap_runtime` raises
``ConfigurationError`` and the service does not start.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from adapters.db.sqlite.identities import IdentitiesTable
from adapters.db.sqlite.records import RecordsTable
from adapters.db.sqlite.security_logs import SecurityLogTable
from adapters.db.sqlite.sessions import SessionsTable
from app_platform.config.auth import AuthConfig
from app_platform.errors.api import register_error_handlers
from app_platform.rate_limit.window_limiter import RateLimiter
from app_platform.security import SecretBox, SecureDataWrapper
from application.auth.commands import CredentialCheck
from application.auth.lockout import LockoutPolicy
from application.auth.managers import IdentityManager, SessionManager
from application.auth.mfa import MfaEngine
from application.auth.notifications import EmailOutbox, InMemoryOutbox, outbox_size
from application.auth.passwords import PasswordHasher
from application.auth.reset_tokens import RecoveryTokenService
from application.auth.services import AuditLogger
from logging_lib import configure as configure_structured_logging, get_logger as get_structured_logger
from logging_lib import get_settings as get_logging_settings
from logging_lib.flask_ext import register_flask_context

from apps.auth_service.http.security_headers import register_security_headers

logger = get_structured_logger("auth.main")


DEFAULT_CONFIG_PATH = os.getenv("ITINERA_CONFIG_PATH", "configs/auth_config.json")


@dataclass(slots=True)
class AuthRuntime:
    """Container for the auth service runtime dependencies."""

    config: AuthConfig
    identities_table: IdentitiesTable
    security_logs: SecurityLogTable
    hasher: PasswordHasher
    identity_manager: IdentityManager
    session_manager: SessionManager
    lockout: LockoutPolicy
    mfa_engine: MfaEngine
    audit_logger: AuditLogger
    rate_limiter: RateLimiter
    credentials: CredentialCheck
    recovery_tokens: RecoveryTokenService
    outbox: EmailOutbox
    secure_store: SecureDataWrapper
    clock: Callable[[], float]


def create_app(
    config: Optional[AuthConfig] = None,
    *,
    config_path: str | None = None,
    hasher: Optional[PasswordHasher] = None,
    outbox: Optional[EmailOutbox] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Flask:
    """Construct the auth Flask application.

    Parameters
    ----------
    config:
        Fully built configuration; when omitted it is loaded from
        ``config_path`` layered over ``ITINERA_*`` environment variables.
    hasher, outbox, clock:
        Optional overrides for the password hasher, the email outbox and the
        wall clock shared by every time-based component.
    """

    logging.basicConfig(level=logging.INFO)
    configure_structured_logging(get_logging_settings())
    logger.info("Creating auth service application")

    app = Flask(__name__)
    register_flask_context(app, service="auth")

    runtime = bootstrap_runtime(app, config=config, config_path=config_path, hasher=hasher, outbox=outbox, clock=clock)
    if runtime.config.cors_origins:
        CORS(app, origins=list(runtime.config.cors_origins), supports_credentials=True)
    register_error_handlers(app)
    register_security_headers(app, hsts=runtime.config.secure_cookies)
    register_healthcheck(app, runtime)
    _register_request_hooks(app, runtime)
    _register_blueprints(app)

    return app


def bootstrap_runtime(
    app: Flask,
    *,
    config: Optional[AuthConfig] = None,
    config_path: str | None = None,
    hasher: Optional[PasswordHasher] = None,
    outbox: Optional[EmailOutbox] = None,
    clock: Optional[Callable[[], float]] = None,
) -> AuthRuntime:
    """Initialize configuration and shared dependencies for the auth service."""

    auth_config = config or AuthConfig.from_file(config_path or DEFAULT_CONFIG_PATH)
    auth_config.validate()

    wall_clock = clock or time.time
    limits = auth_config.rate_limits

    identities_table = IdentitiesTable(auth_config.db_path)
    sessions_table = SessionsTable(auth_config.db_path)
    security_logs = SecurityLogTable(auth_config.db_path)
    records = RecordsTable(auth_config.db_path)

    secret_box = SecretBox(auth_config.secret_keys)
    password_hasher = hasher or PasswordHasher()
    # Window arithmetic uses a monotonic clock unless a test clock is injected.
    rate_limiter = RateLimiter(clock=clock)
    audit_logger = AuditLogger(security_logs, clock=wall_clock)

    identity_manager = IdentityManager(
        identities_table, password_hasher, password_min_length=auth_config.password_min_length
    )
    session_manager = SessionManager(
        sessions_table, identities_table, session_duration=auth_config.session_duration, clock=wall_clock
    )
    lockout = LockoutPolicy(
        identities_table,
        max_attempts=auth_config.max_login_attempts,
        lockout_duration=auth_config.lockout_duration,
        clock=wall_clock,
    )
    mfa_engine = MfaEngine(
        identities_table,
        secret_box,
        rate_limiter,
        limits.mfa,
        issuer=auth_config.mfa_issuer,
        valid_window=auth_config.mfa_valid_window,
        clock=wall_clock,
    )
    secure_store = SecureDataWrapper(
        records,
        rate_limiter,
        limits.storage,
        audit_logger,
        timeout_s=auth_config.storage_timeout,
        max_results=auth_config.storage_max_results,
    )

    runtime = AuthRuntime(
        config=auth_config,
        identities_table=identities_table,
        security_logs=security_logs,
        hasher=password_hasher,
        identity_manager=identity_manager,
        session_manager=session_manager,
        lockout=lockout,
        mfa_engine=mfa_engine,
        audit_logger=audit_logger,
        rate_limiter=rate_limiter,
        credentials=CredentialCheck(identity_manager, lockout, audit_logger, password_hasher),
        recovery_tokens=RecoveryTokenService(
            auth_config.token_signing_key, ttl_seconds=auth_config.reset_token_ttl, clock=wall_clock
        ),
        outbox=outbox if outbox is not None else InMemoryOutbox(),
        secure_store=secure_store,
        clock=wall_clock,
    )

    app.config.setdefault("AUTH_SERVICE_RUNTIME", runtime)

    logger.info(
        "Auth service runtime initialized",
        extra={
            "db_path": auth_config.db_path,
            "encryption_keys": len(auth_config.secret_keys),
            "session_duration": auth_config.session_duration,
            "max_login_attempts": auth_config.max_login_attempts,
            "secure_cookies": auth_config.secure_cookies,
        },
    )

    return runtime


def register_healthcheck(app: Flask, runtime: AuthRuntime) -> None:
    """Expose a simple readiness endpoint."""

    @app.route("/healthz", methods=["GET"])
    def _healthcheck():
        storage = runtime.secure_store.health_check()
        status = {
            "status": "ok" if storage["status"] == "healthy" else "degraded",
            "storage": storage["status"],
            "lockdown": storage["lockdown"],
            "pending_emails": outbox_size(runtime.outbox),
        }
        return jsonify(status), 200 if storage["status"] == "healthy" else 500


def _register_request_hooks(app: Flask, runtime: AuthRuntime) -> None:
    """Attach request lifecycle hooks so blueprints can pull dependencies."""

    @app.before_request
    def _attach_runtime_to_request() -> None:
        request.auth_runtime = runtime
        request.auth_config = runtime.config
        request.session_manager = runtime.session_manager
        request.identity_manager = runtime.identity_manager
        request.audit_logger = runtime.audit_logger
        request.rate_limiter = runtime.rate_limiter


def _register_blueprints(app: Flask) -> None:
    """Register HTTP route blueprints."""

    from apps.auth_service.http import auth_bp, security_bp  # noqa: WPS433

    app.register_blueprint(auth_bp)
    app.register_blueprint(security_bp)


def main() -> None:  # pragma: no cover - CLI entrypoint
    app = create_app()
    port = int(os.getenv("ITINERA_PORT", "5000"))
    host = os.getenv("ITINERA_HOST", "0.0.0.0")
    logger.info("Starting auth service", extra={"host": host, "port": port})
    app.run(host=host, port=port, debug=False)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
