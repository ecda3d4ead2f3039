"""Authentication configuration management."""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from domains.auth.exceptions import ConfigurationError

from .rate_limit import RateLimitScopes

logger = logging.getLogger(__name__)

ENV_PREFIX = "ITINERA_"


def _env(source: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = source.get(f"{ENV_PREFIX}{name}")
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _int(source: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(source, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


def _csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass
class AuthConfig:
    """Authentication system configuration.

    ``secret_keys`` and ``token_signing_key`` are mandatory; :meth:`validate`
    raises :class:`ConfigurationError` when either is missing so the service
    refuses to start.
    """

    # Key material
    secret_keys: Tuple[str, ...] = ()  # Fernet keys, first one encrypts
    token_signing_key: Optional[str] = None

    # Session settings
    session_duration: int = 7200  # 2 hours
    secure_cookies: bool = True
    session_cookie_name: str = "session_token"

    # Lockout
    max_login_attempts: int = 5
    lockout_duration: int = 1800  # 30 minutes

    # Password policy
    password_min_length: int = 12

    # MFA
    mfa_issuer: str = "Itinera Hotel Management"
    mfa_valid_window: int = 2

    # Password reset
    reset_token_ttl: int = 3600
    app_base_url: str = "http://localhost:5000"

    # HTTP
    cors_origins: Tuple[str, ...] = ()

    # Storage
    db_path: str = "itinera.sqlite3"
    storage_timeout: float = 30.0
    storage_max_results: int = 1000

    rate_limits: RateLimitScopes = field(default_factory=RateLimitScopes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuthConfig":
        """Load configuration from environment variables."""

        source = os.environ if environ is None else environ
        logger.info("Loading auth configuration from environment variables")
        return cls(
            secret_keys=_csv(_env(source, "SECRET_KEYS")),
            token_signing_key=_env(source, "TOKEN_SIGNING_KEY"),
            session_duration=_int(source, "SESSION_DURATION", 7200),
            secure_cookies=(_env(source, "SECURE_COOKIES", "true") or "true").lower() in {"1", "true", "yes"},
            max_login_attempts=_int(source, "MAX_LOGIN_ATTEMPTS", 5),
            lockout_duration=_int(source, "LOCKOUT_DURATION", 1800),
            password_min_length=_int(source, "PASSWORD_MIN_LENGTH", 12),
            mfa_issuer=_env(source, "MFA_ISSUER", "Itinera Hotel Management") or "Itinera Hotel Management",
            reset_token_ttl=_int(source, "RESET_TOKEN_TTL", 3600),
            app_base_url=_env(source, "APP_BASE_URL", "http://localhost:5000") or "http://localhost:5000",
            cors_origins=_csv(_env(source, "CORS_ORIGINS")),
            db_path=_env(source, "DB_PATH", "itinera.sqlite3") or "itinera.sqlite3",
            storage_timeout=float(_int(source, "STORAGE_TIMEOUT", 30)),
            rate_limits=RateLimitScopes.from_env(source),
        )

    @classmethod
    def from_file(cls, config_path: str, environ: Optional[Mapping[str, str]] = None) -> "AuthConfig":
        """Load configuration from a JSON file layered over the environment.

        Key material is never read from the file; it always comes from the
        environment.
        """

        base = cls.from_env(environ)
        try:
            logger.info(f"Loading auth configuration from file: {config_path}")
            with open(config_path, "r") as f:
                data: Dict[str, Any] = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Auth config file not found: {config_path}, using environment only")
            return base

        known = {f.name for f in fields(cls)} - {"secret_keys", "token_signing_key", "rate_limits"}
        for key, value in data.items():
            if key == "cors_origins" and isinstance(value, (list, tuple)):
                base.cors_origins = tuple(str(v) for v in value)
            elif key in known:
                setattr(base, key, value)
            elif key == "rate_limits" and isinstance(value, Mapping):
                base.rate_limits = base.rate_limits.with_overrides(value)
            else:
                logger.warning("Ignoring unknown auth config key %s", key)
        logger.info("Auth configuration loaded successfully")
        return base

    def validate(self) -> bool:
        """Validate configuration settings; raise on anything fatal."""

        logger.info("Validating auth configuration")

        if not self.secret_keys:
            raise ConfigurationError(f"{ENV_PREFIX}SECRET_KEYS is required")

        if not self.token_signing_key or len(self.token_signing_key) < 32:
            raise ConfigurationError(f"{ENV_PREFIX}TOKEN_SIGNING_KEY is required (min 32 characters)")

        for name in ("session_duration", "max_login_attempts", "lockout_duration", "reset_token_ttl"):
            if int(getattr(self, name)) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.storage_timeout <= 0:
            raise ConfigurationError("storage_timeout must be positive")

        if self.session_duration < 300:  # Minimum 5 minutes
            logger.warning(f"Session duration too short: {self.session_duration}s")

        if self.password_min_length < 8:
            logger.warning(f"Password minimum length too low: {self.password_min_length}")

        if not self.secure_cookies:
            logger.warning("Session cookies are not marked Secure")

        self.rate_limits.validate()

        logger.info("Auth configuration validation completed")

        return True
