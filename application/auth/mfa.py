"""TOTP second factor lifecycle.

State is derived from the identity record: no secret means *unconfigured*,
a secret with ``mfa_enabled=False`` means *pending verification*, and
``mfa_enabled=True`` means *enabled*. Secrets are only ever persisted as
ciphertext produced by :class:`SecretBox`.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Optional

import pyotp
import qrcode

from adapters.db.sqlite.identities import IdentitiesTable
from app_platform.config.rate_limit import ScopeLimit
from app_platform.rate_limit.window_limiter import RateLimiter
from app_platform.security.secret_box import SecretBox
from domains.auth.exceptions import RateLimitError, ValidationError
from domains.auth.models import Identity

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class MfaProvisioning:
    """Material shown to the user exactly once during setup."""

    secret: str
    otpauth_url: str
    qr_code_data_url: str


def render_qr_data_url(uri: str) -> str:
    """Render ``uri`` as a PNG QR code wrapped in a data URL."""

    img = qrcode.make(uri)
    buf = BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def is_code_format_valid(code: Optional[str]) -> bool:
    return bool(code) and bool(CODE_PATTERN.match(str(code)))


class MfaEngine:
    """Setup, enable, verify and disable TOTP for an identity."""

    def __init__(
        self,
        identities: IdentitiesTable,
        secret_box: SecretBox,
        limiter: RateLimiter,
        verify_limit: ScopeLimit,
        *,
        issuer: str = "Itinera Hotel Management",
        valid_window: int = 2,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.identities = identities
        self.secret_box = secret_box
        self.limiter = limiter
        self.verify_limit = verify_limit
        self.issuer = issuer
        self.valid_window = valid_window
        self._clock = clock or time.time

    def setup(self, identity: Identity) -> MfaProvisioning:
        """Generate and store a new secret; MFA stays disabled until :meth:`enable`."""

        if identity.mfa_enabled:
            raise ValidationError("MFA is already enabled")

        secret = pyotp.random_base32(length=32)
        label = f"Itinera ({identity.email})"
        uri = pyotp.TOTP(secret).provisioning_uri(name=label, issuer_name=self.issuer)

        identity.mfa_secret = self.secret_box.encrypt(secret)
        self.identities.upsert(identity)
        logger.info("MFA setup started for %s/%s", identity.user_type, identity.id)

        return MfaProvisioning(secret=secret, otpauth_url=uri, qr_code_data_url=render_qr_data_url(uri))

    def enable(self, identity: Identity, code: str, *, rate_key: Optional[str] = None) -> None:
        """Confirm the pending secret with a valid code and turn MFA on."""

        self._throttle(identity, rate_key)
        if identity.mfa_enabled:
            raise ValidationError("MFA is already enabled")
        if not identity.mfa_secret:
            raise ValidationError("MFA setup not found")
        if not self.check_code(identity, code):
            raise ValidationError("Invalid verification code")

        identity.mfa_enabled = True
        self.identities.upsert(identity)
        logger.info("MFA enabled for %s/%s", identity.user_type, identity.id)

    def verify(self, identity: Identity, code: str, *, rate_key: Optional[str] = None) -> bool:
        """Second login step. Counted against the ``mfa`` scope, never the lockout counter."""

        self._throttle(identity, rate_key)
        if not identity.mfa_enabled or not identity.mfa_secret:
            return False
        return self.check_code(identity, code)

    def disable(self, identity: Identity) -> None:
        identity.mfa_secret = None
        identity.mfa_enabled = False
        self.identities.upsert(identity)
        logger.info("MFA disabled for %s/%s", identity.user_type, identity.id)

    def _throttle(self, identity: Identity, rate_key: Optional[str]) -> None:
        key = f"mfa:{rate_key or f'{identity.user_type}:{identity.id}'}"
        if not self.limiter.check_and_record(key, self.verify_limit.max_requests, self.verify_limit.window_ms):
            logger.warning("MFA attempts rate limited for %s/%s", identity.user_type, identity.id)
            raise RateLimitError(retry_after=self.limiter.retry_after(key, self.verify_limit.window_ms))

    def check_code(self, identity: Identity, code: str) -> bool:
        """Match ``code`` against the stored secret within +/- ``valid_window`` steps."""

        if not is_code_format_valid(code) or not identity.mfa_secret:
            return False
        secret = self.secret_box.decrypt(identity.mfa_secret)
        return pyotp.TOTP(secret).verify(str(code), for_time=int(self._clock()), valid_window=self.valid_window)
