import logging
from dataclasses import dataclass

from app_platform.config.rate_limit import ScopeLimit
from app_platform.rate_limit.window_limiter import RateLimiter
from app_platform.security.secure_store import SecureDataWrapper
from application.auth.lockout import LockoutPolicy
from application.auth.managers import IdentityManager, SessionManager
from application.auth.mfa import MfaEngine, MfaProvisioning, is_code_format_valid
from application.auth.notifications import EmailOutbox, mfa_reset_message, password_reset_message
from application.auth.passwords import PasswordHasher, validate_password_strength
from application.auth.reset_tokens import MFA_RESET, PASSWORD_RESET, RecoveryTokenService
from application.auth.services import AuditLogger, fingerprint
from domains.auth.exceptions import (
    AuthenticationError,
    AuthorizationError,
    LockedError,
    RateLimitError,
    ValidationError,
)
from domains.auth.models import ADMIN, HOTEL, AuthenticatedIdentity, Identity, Session

logger = logging.getLogger(__name__)

_TIMING_PASSWORD = "timing-equalizer-password"


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str
    user_agent: str


@dataclass
class LoginResult:
    identity: Identity
    session: Session
    requires_mfa: bool = False
    requires_mfa_setup: bool = False


def _throttle(limiter: RateLimiter, key: str, limit: ScopeLimit) -> None:
    if not limiter.check_and_record(key, limit.max_requests, limit.window_ms):
        raise RateLimitError(retry_after=limiter.retry_after(key, limit.window_ms))


class CredentialCheck:
    """Lockout-aware password verification shared by login and recovery flows.

    The lock is checked before any hash comparison. A wrong password counts
    toward the lockout threshold.
    """

    def __init__(self, identities: IdentityManager, lockout: LockoutPolicy, audit: AuditLogger, hasher: PasswordHasher):
        self.identities = identities
        self.lockout = lockout
        self.audit = audit
        self.hasher = hasher
        self._timing_hash = hasher.hash(_TIMING_PASSWORD)

    def execute(self, user_type: str, email: str, password: str, client: ClientInfo) -> Identity:
        identity = self.identities.find_by_email(user_type, email)
        if identity is None:
            # Same bcrypt cost as a real comparison.
            self.hasher.verify(password or "", self._timing_hash)
            self.audit.log_login_failure(
                "user_not_found",
                user_id=None,
                user_type=user_type,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                email=email,
            )
            raise AuthenticationError()

        if self.lockout.is_locked(identity):
            self._fail(identity, "account_locked", client)
            raise LockedError()

        if not identity.has_password():
            self._fail(identity, "password_not_configured", client)
            if identity.user_type == HOTEL:
                raise ValidationError("Password not configured", requiresSetup=True, hotelId=identity.id)
            raise AuthenticationError("Account not configured")

        if not self.hasher.verify(password or "", identity.password_hash or ""):
            locked_now = self.lockout.record_failure(identity)
            self._fail(identity, "wrong_password", client)
            if locked_now:
                self.audit.log_event(
                    "account_locked",
                    user_id=identity.id,
                    user_type=identity.user_type,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    details={"attempts": identity.login_attempts},
                )
            raise AuthenticationError()

        return identity

    def raise_if_locked(self, user_type: str, email: str, client: ClientInfo) -> None:
        """Answer 423 for a locked account before any throttle or hash work."""

        identity = self.identities.find_by_email(user_type, email)
        if identity is not None and self.lockout.is_locked(identity):
            self._fail(identity, "account_locked", client)
            raise LockedError()

    def _fail(self, identity: Identity, reason: str, client: ClientInfo) -> None:
        self.audit.log_login_failure(
            reason,
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )


class LoginIdentity:
    def __init__(
        self,
        credentials: CredentialCheck,
        sessions: SessionManager,
        lockout: LockoutPolicy,
        audit: AuditLogger,
        limiter: RateLimiter,
        limit: ScopeLimit,
    ):
        self.credentials = credentials
        self.sessions = sessions
        self.lockout = lockout
        self.audit = audit
        self.limiter = limiter
        self.limit = limit

    def execute(self, user_type: str, email: str, password: str, client: ClientInfo) -> LoginResult:
        # A locked account never consumes the per-address login budget.
        self.credentials.raise_if_locked(user_type, email, client)
        try:
            _throttle(self.limiter, f"login:{client.ip_address}", self.limit)
        except RateLimitError:
            self.audit.log_login_failure(
                "rate_limited",
                user_id=None,
                user_type=user_type,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                email=email,
            )
            raise

        identity = self.credentials.execute(user_type, email, password, client)
        session = self.sessions.create(identity, client.ip_address, client.user_agent)

        if identity.mfa_enabled:
            self._audit(identity, "login_requires_mfa", session, client)
            return LoginResult(identity, session, requires_mfa=True)

        if identity.mfa_mandatory:
            self._audit(identity, "login_requires_mfa_setup", session, client)
            return LoginResult(identity, session, requires_mfa_setup=True)

        self.lockout.record_success(identity)
        self.audit.log_login_success(identity.id, identity.user_type, client.ip_address, client.user_agent, session.token)
        return LoginResult(identity, session)

    def _audit(self, identity: Identity, action: str, session: Session, client: ClientInfo) -> None:
        self.audit.log_event(
            action,
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details={"session_token": session.token},
        )


class VerifyMfa:
    def __init__(self, identities: IdentityManager, sessions: SessionManager, mfa: MfaEngine, lockout: LockoutPolicy, audit: AuditLogger):
        self.identities = identities
        self.sessions = sessions
        self.mfa = mfa
        self.lockout = lockout
        self.audit = audit

    def execute(self, token: str, code: str, client: ClientInfo) -> Identity:
        session = self.sessions.validate(token)
        if session is None:
            raise AuthenticationError("Invalid session")
        if session.mfa_verified:
            raise ValidationError("MFA already verified for this session")

        identity = self.identities.require(session.user_type, session.user_id)
        if self.lockout.is_locked(identity):
            self._audit(identity, "mfa_verify_failed_account_locked", client)
            raise LockedError()

        rate_key = f"{client.ip_address}:{fingerprint(token)}"
        try:
            ok = self.mfa.verify(identity, code, rate_key=rate_key)
        except RateLimitError:
            self._audit(identity, "mfa_verify_rate_limited", client)
            raise

        if not ok:
            self._audit(identity, "mfa_verify_failed", client)
            raise ValidationError("Invalid verification code")

        self.sessions.mark_mfa_verified(token)
        self.lockout.record_success(identity)
        self._audit(identity, "mfa_verify_success", client, session_token=token)
        return identity

    def _audit(self, identity: Identity, action: str, client: ClientInfo, **details) -> None:
        self.audit.log_event(
            action,
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details=details,
        )


class SetupMfa:
    def __init__(self, identities: IdentityManager, mfa: MfaEngine, audit: AuditLogger):
        self.identities = identities
        self.mfa = mfa
        self.audit = audit

    def execute(self, actor: AuthenticatedIdentity, client: ClientInfo) -> MfaProvisioning:
        identity = self.identities.require(actor.type, actor.id)
        provisioning = self.mfa.setup(identity)
        self.audit.log_event(
            "mfa_setup_initiated",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return provisioning


class EnableMfa:
    """Confirm a pending TOTP secret.

    The calling session counts as MFA verified afterwards; for an
    administrator this completes the mandatory enrolment started at login.
    """

    def __init__(self, identities: IdentityManager, sessions: SessionManager, mfa: MfaEngine, lockout: LockoutPolicy, audit: AuditLogger):
        self.identities = identities
        self.sessions = sessions
        self.mfa = mfa
        self.lockout = lockout
        self.audit = audit

    def execute(self, actor: AuthenticatedIdentity, code: str, client: ClientInfo) -> Identity:
        if not is_code_format_valid(code):
            raise ValidationError("Verification code required (6 digits)")

        identity = self.identities.require(actor.type, actor.id)
        if self.lockout.is_locked(identity):
            self.audit.log_event(
                "mfa_enable_failed_account_locked",
                user_id=identity.id,
                user_type=identity.user_type,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            raise LockedError()

        try:
            self.mfa.enable(identity, code)
        except ValidationError as exc:
            self.audit.log_event(
                "mfa_enable_failed",
                user_id=identity.id,
                user_type=identity.user_type,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                details={"error": exc.message},
            )
            raise

        if not actor.mfa_verified:
            self.sessions.mark_mfa_verified(actor.session_token)
            self.lockout.record_success(identity)

        self.audit.log_event(
            "mfa_enabled",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return identity


class DisableMfa:
    """Turn MFA off after re-authenticating with password and a current code."""

    def __init__(self, identities: IdentityManager, mfa: MfaEngine, lockout: LockoutPolicy, audit: AuditLogger, hasher: PasswordHasher):
        self.identities = identities
        self.mfa = mfa
        self.lockout = lockout
        self.audit = audit
        self.hasher = hasher

    def execute(self, actor: AuthenticatedIdentity, password: str, code: str, client: ClientInfo) -> Identity:
        identity = self.identities.require(actor.type, actor.id)
        if identity.mfa_mandatory:
            self._audit(identity, "mfa_disable_denied", client)
            raise AuthorizationError("MFA is mandatory for administrators")
        if not identity.mfa_enabled:
            raise ValidationError("MFA is not enabled")

        if self.lockout.is_locked(identity):
            self._audit(identity, "mfa_disable_failed_account_locked", client)
            raise LockedError()
        if not self.hasher.verify(password or "", identity.password_hash or ""):
            self.lockout.record_failure(identity)
            self._audit(identity, "mfa_disable_failed_wrong_password", client)
            raise AuthenticationError()

        if not self.mfa.verify(identity, code):
            self._audit(identity, "mfa_disable_failed_invalid_code", client)
            raise ValidationError("Invalid verification code")

        self.mfa.disable(identity)
        self._audit(identity, "mfa_disabled", client)
        return identity

    def _audit(self, identity: Identity, action: str, client: ClientInfo) -> None:
        self.audit.log_event(
            action,
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )


class RequestMfaReset:
    """First step of lost-device recovery: prove the password, receive a link by email."""

    def __init__(
        self,
        credentials: CredentialCheck,
        recovery: RecoveryTokenService,
        outbox: EmailOutbox,
        audit: AuditLogger,
        limiter: RateLimiter,
        limit: ScopeLimit,
        *,
        base_url: str,
    ):
        self.credentials = credentials
        self.recovery = recovery
        self.outbox = outbox
        self.audit = audit
        self.limiter = limiter
        self.limit = limit
        self.base_url = base_url

    def execute(self, user_type: str, email: str, password: str, client: ClientInfo) -> bool:
        _throttle(self.limiter, f"email:{client.ip_address}", self.limit)
        identity = self.credentials.execute(user_type, email, password, client)
        if not identity.mfa_secret:
            return False

        token = self.recovery.issue(identity, MFA_RESET)
        self.outbox.put(
            mfa_reset_message(identity.email, token, identity.user_type, f"{self.base_url}/mfa-reset", self.recovery.ttl_seconds)
        )
        self.audit.log_event(
            "mfa_reset_requested",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return True


class CompleteMfaReset:
    def __init__(self, identities: IdentityManager, sessions: SessionManager, mfa: MfaEngine, recovery: RecoveryTokenService, audit: AuditLogger):
        self.identities = identities
        self.sessions = sessions
        self.mfa = mfa
        self.recovery = recovery
        self.audit = audit

    def execute(self, user_type: str, token: str, client: ClientInfo) -> Identity:
        identity = _redeem(self.identities, self.recovery, token, user_type, MFA_RESET)
        self.mfa.disable(identity)
        revoked = self.sessions.invalidate_identity(identity)
        self.audit.log_event(
            "mfa_reset",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details={"sessions_revoked": revoked},
        )
        return identity


class SetupPassword:
    def __init__(self, identities: IdentityManager, audit: AuditLogger, limiter: RateLimiter, limit: ScopeLimit):
        self.identities = identities
        self.audit = audit
        self.limiter = limiter
        self.limit = limit

    def execute(self, hotel_id: str, password: str, client: ClientInfo) -> Identity:
        _throttle(self.limiter, f"setup-password:{client.ip_address}", self.limit)
        identity = self.identities.setup_password(HOTEL, hotel_id, password)
        self.audit.log_event(
            "password_setup_success",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return identity


class ForgotPassword:
    """Queue a reset link for a known identity. Callers always answer generically."""

    def __init__(
        self,
        identities: IdentityManager,
        recovery: RecoveryTokenService,
        outbox: EmailOutbox,
        audit: AuditLogger,
        limiter: RateLimiter,
        limit: ScopeLimit,
        *,
        base_url: str,
    ):
        self.identities = identities
        self.recovery = recovery
        self.outbox = outbox
        self.audit = audit
        self.limiter = limiter
        self.limit = limit
        self.base_url = base_url

    def execute(self, user_type: str, email: str, client: ClientInfo) -> bool:
        _throttle(self.limiter, f"email:{client.ip_address}", self.limit)
        identity = self.identities.find_by_email(user_type, email)
        if identity is None:
            logger.info("Password reset requested for unknown %s email", user_type)
            return False

        token = self.recovery.issue(identity, PASSWORD_RESET)
        self.outbox.put(
            password_reset_message(identity.email, token, identity.user_type, f"{self.base_url}/reset-password", self.recovery.ttl_seconds)
        )
        self.audit.log_event(
            "password_reset_requested",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return True


class ResetPassword:
    def __init__(
        self,
        identities: IdentityManager,
        sessions: SessionManager,
        lockout: LockoutPolicy,
        recovery: RecoveryTokenService,
        audit: AuditLogger,
    ):
        self.identities = identities
        self.sessions = sessions
        self.lockout = lockout
        self.recovery = recovery
        self.audit = audit

    def execute(self, user_type: str, token: str, password: str, client: ClientInfo) -> Identity:
        identity = _redeem(self.identities, self.recovery, token, user_type, PASSWORD_RESET)
        ok, message = validate_password_strength(password, self.identities.password_min_length)
        if not ok:
            raise ValidationError(message)

        self.identities.change_password(identity, password)
        self.lockout.clear(identity)
        revoked = self.sessions.invalidate_identity(identity)
        self.audit.log_event(
            "password_reset",
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details={"sessions_revoked": revoked},
        )
        return identity


class Logout:
    def __init__(self, sessions: SessionManager, audit: AuditLogger):
        self.sessions = sessions
        self.audit = audit

    def execute(self, actor: AuthenticatedIdentity, client: ClientInfo) -> bool:
        changed = self.sessions.invalidate(actor.session_token)
        self.audit.log_session_destruction(actor.session_token, actor.id, actor.type, client.ip_address)
        return changed


class EmergencyLockdown:
    """Revoke every session and freeze non-administrator storage access."""

    def __init__(self, sessions: SessionManager, store: SecureDataWrapper, audit: AuditLogger):
        self.sessions = sessions
        self.store = store
        self.audit = audit

    def execute(self, actor: AuthenticatedIdentity, reason: str, client: ClientInfo) -> int:
        if actor.type != ADMIN:
            raise AuthorizationError()
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Lockdown reason required")

        self.store.lockdown(reason)
        revoked = self.sessions.invalidate_all()
        self.audit.log_event(
            "emergency_lockdown",
            user_id=actor.id,
            user_type=actor.type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details={"reason": reason, "sessions_revoked": revoked},
        )
        logger.critical("Emergency lockdown by %s: %s", actor.id, reason)
        return revoked


def _redeem(identities: IdentityManager, recovery: RecoveryTokenService, token: str, user_type: str, purpose: str) -> Identity:
    claims = recovery.decode(token, purpose)
    if claims is None or claims.user_type != user_type:
        raise ValidationError("Invalid or expired token")
    identity = identities.get(claims.user_type, claims.identity_id)
    if identity is None or not recovery.matches(claims, identity):
        raise ValidationError("Invalid or expired token")
    return identity
