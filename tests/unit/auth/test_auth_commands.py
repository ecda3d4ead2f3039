"""Tests for the login, MFA and recovery use cases."""

from __future__ import annotations

import pyotp
import pytest

from app_platform.config.rate_limit import ScopeLimit
from application.auth import commands
from application.auth.notifications import InMemoryOutbox
from application.auth.reset_tokens import MFA_RESET, PASSWORD_RESET, RecoveryTokenService
from domains.auth.exceptions import (
    AuthenticationError,
    AuthorizationError,
    LockedError,
    RateLimitError,
    ValidationError,
)
from domains.auth.models import AuthenticatedIdentity

STRONG_PASSWORD = "Sunrise!Harbor42"

KEY = "recovery-signing-key-0123456789abcdef"


@pytest.fixture
def credentials(identity_manager, lockout, audit, fast_hasher):
    return commands.CredentialCheck(identity_manager, lockout, audit, fast_hasher)


@pytest.fixture
def login(credentials, session_manager, lockout, audit, limiter, scopes):
    return commands.LoginIdentity(credentials, session_manager, lockout, audit, limiter, scopes.login)


@pytest.fixture
def recovery(clock):
    return RecoveryTokenService(KEY, clock=clock)


@pytest.fixture
def outbox():
    return InMemoryOutbox()


def _actor(session, verified=None):
    return AuthenticatedIdentity(
        id=session.user_id,
        type=session.user_type,
        mfa_verified=session.mfa_verified if verified is None else verified,
        session_token=session.token,
    )


def _enable_mfa(mfa_engine, identity, clock):
    secret = mfa_engine.setup(identity).secret
    mfa_engine.enable(identity, pyotp.TOTP(secret).at(int(clock())))
    return secret


def _wrong_code(secret, clock):
    totp = pyotp.TOTP(secret)
    accepted = {totp.at(int(clock()) + step * 30) for step in range(-2, 3)}
    return next(code for code in ("000000", "111111", "222222") if code not in accepted)


# --------------------- credential check and login ---------------------
def test_unknown_email_is_generic_and_audited(login, client, security_logs):
    with pytest.raises(AuthenticationError) as excinfo:
        login.execute("hotel", "nobody@example.com", STRONG_PASSWORD, client)

    assert excinfo.value.message == "Invalid credentials"
    (entry,) = security_logs.recent()
    assert entry.action == "login_failed_user_not_found"
    assert "email" not in entry.details
    assert entry.details["email_fingerprint"]


def test_hotel_login_without_mfa_succeeds(login, client, hotel, identities_table, clock):
    result = login.execute("hotel", hotel.email, STRONG_PASSWORD, client)

    assert result.requires_mfa is False
    assert result.requires_mfa_setup is False
    assert result.session.mfa_verified is True
    assert identities_table.get("hotel", hotel.id).last_login == clock()


def test_email_lookup_is_case_insensitive(login, client, hotel):
    assert login.execute("hotel", hotel.email.upper(), STRONG_PASSWORD, client).identity.id == hotel.id


def test_admin_without_mfa_must_enrol(login, client, admin):
    result = login.execute("admin", admin.email, STRONG_PASSWORD, client)

    assert result.requires_mfa_setup is True
    assert result.session.mfa_verified is False


def test_mfa_enabled_identity_gets_second_step(login, client, hotel, mfa_engine, clock, identities_table):
    _enable_mfa(mfa_engine, hotel, clock)

    result = login.execute("hotel", hotel.email, STRONG_PASSWORD, client)

    assert result.requires_mfa is True
    assert result.session.mfa_verified is False


def test_sixth_attempt_is_locked_even_with_correct_password(login, client, hotel, security_logs):
    for _ in range(5):
        with pytest.raises(AuthenticationError):
            login.execute("hotel", hotel.email, "Wrong!Password1", client)

    with pytest.raises(LockedError) as excinfo:
        login.execute("hotel", hotel.email, STRONG_PASSWORD, client)

    assert excinfo.value.status == 423
    actions = [e.action for e in security_logs.recent(limit=100)]
    assert "account_locked" in actions
    assert actions[0] == "login_failed_account_locked"


def test_lock_lifts_after_thirty_minutes(login, client, hotel, clock):
    for _ in range(5):
        with pytest.raises(AuthenticationError):
            login.execute("hotel", hotel.email, "Wrong!Password1", client)

    clock.advance(1800)
    assert login.execute("hotel", hotel.email, STRONG_PASSWORD, client).session.token


def test_login_throttle_is_per_address(credentials, session_manager, lockout, audit, limiter, client, hotel, security_logs):
    login = commands.LoginIdentity(credentials, session_manager, lockout, audit, limiter, ScopeLimit(2, 900))
    login.execute("hotel", hotel.email, STRONG_PASSWORD, client)
    login.execute("hotel", hotel.email, STRONG_PASSWORD, client)

    with pytest.raises(RateLimitError) as excinfo:
        login.execute("hotel", hotel.email, STRONG_PASSWORD, client)

    assert excinfo.value.retry_after == 900
    assert security_logs.recent()[0].action == "login_failed_rate_limited"
    other = commands.ClientInfo(ip_address="198.51.100.1", user_agent="ua")
    assert login.execute("hotel", hotel.email, STRONG_PASSWORD, other).session


def test_hotel_without_password_is_sent_to_setup(login, client, identity_manager):
    pending = identity_manager.register("hotel", "new@hotel.example")

    with pytest.raises(ValidationError) as excinfo:
        login.execute("hotel", pending.email, "whatever", client)

    assert excinfo.value.extra == {"requiresSetup": True, "hotelId": pending.id}


# --------------------- MFA ---------------------
def test_verify_mfa_marks_session(identity_manager, session_manager, mfa_engine, lockout, audit, client, hotel, clock, login):
    secret = _enable_mfa(mfa_engine, hotel, clock)
    session = login.execute("hotel", hotel.email, STRONG_PASSWORD, client).session
    verify = commands.VerifyMfa(identity_manager, session_manager, mfa_engine, lockout, audit)

    with pytest.raises(ValidationError):
        verify.execute(session.token, _wrong_code(secret, clock), client)

    verify.execute(session.token, pyotp.TOTP(secret).at(int(clock())), client)

    assert session_manager.validate(session.token).mfa_verified is True
    with pytest.raises(ValidationError, match="already"):
        verify.execute(session.token, pyotp.TOTP(secret).at(int(clock())), client)


def test_verify_mfa_with_dead_session(identity_manager, session_manager, mfa_engine, lockout, audit, client):
    verify = commands.VerifyMfa(identity_manager, session_manager, mfa_engine, lockout, audit)
    with pytest.raises(AuthenticationError):
        verify.execute("f" * 64, "123456", client)


def _lock_out(credentials, identity, client):
    for _ in range(5):
        with pytest.raises(AuthenticationError):
            credentials.execute(identity.user_type, identity.email, "Wrong!Password1", client)


def test_verify_mfa_is_refused_while_account_is_locked(identity_manager, session_manager, mfa_engine, lockout, audit, client, hotel, clock, login, credentials, identities_table, security_logs):
    secret = _enable_mfa(mfa_engine, hotel, clock)
    session = login.execute("hotel", hotel.email, STRONG_PASSWORD, client).session
    _lock_out(credentials, hotel, client)
    verify = commands.VerifyMfa(identity_manager, session_manager, mfa_engine, lockout, audit)

    with pytest.raises(LockedError):
        verify.execute(session.token, pyotp.TOTP(secret).at(int(clock())), client)

    stored = identities_table.get("hotel", hotel.id)
    assert stored.locked_until is not None and stored.locked_until > clock()
    assert stored.login_attempts == 5
    assert session_manager.validate(session.token).mfa_verified is False
    assert security_logs.recent(limit=1)[0].action == "mfa_verify_failed_account_locked"

    clock.advance(1800)
    verify.execute(session.token, pyotp.TOTP(secret).at(int(clock())), client)
    assert session_manager.validate(session.token).mfa_verified is True


def test_enable_mfa_is_refused_while_account_is_locked(identity_manager, session_manager, mfa_engine, lockout, audit, client, admin, clock, login, credentials, identities_table):
    session = login.execute("admin", admin.email, STRONG_PASSWORD, client).session
    actor = _actor(session)
    secret = commands.SetupMfa(identity_manager, mfa_engine, audit).execute(actor, client).secret
    _lock_out(credentials, admin, client)

    enable = commands.EnableMfa(identity_manager, session_manager, mfa_engine, lockout, audit)
    with pytest.raises(LockedError):
        enable.execute(actor, pyotp.TOTP(secret).at(int(clock())), client)

    stored = identities_table.get("admin", admin.id)
    assert stored.mfa_enabled is False
    assert stored.login_attempts == 5
    assert session_manager.validate(session.token).mfa_verified is False


def test_enable_mfa_completes_admin_enrolment(identity_manager, session_manager, mfa_engine, lockout, audit, client, admin, clock, login):
    session = login.execute("admin", admin.email, STRONG_PASSWORD, client).session
    actor = _actor(session)
    secret = commands.SetupMfa(identity_manager, mfa_engine, audit).execute(actor, client).secret

    enable = commands.EnableMfa(identity_manager, session_manager, mfa_engine, lockout, audit)
    with pytest.raises(ValidationError):
        enable.execute(actor, "12ab", client)

    enable.execute(actor, pyotp.TOTP(secret).at(int(clock())), client)

    assert session_manager.validate(session.token).mfa_verified is True


def test_disable_mfa_requires_password_and_code(identity_manager, session_manager, mfa_engine, lockout, audit, client, hotel, clock, fast_hasher, identities_table):
    secret = _enable_mfa(mfa_engine, hotel, clock)
    session = session_manager.create(hotel, client.ip_address, client.user_agent)
    actor = _actor(session, verified=True)
    disable = commands.DisableMfa(identity_manager, mfa_engine, lockout, audit, fast_hasher)

    with pytest.raises(AuthenticationError):
        disable.execute(actor, "Wrong!Password1", pyotp.TOTP(secret).at(int(clock())), client)
    assert identities_table.get("hotel", hotel.id).login_attempts == 1

    with pytest.raises(ValidationError):
        disable.execute(actor, STRONG_PASSWORD, "abc", client)

    disable.execute(actor, STRONG_PASSWORD, pyotp.TOTP(secret).at(int(clock())), client)
    assert identities_table.get("hotel", hotel.id).mfa_state() == "unconfigured"


def test_admins_cannot_disable_mfa(identity_manager, session_manager, mfa_engine, lockout, audit, client, admin, fast_hasher):
    session = session_manager.create(admin, client.ip_address, client.user_agent)
    disable = commands.DisableMfa(identity_manager, mfa_engine, lockout, audit, fast_hasher)

    with pytest.raises(AuthorizationError):
        disable.execute(_actor(session, verified=True), STRONG_PASSWORD, "123456", client)


# --------------------- recovery ---------------------
def test_forgot_password_queues_link_only_for_known_identity(identity_manager, recovery, outbox, audit, limiter, scopes, client, hotel):
    forgot = commands.ForgotPassword(identity_manager, recovery, outbox, audit, limiter, scopes.email, base_url="https://app.example")

    assert forgot.execute("hotel", "nobody@example.com", client) is False
    assert forgot.execute("hotel", hotel.email, client) is True

    (message,) = outbox.drain()
    assert message.to == hotel.email
    assert message.kind == "password_reset"
    assert "https://app.example/reset-password?token=" in message.body


def test_reset_password_is_single_use(identity_manager, session_manager, lockout, recovery, audit, client, hotel, fast_hasher, identities_table):
    token = recovery.issue(hotel, PASSWORD_RESET)
    session = session_manager.create(hotel, client.ip_address, client.user_agent)
    reset = commands.ResetPassword(identity_manager, session_manager, lockout, recovery, audit)

    with pytest.raises(ValidationError):
        reset.execute("hotel", token, "weak", client)

    reset.execute("hotel", token, "Another!Harbor77", client)

    stored = identities_table.get("hotel", hotel.id)
    assert fast_hasher.verify("Another!Harbor77", stored.password_hash)
    assert session_manager.validate(session.token) is None
    with pytest.raises(ValidationError, match="Invalid or expired"):
        reset.execute("hotel", token, "Third!Harbor99x", client)


def test_reset_token_for_other_user_type_is_rejected(identity_manager, session_manager, lockout, recovery, audit, client, hotel):
    token = recovery.issue(hotel, PASSWORD_RESET)
    reset = commands.ResetPassword(identity_manager, session_manager, lockout, recovery, audit)

    with pytest.raises(ValidationError):
        reset.execute("admin", token, "Another!Harbor77", client)


def test_mfa_reset_round_trip(credentials, identity_manager, session_manager, mfa_engine, recovery, outbox, audit, limiter, scopes, client, hotel, clock, identities_table):
    _enable_mfa(mfa_engine, hotel, clock)
    request_reset = commands.RequestMfaReset(credentials, recovery, outbox, audit, limiter, scopes.email, base_url="https://app.example")

    assert request_reset.execute("hotel", hotel.email, STRONG_PASSWORD, client) is True
    (message,) = outbox.drain()
    assert message.kind == "mfa_reset"

    token = recovery.issue(identities_table.get("hotel", hotel.id), MFA_RESET)
    commands.CompleteMfaReset(identity_manager, session_manager, mfa_engine, recovery, audit).execute("hotel", token, client)

    assert identities_table.get("hotel", hotel.id).mfa_state() == "unconfigured"


def test_setup_password_once(identity_manager, audit, limiter, scopes, client, fast_hasher):
    pending = identity_manager.register("hotel", "new@hotel.example")
    setup = commands.SetupPassword(identity_manager, audit, limiter, scopes.login)

    setup.execute(pending.id, STRONG_PASSWORD, client)
    assert fast_hasher.verify(STRONG_PASSWORD, identity_manager.get("hotel", pending.id).password_hash)

    with pytest.raises(ValidationError, match="already"):
        setup.execute(pending.id, STRONG_PASSWORD, client)


def test_emergency_lockdown(session_manager, audit, client, hotel, admin, security_logs):
    class _Store:
        reason = None

        def lockdown(self, reason):
            self.reason = reason

    store = _Store()
    session_manager.create(hotel, "ip", "ua")
    admin_session = session_manager.create(admin, "ip", "ua")
    lockdown = commands.EmergencyLockdown(session_manager, store, audit)

    with pytest.raises(ValidationError):
        lockdown.execute(_actor(admin_session, verified=True), "  ", client)
    with pytest.raises(AuthorizationError):
        lockdown.execute(AuthenticatedIdentity(id=hotel.id, type="hotel", mfa_verified=True), "x", client)

    assert lockdown.execute(_actor(admin_session, verified=True), "key leak", client) == 2
    assert store.reason == "key leak"
    assert security_logs.recent(action="emergency_lockdown")[0].details["reason"] == "key leak"
