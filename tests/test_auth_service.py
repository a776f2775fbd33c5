from __future__ import annotations

import uuid

import pytest

from advisory_api.core.errors import (
    ConflictError,
    DependencyError,
    ForbiddenError,
    NotImplementedProviderError,
    UnauthorizedError,
    ValidationError,
)
from advisory_api.core.security import verify_password
from advisory_api.models.otp import Otp
from advisory_api.models.user import User
from advisory_api.services.otp_delivery import DeliveryQueueError, OtpDeliveryQueue
from advisory_api.services.social_identity import InvalidSocialTokenError, SocialIdentity


PASSWORD = "Tr0ub4dor&3x"


class FakeGoogle:
    def __init__(self, identity: SocialIdentity | None = None, error: Exception | None = None):
        self.identity = identity
        self.error = error
        self.tokens: list[str] = []

    def verify(self, token: str) -> SocialIdentity:
        self.tokens.append(token)
        if self.error is not None:
            raise self.error
        return self.identity


def _google(sub="google-sub-1", email="g@example.com", verified=True, name="Gee User") -> FakeGoogle:
    return FakeGoogle(SocialIdentity(provider_id=sub, email=email, email_verified=verified, name=name))


def _verified_email_user(make_user, email="member@example.com", password=PASSWORD) -> User:
    return make_user(email=email, password=password, provider="email", is_email_verified=True)


# -----------------------------
# Phone login
# -----------------------------
def test_phone_login_creates_user_and_sends_otp(ctx, db_session, outbox):
    result = ctx.auth.login("PHONE", phone="+1 415 555 1234")
    assert result["message"] == "OTP sent to your phone"

    user = db_session.query(User).filter(User.phone == "+14155551234").one()
    assert user.provider == "phone"
    assert user.is_phone_verified is False

    assert len(outbox) == 1
    assert outbox[0]["otp_id"] == result["otp_id"]
    assert outbox[0]["phone"] == "+14155551234"
    assert outbox[0]["purpose"] == "login"

    tokens = ctx.auth.verify_login_otp(result["otp_id"], outbox[0]["code"], phone="+14155551234")
    assert tokens["user"].id == user.id
    db_session.refresh(user)
    assert user.is_phone_verified is True


def test_phone_login_reuses_existing_user(ctx, db_session, outbox):
    ctx.auth.login("PHONE", phone="+14155551234")
    ctx.auth.login("PHONE", phone="+14155551234")
    assert db_session.query(User).count() == 1
    assert len(outbox) == 2


def test_phone_login_absorbs_concurrent_signup(ctx, db_session, make_user, outbox, monkeypatch):
    existing = make_user(provider="phone", phone="+14155551234")
    real_get_by_phone = ctx.users.get_by_phone
    calls = {"n": 0}

    def _stale_then_real(phone):
        calls["n"] += 1
        # First lookup misses, as if another request inserted the row right after it.
        return None if calls["n"] == 1 else real_get_by_phone(phone)

    monkeypatch.setattr(ctx.users, "get_by_phone", _stale_then_real)

    result = ctx.auth.login("PHONE", phone="+14155551234")
    assert result["otp_id"]
    assert db_session.query(User).count() == 1
    assert outbox[0]["user_id"] == existing.id


def test_phone_login_deleted_user_is_rejected(ctx, make_user, outbox):
    make_user(provider="phone", phone="+14155551234", is_deleted=True)
    with pytest.raises(UnauthorizedError):
        ctx.auth.login("PHONE", phone="+14155551234")
    assert outbox == []


def test_login_queue_failure_is_retryable_and_leaves_no_usable_otp(ctx, db_session, monkeypatch):
    def _fail(self, job):  # noqa: ARG001
        raise DeliveryQueueError("broker down")

    monkeypatch.setattr(OtpDeliveryQueue, "enqueue", _fail)

    with pytest.raises(DependencyError):
        ctx.auth.login("PHONE", phone="+14155551234")
    assert db_session.query(Otp).filter(Otp.used.is_(False)).count() == 0


def test_unsupported_login_type(ctx):
    with pytest.raises(ValidationError):
        ctx.auth.login("CARRIER_PIGEON", phone="+14155551234")


# -----------------------------
# Email login
# -----------------------------
def test_email_signup_sends_otp_then_verifies(ctx, db_session, outbox):
    result = ctx.auth.login("EMAIL", email="New@Example.com", password=PASSWORD)
    assert result["message"] == "OTP sent to your email"

    users = db_session.query(User).filter(User.email == "new@example.com").all()
    assert len(users) == 1
    user = users[0]
    assert user.provider == "email"
    assert user.password_hash and user.password_hash != PASSWORD
    assert verify_password(PASSWORD, user.password_hash)

    # Unverified account: password login is refused until the OTP is used.
    with pytest.raises(ForbiddenError):
        ctx.auth.login("EMAIL", email="new@example.com", password=PASSWORD)

    tokens = ctx.auth.verify_login_otp(result["otp_id"], outbox[0]["code"], email="new@example.com")
    assert tokens["profile_completion_required"] is True
    db_session.refresh(user)
    assert user.is_email_verified is True

    again = ctx.auth.login("EMAIL", email="new@example.com", password=PASSWORD)
    assert again["access_token"]
    assert again["user"].id == user.id


def test_email_signup_rejects_weak_password(ctx, db_session, outbox):
    with pytest.raises(ValidationError) as exc:
        ctx.auth.login("EMAIL", email="weak@example.com", password="password")
    assert exc.value.details["code"] == "WEAK_PASSWORD"
    assert db_session.query(User).count() == 0
    assert outbox == []


def test_email_login_wrong_password_is_generic(ctx, make_user):
    _verified_email_user(make_user)
    with pytest.raises(UnauthorizedError) as exc:
        ctx.auth.login("EMAIL", email="member@example.com", password="Wr0ng-password!")
    assert exc.value.message == "Invalid credentials"


def test_password_is_checked_before_verification_status(ctx, make_user):
    make_user(email="pending@example.com", password=PASSWORD, is_email_verified=False)
    with pytest.raises(UnauthorizedError):
        ctx.auth.login("EMAIL", email="pending@example.com", password="Wr0ng-password!")


def test_email_login_deleted_user(ctx, make_user):
    make_user(email="gone@example.com", password=PASSWORD, is_email_verified=True, is_deleted=True)
    with pytest.raises(UnauthorizedError) as exc:
        ctx.auth.login("EMAIL", email="gone@example.com", password=PASSWORD)
    assert exc.value.message == "Invalid credentials"


def test_email_login_success_updates_last_login(ctx, db_session, make_user):
    user = _verified_email_user(make_user)
    assert user.last_login_at is None

    result = ctx.auth.login("EMAIL", email="member@example.com", password=PASSWORD, device_info="laptop")
    assert result["token_type"] == "bearer"
    db_session.refresh(user)
    assert user.last_login_at is not None


def test_concurrent_email_signup_surfaces_conflict(ctx, db_session, make_user, outbox, monkeypatch):
    make_user(email="dup@example.com", password=PASSWORD)
    # Simulate the lookup racing with another insert.
    monkeypatch.setattr(ctx.users, "get_by_email", lambda email: None)

    with pytest.raises(ConflictError):
        ctx.auth.login("EMAIL", email="dup@example.com", password=PASSWORD)
    db_session.expire_all()
    assert db_session.query(User).filter(User.email == "dup@example.com").count() == 1
    assert outbox == []


# -----------------------------
# Social login
# -----------------------------
def test_google_login_creates_verified_user(ctx, db_session):
    ctx.auth.social_verifiers["google"] = _google()

    result = ctx.auth.social_login("google", "id-token", device_id="pixel")
    user = result["user"]
    assert user.provider == "google"
    assert user.provider_id == "google-sub-1"
    assert user.email == "g@example.com"
    assert user.is_email_verified is True
    assert user.name == "Gee User"

    again = ctx.auth.social_login("google", "id-token")
    assert again["user"].id == user.id
    assert db_session.query(User).count() == 1


def test_google_login_unverified_email_stays_unverified(ctx):
    ctx.auth.social_verifiers["google"] = _google(verified=False)
    result = ctx.auth.social_login("google", "id-token")
    assert result["user"].is_email_verified is False


def test_google_login_backfills_provider_id_without_overwriting(ctx, db_session, make_user):
    user = make_user(provider="google", email="g@example.com", name="Original Name")
    ctx.auth.social_verifiers["google"] = _google(name="New Name")

    result = ctx.auth.social_login("google", "id-token")
    assert result["user"].id == user.id
    db_session.refresh(user)
    assert user.provider_id == "google-sub-1"
    assert user.name == "Original Name"
    assert user.is_email_verified is True


def test_google_login_email_owned_by_other_provider(ctx, make_user):
    _verified_email_user(make_user, email="g@example.com")
    ctx.auth.social_verifiers["google"] = _google()

    with pytest.raises(ConflictError):
        ctx.auth.social_login("google", "id-token")


def test_google_login_email_linked_to_other_subject(ctx, make_user):
    make_user(provider="google", provider_id="someone-else", email="g@example.com")
    ctx.auth.social_verifiers["google"] = _google()

    with pytest.raises(ConflictError):
        ctx.auth.social_login("google", "id-token")


def test_google_login_invalid_token(ctx):
    ctx.auth.social_verifiers["google"] = FakeGoogle(error=InvalidSocialTokenError("bad audience"))
    with pytest.raises(UnauthorizedError) as exc:
        ctx.auth.social_login("google", "id-token")
    assert exc.value.message == "Invalid identity token"


def test_google_login_deleted_user(ctx, make_user):
    make_user(provider="google", provider_id="google-sub-1", email="g@example.com", is_deleted=True)
    ctx.auth.social_verifiers["google"] = _google()
    with pytest.raises(UnauthorizedError):
        ctx.auth.social_login("google", "id-token")


def test_apple_login_not_implemented(ctx):
    with pytest.raises(NotImplementedProviderError):
        ctx.auth.social_login("apple", "id-token")


def test_unknown_social_provider(ctx):
    with pytest.raises(ValidationError):
        ctx.auth.social_login("myspace", "id-token")


# -----------------------------
# Refresh / logout
# -----------------------------
def test_refresh_rotates_session(ctx, make_user):
    user = _verified_email_user(make_user)
    first = ctx.auth.sign_tokens_for_user(user, device_info="d1")

    second = ctx.auth.refresh(first["refresh_token"])
    assert second["refresh_token"] != first["refresh_token"]
    assert second["user"].id == user.id

    with pytest.raises(UnauthorizedError):
        ctx.auth.refresh(first["refresh_token"])


def test_refresh_for_deleted_user_revokes_session(ctx, db_session, make_user):
    user = _verified_email_user(make_user)
    tokens = ctx.auth.sign_tokens_for_user(user)
    user.is_deleted = True
    db_session.commit()

    with pytest.raises(UnauthorizedError):
        ctx.auth.refresh(tokens["refresh_token"])
    session_id = tokens["refresh_token"].split(".")[0]
    assert ctx.sessions.is_session_active(session_id) is False


def test_logout_revokes_every_session(ctx, make_user):
    user = _verified_email_user(make_user)
    a = ctx.auth.sign_tokens_for_user(user, device_info="phone")
    b = ctx.auth.sign_tokens_for_user(user, device_info="laptop")

    result = ctx.auth.logout(user.id)
    assert result == {"message": "Logged out", "revoked_sessions": 2}
    for tokens in (a, b):
        assert ctx.sessions.validate_refresh_token(tokens["refresh_token"]) is None


# -----------------------------
# Profile completion
# -----------------------------
def test_complete_profile_for_phone_user(ctx, db_session, make_user):
    user = make_user(provider="phone", phone="+14155551234", is_phone_verified=True)

    updated = ctx.auth.complete_profile(
        user.id,
        first_name=" Ada ",
        last_name="Lovelace",
        is_advisor=True,
        terms_accepted=True,
        email="ADA@example.com",
    )
    assert updated.profile_completed is True
    assert updated.terms_accepted_at is not None
    assert updated.email == "ada@example.com"
    assert updated.first_name == "Ada"
    assert updated.name == "Ada Lovelace"
    assert updated.is_advisor is True

    with pytest.raises(ConflictError) as exc:
        ctx.auth.complete_profile(
            user.id, first_name="A", last_name="L", is_advisor=False, terms_accepted=True, email="x@example.com"
        )
    assert exc.value.message == "Profile already completed"

    db_session.refresh(user)
    assert user.first_name == "Ada"
    assert user.last_name == "Lovelace"
    assert user.email == "ada@example.com"
    assert user.is_advisor is True


def test_complete_profile_phone_user_needs_email(ctx, make_user):
    user = make_user(provider="phone", phone="+14155551234")
    with pytest.raises(ValidationError):
        ctx.auth.complete_profile(user.id, first_name="A", last_name="L", is_advisor=False, terms_accepted=True)


def test_complete_profile_email_user_needs_unique_phone(ctx, db_session, make_user):
    make_user(provider="phone", phone="+14155551234")
    user = _verified_email_user(make_user)

    with pytest.raises(ConflictError):
        ctx.auth.complete_profile(
            user.id, first_name="A", last_name="L", is_advisor=False, terms_accepted=True, phone="+14155551234"
        )
    db_session.refresh(user)
    assert user.profile_completed is False

    done = ctx.auth.complete_profile(
        user.id, first_name="A", last_name="L", is_advisor=False, terms_accepted=True, phone="+14155550000"
    )
    assert done.phone == "+14155550000"


def test_complete_profile_requires_terms(ctx, make_user):
    user = _verified_email_user(make_user)
    with pytest.raises(ValidationError):
        ctx.auth.complete_profile(
            user.id, first_name="A", last_name="L", is_advisor=False, terms_accepted=False, phone="+14155550000"
        )


# -----------------------------
# Password reset
# -----------------------------
def _reset_token(ctx, outbox, email="member@example.com") -> str:
    requested = ctx.auth.request_password_reset(email)
    code = outbox[-1]["code"]
    verified = ctx.auth.verify_password_reset_otp(email, requested["otp_id"], code)
    assert verified["expires_in"] == 15 * 60
    return verified["reset_token"]


def test_password_reset_flow(ctx, make_user, outbox):
    user = _verified_email_user(make_user)
    session = ctx.auth.sign_tokens_for_user(user)

    token = _reset_token(ctx, outbox)
    assert outbox[-1]["purpose"] == "reset"
    assert outbox[-1]["email"] == "member@example.com"

    result = ctx.auth.reset_password(token, "N3w-passphrase!")
    assert result == {"message": "Password has been reset successfully"}

    # All sessions are gone after a reset.
    assert ctx.sessions.validate_refresh_token(session["refresh_token"]) is None

    with pytest.raises(UnauthorizedError):
        ctx.auth.login("EMAIL", email="member@example.com", password=PASSWORD)
    assert ctx.auth.login("EMAIL", email="member@example.com", password="N3w-passphrase!")["access_token"]


def test_reset_token_is_single_use(ctx, make_user, outbox):
    _verified_email_user(make_user)
    token = _reset_token(ctx, outbox)

    ctx.auth.reset_password(token, "N3w-passphrase!")
    with pytest.raises(UnauthorizedError):
        ctx.auth.reset_password(token, "An0ther-passphrase!")


def test_reset_request_for_unknown_email_looks_identical(ctx, make_user, outbox):
    _verified_email_user(make_user)
    known = ctx.auth.request_password_reset("member@example.com")
    unknown = ctx.auth.request_password_reset("nobody@example.com")

    assert set(known) == set(unknown) == {"otp_id", "message"}
    assert known["message"] == unknown["message"]
    uuid.UUID(unknown["otp_id"])
    assert len(outbox) == 1


def test_reset_request_for_unknown_email_still_hashes_a_code(ctx, outbox, monkeypatch):
    hashed = []
    real_hash = ctx.otps.hasher.hash

    def _counting_hash(secret):
        hashed.append(secret)
        return real_hash(secret)

    monkeypatch.setattr(ctx.otps.hasher, "hash", _counting_hash)

    ctx.auth.request_password_reset("nobody@example.com")
    assert len(hashed) == 1
    assert len(hashed[0]) == 6
    assert outbox == []


def test_reset_request_invalidates_previous_reset_codes(ctx, db_session, make_user, outbox):
    user = _verified_email_user(make_user)
    first = ctx.auth.request_password_reset("member@example.com")
    ctx.auth.request_password_reset("member@example.com")

    with pytest.raises(UnauthorizedError):
        ctx.auth.verify_password_reset_otp("member@example.com", first["otp_id"], outbox[0]["code"])
    usable = db_session.query(Otp).filter(Otp.user_id == user.id, Otp.used.is_(False)).count()
    assert usable == 1


def test_reset_request_for_social_account(ctx, make_user, outbox):
    make_user(provider="google", provider_id="sub", email="g@example.com")
    with pytest.raises(ValidationError):
        ctx.auth.request_password_reset("g@example.com")
    assert outbox == []


def test_reset_otp_bound_to_email(ctx, make_user, outbox):
    _verified_email_user(make_user)
    make_user(email="other@example.com", password=PASSWORD, is_email_verified=True)
    requested = ctx.auth.request_password_reset("member@example.com")

    with pytest.raises(UnauthorizedError):
        ctx.auth.verify_password_reset_otp("other@example.com", requested["otp_id"], outbox[0]["code"])


def test_login_otp_cannot_be_used_for_reset(ctx, make_user, outbox):
    ctx.auth.login("EMAIL", email="fresh@example.com", password=PASSWORD)
    job = outbox[0]
    with pytest.raises(UnauthorizedError):
        ctx.auth.verify_password_reset_otp("fresh@example.com", job["otp_id"], job["code"])


def test_reset_password_rejects_access_token(ctx, make_user):
    user = _verified_email_user(make_user)
    tokens = ctx.auth.sign_tokens_for_user(user)
    with pytest.raises(UnauthorizedError):
        ctx.auth.reset_password(tokens["access_token"], "N3w-passphrase!")


def test_reset_password_enforces_policy(ctx, make_user, outbox):
    _verified_email_user(make_user)
    token = _reset_token(ctx, outbox)
    with pytest.raises(ValidationError):
        ctx.auth.reset_password(token, "123456")
