from __future__ import annotations

import pytest
from pydantic import ValidationError

from advisory_api.schemas.auth import CompleteProfileIn, LoginIn, LoginType, ResetPasswordIn, SocialLoginIn
from advisory_api.schemas.otp import OtpVerifyIn, ResendOtpIn


def test_login_phone_normalizes():
    payload = LoginIn(type="phone", phone=" +1 (415) 555-1234 ")
    assert payload.type == LoginType.PHONE
    assert payload.phone == "+14155551234"


@pytest.mark.parametrize("phone", ["12", "+0123456789", "phone-number", "+1234567890123456"])
def test_login_rejects_bad_phone(phone):
    with pytest.raises(ValidationError):
        LoginIn(type="PHONE", phone=phone)


def test_login_phone_required():
    with pytest.raises(ValidationError):
        LoginIn(type="PHONE")


def test_login_email_requires_password():
    with pytest.raises(ValidationError):
        LoginIn(type="EMAIL", email="a@example.com")
    with pytest.raises(ValidationError):
        LoginIn(type="EMAIL", email="a@example.com", password="   ")

    payload = LoginIn(type="email", email=" A@Example.COM ", password="secret-pass")
    assert payload.email == "a@example.com"


def test_login_unknown_type():
    with pytest.raises(ValidationError):
        LoginIn(type="FAX", phone="+14155551234")


def test_social_login_type_is_case_insensitive():
    assert SocialLoginIn(type="Google", id_token="t").type.value == "google"
    with pytest.raises(ValidationError):
        SocialLoginIn(type="google", id_token="")


def test_complete_profile_terms_must_be_true():
    with pytest.raises(ValidationError):
        CompleteProfileIn(first_name="A", last_name="B", is_advisor=False, terms_accepted=False)
    ok = CompleteProfileIn(first_name=" A ", last_name="B", is_advisor=True, terms_accepted=True)
    assert ok.first_name == "A"


def test_reset_password_confirmation_and_length():
    with pytest.raises(ValidationError):
        ResetPasswordIn(reset_token="t", new_password="abc", confirm_password="abc")
    with pytest.raises(ValidationError):
        ResetPasswordIn(reset_token="t", new_password="abcdefgh", confirm_password="abcdefgi")
    assert ResetPasswordIn(reset_token="t", new_password="abcdefgh", confirm_password="abcdefgh")


def test_otp_verify_needs_a_medium():
    with pytest.raises(ValidationError):
        OtpVerifyIn(otp_id="o", code="123456")
    assert OtpVerifyIn(otp_id="o", code="123456", phone="+14155551234").phone == "+14155551234"


def test_resend_purpose_and_identifier():
    with pytest.raises(ValidationError):
        ResendOtpIn(type="EMAIL", purpose="verify", email="a@example.com")
    with pytest.raises(ValidationError):
        ResendOtpIn(type="EMAIL", purpose="login")
    assert ResendOtpIn(type="phone", purpose="reset", phone="+14155551234").type == LoginType.PHONE
