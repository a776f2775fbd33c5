from __future__ import annotations

import pytest

from advisory_api.core import config as app_config
from advisory_api.core.errors import ValidationError
from advisory_api.core.password_policy import ensure_strong_password, evaluate_password


def test_strong_password_has_no_violations():
    assert evaluate_password("Tr0ub4dor&3x", email="someone@example.com") == []


def test_min_length_follows_settings():
    app_config.settings.PASSWORD_MIN_LENGTH = 10
    assert "min_length" in evaluate_password("Short1!x")


def test_common_passwords_are_denied():
    assert "denylist_common" in evaluate_password("Password123")


def test_password_containing_email_local_part():
    assert "contains_email" in evaluate_password("advisor-2024!", email="advisor@example.com")


def test_password_longer_than_bcrypt_input():
    assert "max_length" in evaluate_password("x" * 73)


def test_ensure_strong_password_error_details():
    with pytest.raises(ValidationError) as exc:
        ensure_strong_password("123456")
    assert exc.value.status_code == 400
    assert exc.value.details["code"] == "WEAK_PASSWORD"
    assert "denylist_common" in exc.value.details["violations"]
