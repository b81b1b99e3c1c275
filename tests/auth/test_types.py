"""Tests for account domain models and request validation."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from auth.types import (
    ChangePasswordRequest,
    EmailRequest,
    PasswordResetRequest,
    Role,
    SignUpRequest,
    TokenPurpose,
    validate_password_policy,
)
from fakes import GOOD_PASSWORD, OTHER_PASSWORD, make_user
from utils.timezone import now_utc


class TestPasswordPolicy:

    @pytest.mark.parametrize("password", [GOOD_PASSWORD, "Zz9$" * 10, "Passw0rd!"])
    def test_accepts_compliant(self, password):
        assert validate_password_policy(password) == password

    @pytest.mark.parametrize(
        "password",
        [
            "Aa1!aaa",          # too short
            "Aa1!" * 10 + "a",  # 41 chars
            "aa1!aaaa",         # no uppercase
            "AA1!AAAA",         # no lowercase
            "Aaa!aaaa",         # no digit
            "Aa1aaaaa",         # no special
            "Aa1!aaa#",         # special outside the allowed set
            "Aa1! aaaa",        # whitespace
        ],
    )
    def test_rejects_non_compliant(self, password):
        with pytest.raises(ValueError):
            validate_password_policy(password)


class TestTokenPurpose:

    def test_column_names(self):
        assert TokenPurpose.EMAIL_VERIFICATION.token_field == "email_verification_token"
        assert TokenPurpose.PASSWORD_RESET.expires_field == "password_reset_expires"
        assert TokenPurpose.REACTIVATION.token_field == "reactivation_token"


class TestUser:

    def test_defaults(self):
        user = make_user()

        assert user.email_verified is False
        assert user.active is True
        assert user.suspended is False
        assert user.role is Role.CUSTOMER

    def test_token_pair(self):
        expires = now_utc() + timedelta(hours=4)
        user = make_user(password_reset_token="r", password_reset_expires=expires)

        assert user.token_pair(TokenPurpose.PASSWORD_RESET) == ("r", expires)
        assert user.token_pair(TokenPurpose.REACTIVATION) == (None, None)

    def test_public_dict_strips_secrets(self):
        user = make_user(
            password_hash="$argon2id$...",
            email_verification_token="secret",
            email_verification_expires=now_utc(),
        )

        public = user.public_dict()

        assert "password_hash" not in public
        assert "email_verification_token" not in public
        assert "email_verification_expires" not in public
        assert public["email"] == user.email
        assert public["id"] == str(user.id)

    def test_repr_hides_tokens(self):
        user = make_user(password_hash="hash-value", password_reset_token="reset-value")

        assert "hash-value" not in repr(user)
        assert "reset-value" not in repr(user)

    def test_has_password(self):
        assert make_user(password_hash="h").has_password is True
        assert make_user().has_password is False


class TestRequests:

    def test_signup_valid(self):
        body = SignUpRequest(username="ann", email="Ann@Example.com", password=GOOD_PASSWORD)
        assert body.username == "ann"

    def test_signup_weak_password(self):
        with pytest.raises(ValidationError):
            SignUpRequest(username="ann", email="ann@example.com", password="weak")

    def test_signup_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            SignUpRequest(
                username="ann", email="ann@example.com", password=GOOD_PASSWORD, role="ADMIN"
            )

    def test_email_request_rejects_invalid_email(self):
        with pytest.raises(ValidationError):
            EmailRequest(email="not-an-email")

    def test_reset_passwords_must_match(self):
        with pytest.raises(ValidationError):
            PasswordResetRequest(password=GOOD_PASSWORD, confirm_password=OTHER_PASSWORD)

    def test_reset_valid(self):
        body = PasswordResetRequest(password=GOOD_PASSWORD, confirm_password=GOOD_PASSWORD)
        assert body.password == GOOD_PASSWORD

    def test_change_new_must_differ_from_old(self):
        with pytest.raises(ValidationError):
            ChangePasswordRequest(
                old_password=GOOD_PASSWORD,
                new_password=GOOD_PASSWORD,
                confirm_new_password=GOOD_PASSWORD,
            )

    def test_change_confirmation_must_match(self):
        with pytest.raises(ValidationError):
            ChangePasswordRequest(
                old_password=GOOD_PASSWORD,
                new_password=OTHER_PASSWORD,
                confirm_new_password=OTHER_PASSWORD + "x",
            )

    def test_change_valid(self):
        body = ChangePasswordRequest(
            old_password=GOOD_PASSWORD,
            new_password=OTHER_PASSWORD,
            confirm_new_password=OTHER_PASSWORD,
        )
        assert body.new_password == OTHER_PASSWORD
