"""Tests for the message catalog."""

from identity.core.messages import get_message


def test_formats_parameters():
    assert (
        get_message("password_reset_token_expired", token="abc")
        == "Password reset token 'abc' is invalid or expired"
    )


def test_plain_message():
    assert get_message("password_confirmation_not_provided") == (
        "Password confirmation is required"
    )


def test_unknown_code_falls_back_to_code(caplog):
    assert get_message("no_such_code") == "no_such_code"
    assert "no_such_code" in caplog.text
