"""Tests for password strength rules."""

import pytest

from src.shared.validators.password import validate_password_strength


class TestPasswordValidation:
    @pytest.mark.parametrize(
        "password",
        ["Delivery2024", "Secure@Pass123!", "Abcdefg1", "Sécure123", "Two Words 9x", "Long" * 30 + "A1"],
    )
    def test_accepts_strong_passwords(self, password):
        assert validate_password_strength(password) == password

    @pytest.mark.parametrize(
        "password,message",
        [
            ("Ab1", "at least 8 characters"),
            ("A1" + "a" * 127, "at most 128 characters"),
            (" Delivery2024", "must not start or end with whitespace"),
            ("Delivery2024\t", "must not start or end with whitespace"),
            ("delivery2024", "at least one uppercase letter"),
            ("DELIVERY2024", "at least one lowercase letter"),
            ("DeliveryApp", "at least one digit"),
        ],
    )
    def test_rejects_weak_passwords(self, password, message):
        with pytest.raises(ValueError, match=message):
            validate_password_strength(password)

    def test_first_failing_rule_is_reported(self):
        with pytest.raises(ValueError, match="uppercase"):
            validate_password_strength("onlylowercase")
