"""Tests for local password hashing and policy."""

from __future__ import annotations

import pytest

from oidc_broker.exceptions import NewPasswordValidationError
from oidc_broker.security.password import hash_password, validate_new_password, verify_password


class TestHashPassword:
    """Tests for hash_password / verify_password."""

    def test_hash_verifies_with_same_password(self) -> None:
        """Given a hashed password, the same password verifies."""
        # Arrange
        encoded = hash_password("s3cret-pass")

        # Act
        result = verify_password("s3cret-pass", encoded)

        # Assert
        assert result is True

    def test_wrong_password_does_not_verify(self) -> None:
        """Given a hashed password, a different password is rejected."""
        # Arrange
        encoded = hash_password("s3cret-pass")

        # Act
        result = verify_password("other-pass", encoded)

        # Assert
        assert result is False

    def test_hashes_are_salted(self) -> None:
        """Given the same password twice, the encoded hashes differ."""
        # Act
        first = hash_password("s3cret-pass")
        second = hash_password("s3cret-pass")

        # Assert
        assert first != second

    def test_encoding_records_algorithm_and_rounds(self) -> None:
        """Given explicit iterations, they are part of the encoding."""
        # Act
        encoded = hash_password("s3cret-pass", iterations=1234)

        # Assert
        algorithm, rounds, _salt, _digest = encoded.split("$")
        assert algorithm == "pbkdf2_sha256"
        assert rounds == "1234"

    @pytest.mark.parametrize("encoded", ["", "garbage", "md5$1$abc$def", "pbkdf2_sha256$x$abc$def"])
    def test_malformed_hash_never_verifies(self, encoded: str) -> None:
        """Given a malformed stored hash, verification fails instead of raising."""
        # Act & Assert
        assert verify_password("anything", encoded) is False


class TestValidateNewPassword:
    """Tests for the local password policy."""

    def test_accepts_reasonable_password(self) -> None:
        """Given a long, varied password, no error is raised."""
        # Act & Assert (should not raise)
        validate_new_password("tr0ub4dor&3", "alice")

    def test_rejects_short_password(self) -> None:
        """Given a password under the minimum length, raises."""
        # Act & Assert
        with pytest.raises(NewPasswordValidationError, match="at least"):
            validate_new_password("short", "alice")

    def test_rejects_username_as_password(self) -> None:
        """Given the username (any case) as password, raises."""
        # Act & Assert
        with pytest.raises(NewPasswordValidationError, match="username"):
            validate_new_password("Alice.Example", "alice.example")

    def test_rejects_single_repeated_character(self) -> None:
        """Given one character repeated, raises."""
        # Act & Assert
        with pytest.raises(NewPasswordValidationError, match="single character"):
            validate_new_password("aaaaaaaaaa", "alice")

    def test_error_reason_is_invalid_password(self) -> None:
        """Given a policy violation, the error carries reason invalid_password."""
        # Act
        with pytest.raises(NewPasswordValidationError) as exc_info:
            validate_new_password("x", "alice")

        # Assert
        assert exc_info.value.reason == "invalid_password"
