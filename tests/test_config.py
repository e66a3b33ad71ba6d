"""Tests for broker configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from oidc_broker.config import BrokerConfig, load_broker_config
from oidc_broker.exceptions import ConfigurationError


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Complete configuration file."""
    path = tmp_path / "broker.conf"
    path.write_text(
        "[authd]\n"
        "dbus_name = com.ubuntu.authd.OidcBroker\n"
        "dbus_object = /com/ubuntu/authd/OidcBroker\n"
        "\n"
        "[oidc]\n"
        "issuer = https://login.example.com\n"
        "client_id = my-client-id\n"
        "home_base_dir = /srv/home\n"
    )
    return path


# ============================================================================
# Tests: BrokerConfig
# ============================================================================


class TestBrokerConfig:
    """Tests for BrokerConfig validation."""

    def test_defaults(self) -> None:
        """Given only issuer and client_id, defaults fill the rest."""
        # Act
        config = BrokerConfig(issuer="https://login.example.com", client_id="c")

        # Assert
        assert config.home_base_dir == "/home"
        assert config.provider is None
        assert config.qr_code is True

    @pytest.mark.parametrize("issuer", ["login.example.com", "ftp://login.example.com", "https://"])
    def test_issuer_must_be_http_url(self, issuer: str) -> None:
        """Given an issuer that is not an http(s) URL, validation fails."""
        # Act & Assert
        with pytest.raises(ValidationError, match="issuer"):
            BrokerConfig(issuer=issuer, client_id="c")

    def test_unknown_provider_rejected(self) -> None:
        """Given an unregistered provider name, validation fails."""
        # Act & Assert
        with pytest.raises(ValidationError, match="unknown provider"):
            BrokerConfig(issuer="https://login.example.com", client_id="c", provider="okta")

    def test_empty_provider_means_inferred(self) -> None:
        """Given an empty provider value, it is treated as unset."""
        # Act & Assert
        assert BrokerConfig(issuer="https://login.example.com", client_id="c", provider="").provider is None


# ============================================================================
# Tests: load_broker_config
# ============================================================================


class TestLoadBrokerConfig:
    """Tests for load_broker_config."""

    def test_loads_both_sections(self, config_file: Path, tmp_path: Path) -> None:
        """Given a complete file, all values are loaded."""
        # Act
        config = load_broker_config(config_file, cache_path=tmp_path / "cache")

        # Assert
        assert config.issuer == "https://login.example.com"
        assert config.client_id == "my-client-id"
        assert config.home_base_dir == "/srv/home"
        assert config.dbus_name == "com.ubuntu.authd.OidcBroker"
        assert config.cache_path == tmp_path / "cache"

    def test_missing_file(self, tmp_path: Path) -> None:
        """Given a path that does not exist, raises ConfigurationError."""
        # Act & Assert
        with pytest.raises(ConfigurationError, match="not found"):
            load_broker_config(tmp_path / "missing.conf")

    def test_missing_oidc_section(self, tmp_path: Path) -> None:
        """Given a file without [oidc], raises ConfigurationError."""
        # Arrange
        path = tmp_path / "broker.conf"
        path.write_text("[authd]\ndbus_name = x\n")

        # Act & Assert
        with pytest.raises(ConfigurationError, match=r"\[oidc\]"):
            load_broker_config(path)

    def test_missing_client_id(self, tmp_path: Path) -> None:
        """Given [oidc] without client_id, the error names the field."""
        # Arrange
        path = tmp_path / "broker.conf"
        path.write_text("[oidc]\nissuer = https://login.example.com\n")

        # Act
        with pytest.raises(ConfigurationError) as exc_info:
            load_broker_config(path)

        # Assert
        assert "client_id" in str(exc_info.value)
        assert exc_info.value.exit_code == 16

    def test_unparseable_file(self, tmp_path: Path) -> None:
        """Given a file that is not INI, raises ConfigurationError."""
        # Arrange
        path = tmp_path / "broker.conf"
        path.write_text("issuer = no section header\n")

        # Act & Assert
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_broker_config(path)

    def test_qr_code_flag(self, tmp_path: Path) -> None:
        """Given qr_code = false, QR device login is disabled."""
        # Arrange
        path = tmp_path / "broker.conf"
        path.write_text("[oidc]\nissuer = https://login.example.com\nclient_id = c\nqr_code = false\n")

        # Act & Assert
        assert load_broker_config(path).qr_code is False
