"""Tests for settings loading."""

from pathlib import Path

from azpim.config import Settings, default_config_dir


class TestSettings:
    """Test YAML and environment configuration."""

    def test_defaults(self, monkeypatch, tmp_path):
        """Test built-in defaults when no file or env var is present."""
        monkeypatch.setenv("AZPIM_CONFIG_DIR", str(tmp_path))

        settings = Settings()

        assert settings.subscription_cache_ttl_hours == 6
        assert settings.default_duration_hours == 8
        assert settings.arm_api_version == "2020-10-01"
        assert settings.config_dir == tmp_path

    def test_yaml_file(self, monkeypatch, tmp_path):
        """Test values are read from config.yaml in the config directory."""
        (tmp_path / "config.yaml").write_text("subscription_cache_ttl_hours: 2\nlog_level: INFO\n")
        monkeypatch.setenv("AZPIM_CONFIG_DIR", str(tmp_path))

        settings = Settings()

        assert settings.subscription_cache_ttl_hours == 2
        assert settings.log_level == "INFO"

    def test_env_overrides_yaml(self, monkeypatch, tmp_path):
        """Test environment variables win over the YAML file."""
        (tmp_path / "config.yaml").write_text("subscription_cache_ttl_hours: 2\n")
        monkeypatch.setenv("AZPIM_CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("AZPIM_SUBSCRIPTION_CACHE_TTL_HOURS", "12")

        assert Settings().subscription_cache_ttl_hours == 12

    def test_default_config_dir_xdg(self, monkeypatch, tmp_path):
        """Test XDG_CONFIG_HOME is honoured on Unix."""
        monkeypatch.setattr("azpim.config.sys.platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert default_config_dir() == Path(tmp_path) / "azpim"
