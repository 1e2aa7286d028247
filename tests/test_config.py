"""Tests for configuration."""

import pytest
from pydantic import ValidationError

from veilunpack.config import BUNDLE_DATA_RESOURCE, BUNDLE_MANIFEST_RESOURCE, Config


class TestConfig:
    """Tests for Config settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("VEILUNPACK_BUNDLE_DATA_RESOURCE", raising=False)
        monkeypatch.delenv("VEILUNPACK_BUNDLE_MANIFEST_RESOURCE", raising=False)
        config = Config(_env_file=None)

        assert config.bundle_data_resource == BUNDLE_DATA_RESOURCE == ".bundle.dat"
        assert config.bundle_manifest_resource == BUNDLE_MANIFEST_RESOURCE == ".bundle.manifest"
        assert "*.exe" in config.input_patterns

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("VEILUNPACK_BUNDLE_DATA_RESOURCE", "payload.bin")
        monkeypatch.setenv("VEILUNPACK_OVERWRITE_EXISTING", "true")
        config = Config(_env_file=None)

        assert config.bundle_data_resource == "payload.bin"
        assert config.overwrite_existing is True

    def test_empty_resource_name_is_rejected(self):
        with pytest.raises(ValidationError):
            Config(bundle_manifest_resource="")
