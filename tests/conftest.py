"""Pytest configuration and fixtures."""

import pytest

from tests._fixtures.bundle_builder import (
    BundleModule,
    build_bundle_module,
    fake_module,
    make_blob,
    make_manifest,
)
from veilunpack.module.identity import ModuleKind


@pytest.fixture
def bundle() -> BundleModule:
    """Return a synthetic host module with all six bundle types."""
    return build_bundle_module()


@pytest.fixture
def payloads() -> list[bytes]:
    """Return three fake module payloads with known identities."""
    return [
        fake_module("Alpha, Version=1.0.0.0, Culture=neutral, PublicKeyToken=null", ModuleKind.DLL, 300),
        fake_module("Beta, Version=2.1.0.0, Culture=neutral, PublicKeyToken=b77a5c561934e089", ModuleKind.WINDOWS, 900),
        fake_module("Gamma.Tool, Version=0.0.1.0, Culture=en-US, PublicKeyToken=null", ModuleKind.CONSOLE, 50),
    ]


@pytest.fixture
def bundled(payloads: list[bytes]) -> BundleModule:
    """Return a host module whose resources hold the three fake payloads."""
    blob, offsets = make_blob(payloads)
    return build_bundle_module(data=blob, manifest=make_manifest(offsets))
