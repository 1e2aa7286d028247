"""Tests for AssemblyResolver."""

import pytest

from tests._fixtures.bundle_builder import (
    build_bundle_module,
    fake_read_identity,
    make_blob,
    make_manifest,
)
from veilunpack.config import Config
from veilunpack.core.inflate import DecompressionError
from veilunpack.core.resolver import AssemblyResolver
from veilunpack.core.resources import locate_bundle_resources
from veilunpack.diagnostics import DiagnosticKind, Diagnostics
from veilunpack.module.model import Resource, ResourceKind


def _resolver(module, **kwargs) -> AssemblyResolver:
    return AssemblyResolver(module, read_identity=fake_read_identity, **kwargs)


class TestLocateBundleResources:
    """Tests for locate_bundle_resources function."""

    def test_both_present(self, bundled):
        found = locate_bundle_resources(bundled.module)
        assert found.data.name == ".bundle.dat"
        assert found.manifest.name == ".bundle.manifest"

    def test_name_must_match_exactly(self, bundled):
        bundled.module.resources[0].name = ".Bundle.dat"
        assert locate_bundle_resources(bundled.module) is None

    def test_linked_resource_is_ignored(self, bundled):
        bundled.module.resources[1].kind = ResourceKind.LINKED
        assert locate_bundle_resources(bundled.module) is None

    def test_custom_names(self, bundled):
        bundled.module.resources[0].name = "payload.bin"
        found = locate_bundle_resources(bundled.module, data_name="payload.bin")
        assert found.data is bundled.module.resources[0]


class TestAssemblyResolver:
    """Tests for AssemblyResolver."""

    def test_full_detection(self, bundled, payloads):
        resolver = _resolver(bundled.module)
        resolver.initialize()

        assert resolver.detected is True
        assert resolver.can_remove_types is True
        assert resolver.bundle_types == bundled.expected_types
        assert [info.data for info in resolver.assembly_infos] == payloads
        assert resolver.bundle_data_resource is bundled.module.resources[0]
        assert resolver.bundle_xml_file_resource is bundled.module.resources[1]

    @pytest.mark.parametrize("missing", [".bundle.dat", ".bundle.manifest"])
    def test_missing_resource_is_noop(self, bundled, missing):
        bundled.module.resources = [r for r in bundled.module.resources if r.name != missing]
        resolver = _resolver(bundled.module)
        resolver.initialize()

        assert resolver.detected is False
        assert resolver.can_remove_types is False
        assert resolver.bundle_types == []
        assert resolver.assembly_infos == []
        assert resolver.bundle_data_resource is None
        assert resolver.bundle_xml_file_resource is None

    def test_no_resources_at_all(self):
        resolver = _resolver(build_bundle_module(with_resources=False).module)
        resolver.initialize()
        assert resolver.can_remove_types is False
        assert resolver.assembly_infos == []

    def test_missing_controller_is_noop(self, bundled):
        bundled.controller.namespace = "Real"
        resolver = _resolver(bundled.module)
        resolver.initialize()

        assert resolver.detected is False
        assert resolver.assembly_infos == []
        assert resolver.bundle_data_resource is None

    def test_partial_types_still_extract(self, bundled, payloads):
        bundled.manager.fields.pop()
        resolver = _resolver(bundled.module)
        resolver.initialize()

        assert resolver.signatures.controller is bundled.controller
        assert resolver.signatures.manager is None
        assert resolver.can_remove_types is False
        assert resolver.bundle_types == []
        assert len(resolver.assembly_infos) == len(payloads)

    def test_wrong_manifest_root_keeps_types(self, payloads):
        blob, offsets = make_blob(payloads)
        bundle = build_bundle_module(blob, make_manifest(offsets, root="files"))
        diagnostics = Diagnostics()
        resolver = _resolver(bundle.module, diagnostics=diagnostics)
        resolver.initialize()

        assert resolver.can_remove_types is True
        assert resolver.assembly_infos == []
        assert diagnostics.of_kind(DiagnosticKind.MISSING_MANIFEST)

    def test_initialize_twice_is_idempotent(self, bundled):
        resolver = _resolver(bundled.module)
        resolver.initialize()
        first_types = resolver.bundle_types
        first_infos = resolver.assembly_infos

        resolver.initialize()
        assert resolver.bundle_types == first_types
        assert resolver.assembly_infos == first_infos

    def test_two_resolvers_agree(self, bundled):
        first = _resolver(bundled.module)
        second = _resolver(bundled.module)
        first.initialize()
        second.initialize()
        assert first.bundle_types == second.bundle_types
        assert first.assembly_infos == second.assembly_infos

    def test_decompression_failure_propagates(self, payloads):
        blob, offsets = make_blob(payloads)
        corrupt = blob + b"\xff\xff"
        bundle = build_bundle_module(corrupt, make_manifest([offsets[0], len(blob)]))
        resolver = _resolver(bundle.module)

        with pytest.raises(DecompressionError):
            resolver.initialize()
        assert [info.data for info in resolver.assembly_infos] == [payloads[0]]
        assert resolver.can_remove_types is True

    def test_config_resource_names(self, bundled, payloads):
        bundled.module.resources[0].name = "data.bin"
        bundled.module.resources[1].name = "index.xml"
        config = Config(bundle_data_resource="data.bin", bundle_manifest_resource="index.xml")
        resolver = _resolver(bundled.module, config=config)
        resolver.initialize()
        assert len(resolver.assembly_infos) == len(payloads)

    def test_does_not_mutate_module(self, bundled):
        types_before = list(bundled.module.types)
        resources_before = [(r.name, r.data) for r in bundled.module.resources]
        _resolver(bundled.module).initialize()
        assert bundled.module.types == types_before
        assert [(r.name, r.data) for r in bundled.module.resources] == resources_before

    def test_extra_resources_are_ignored(self, bundled, payloads):
        bundled.module.resources.insert(0, Resource("app.resources", ResourceKind.EMBEDDED, b"xx"))
        resolver = _resolver(bundled.module)
        resolver.initialize()
        assert len(resolver.assembly_infos) == len(payloads)
