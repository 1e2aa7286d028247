"""Tests for the structural type matcher."""

import pytest

from tests._fixtures.bundle_builder import ASSEMBLY, RET, STRING, newobj
from veilunpack.core.matcher import (
    SignatureSet,
    find_assembly_manager_type,
    find_bundle_type,
    find_get_temp_filename_method,
    find_init_method,
    find_stream_provider_type,
    find_xml_parser_type,
    match_signatures,
)
from veilunpack.module.model import (
    METHOD_PRIVATE,
    METHOD_PUBLIC,
    FieldDef,
    MethodDef,
    TypeDef,
    TypeRef,
)


class TestSignatureSet:
    """Tests for SignatureSet."""

    def test_empty_set_is_not_complete(self):
        sigs = SignatureSet()
        assert sigs.complete is False
        assert sigs.types == ()

    def test_fill_returns_new_set(self):
        controller = TypeDef("", "a")
        sigs = SignatureSet()
        filled = sigs.fill(controller=controller)
        assert sigs.controller is None
        assert filled.controller is controller

    def test_slots_are_write_once(self):
        sigs = SignatureSet().fill(controller=TypeDef("", "a"))
        with pytest.raises(ValueError):
            sigs.fill(controller=TypeDef("", "b"))

    def test_types_in_fixed_order(self, bundle):
        sigs = SignatureSet(
            stream_provider=bundle.stream_provider,
            entry_descriptor=bundle.entry_descriptor,
            xml_parser=bundle.xml_parser,
            stream_provider_iface=bundle.stream_provider_iface,
            manager=bundle.manager,
            controller=bundle.controller,
        )
        assert sigs.complete is True
        assert list(sigs.types) == bundle.expected_types


class TestFindBundleType:
    """Tests for controller detection."""

    def test_finds_controller(self, bundle):
        assert find_bundle_type(bundle.module) is bundle.controller

    def test_controller_requires_empty_namespace(self, bundle):
        bundle.controller.namespace = "Obf"
        assert find_bundle_type(bundle.module) is None

    def test_controller_requires_two_fields(self, bundle):
        bundle.controller.add_field(FieldDef("c", STRING))
        assert find_bundle_type(bundle.module) is None

    def test_controller_ctor_must_be_private(self, bundle):
        bundle.controller_ctor.flags = METHOD_PUBLIC
        assert find_bundle_type(bundle.module) is None

    def test_controller_ctor_must_take_assembly(self, bundle):
        bundle.controller_ctor.parameters = [STRING]
        assert find_bundle_type(bundle.module) is None

    def test_controller_needs_init_method(self, bundle):
        init = find_init_method(bundle.controller)
        init.body = None
        assert find_init_method(bundle.controller) is None
        assert find_bundle_type(bundle.module) is None

    def test_controller_needs_temp_filename_method(self, bundle):
        method = find_get_temp_filename_method(bundle.controller)
        method.flags = METHOD_PRIVATE
        assert find_get_temp_filename_method(bundle.controller) is None
        assert find_bundle_type(bundle.module) is None

    def test_first_structural_match_wins(self, bundle):
        clone = TypeDef("", "z")
        clone.add_field(FieldDef("a", STRING))
        clone.add_field(FieldDef("b", STRING))
        for method in bundle.controller.methods:
            clone.add_method(MethodDef(
                name=method.name,
                return_type=method.return_type,
                parameters=list(method.parameters),
                flags=method.flags,
                body=method.body,
            ))
        bundle.module.types.insert(0, clone)

        assert find_bundle_type(bundle.module) is clone

    def test_names_are_not_trusted(self, bundle):
        bundle.controller.name = "BundleController"
        bundle.manager.name = "\u0001"
        assert find_bundle_type(bundle.module) is bundle.controller


class TestDependentStages:
    """Tests for manager, xml parser and stream provider detection."""

    def test_manager_and_interface(self, bundle):
        sigs = find_assembly_manager_type(SignatureSet(controller=bundle.controller))
        assert sigs.manager is bundle.manager
        assert sigs.stream_provider_iface is bundle.stream_provider_iface

    def test_manager_requires_controller(self, bundle):
        assert find_assembly_manager_type(SignatureSet()) == SignatureSet()

    def test_manager_second_param_must_be_interface(self, bundle):
        ctor = bundle.manager.get_method(".ctor")
        ctor.parameters = [ASSEMBLY, bundle.entry_descriptor]
        sigs = find_assembly_manager_type(SignatureSet(controller=bundle.controller))
        assert sigs.manager is None
        assert sigs.stream_provider_iface is None

    def test_manager_skips_external_field_types(self, bundle):
        bundle.controller.fields.reverse()
        sigs = find_assembly_manager_type(SignatureSet(controller=bundle.controller))
        assert sigs.manager is bundle.manager

    def test_xml_parser_and_entry(self, bundle):
        sigs = SignatureSet(controller=bundle.controller, manager=bundle.manager)
        sigs = find_xml_parser_type(sigs)
        assert sigs.xml_parser is bundle.xml_parser
        assert sigs.entry_descriptor is bundle.entry_descriptor

    def test_xml_parser_requires_manager(self, bundle):
        sigs = find_xml_parser_type(SignatureSet(controller=bundle.controller))
        assert sigs.xml_parser is None

    def test_xml_parser_field_must_be_generic_list(self, bundle):
        bundle.xml_parser.fields[0].field_type = TypeRef("System.Collections", "ArrayList")
        sigs = find_xml_parser_type(SignatureSet(controller=bundle.controller, manager=bundle.manager))
        assert sigs.xml_parser is None
        assert sigs.entry_descriptor is None

    def test_xml_parser_needs_default_ctor(self, bundle):
        bundle.xml_parser.get_method(".ctor").parameters = [STRING]
        sigs = find_xml_parser_type(SignatureSet(controller=bundle.controller, manager=bundle.manager))
        assert sigs.xml_parser is None

    def _ready(self, bundle) -> SignatureSet:
        return SignatureSet(
            controller=bundle.controller,
            manager=bundle.manager,
            stream_provider_iface=bundle.stream_provider_iface,
        )

    def test_stream_provider_from_constructor_body(self, bundle):
        sigs = find_stream_provider_type(self._ready(bundle))
        assert sigs.stream_provider is bundle.stream_provider

    def test_stream_provider_skips_other_interfaces(self, bundle):
        decoy_ctor = bundle.decoys[0].get_method(".ctor")
        bundle.set_controller_body(newobj(decoy_ctor.token) + RET)
        sigs = find_stream_provider_type(self._ready(bundle))
        assert sigs.stream_provider is None

    def test_stream_provider_needs_manager(self, bundle):
        sigs = find_stream_provider_type(SignatureSet(controller=bundle.controller))
        assert sigs.stream_provider is None

    def test_stream_provider_skips_manager_type(self, bundle):
        manager_ctor = bundle.manager.get_method(".ctor")
        manager_ctor.parameters = [ASSEMBLY, STRING]
        bundle.manager.interfaces.append(bundle.stream_provider_iface)
        bundle.set_controller_body(newobj(manager_ctor.token) + RET)

        sigs = find_stream_provider_type(self._ready(bundle))
        assert sigs.stream_provider is None

    def test_stream_provider_needs_single_interface(self, bundle):
        bundle.stream_provider.interfaces.append(bundle.decoys[1])
        sigs = find_stream_provider_type(self._ready(bundle))
        assert sigs.stream_provider is None

    def test_stream_provider_bad_il_is_not_found(self, bundle):
        bundle.set_controller_body(b"\x02\x24")
        sigs = find_stream_provider_type(self._ready(bundle))
        assert sigs.stream_provider is None

    def test_stream_provider_ignores_unresolved_tokens(self, bundle):
        bundle.set_controller_body(newobj(0x0A0000FF) + RET)
        sigs = find_stream_provider_type(self._ready(bundle))
        assert sigs.stream_provider is None


class TestMatchSignatures:
    """Tests for the whole stage pipeline."""

    def test_all_six_found(self, bundle):
        sigs = match_signatures(bundle.module)
        assert sigs.complete is True
        assert list(sigs.types) == bundle.expected_types
        assert len(set(sigs.types)) == 6

    def test_no_controller_yields_empty_set(self, bundle):
        bundle.controller.namespace = "X"
        assert match_signatures(bundle.module) == SignatureSet()

    def test_partial_match_is_not_complete(self, bundle):
        bundle.xml_parser.fields.clear()
        sigs = match_signatures(bundle.module)
        assert sigs.controller is bundle.controller
        assert sigs.manager is bundle.manager
        assert sigs.xml_parser is None
        assert sigs.stream_provider is bundle.stream_provider
        assert sigs.complete is False
        assert sigs.types == ()

    def test_matching_twice_is_identical(self, bundle):
        first = match_signatures(bundle.module)
        second = match_signatures(bundle.module)
        assert first == second
        assert list(first.types) == list(second.types)

