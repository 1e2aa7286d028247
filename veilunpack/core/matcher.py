"""Structural identification of the bundle's injected types.

The injected types carry obfuscated names, so every stage matches on shape
only: field counts, constructor signatures, implemented interfaces, generic
field types and, for the stream provider, the objects created by the
controller's constructor. Stages never raise for "no match"; they return the
signature set unchanged.

Stage dependencies:

1. controller (``find_bundle_type``)
2. manager + stream provider interface, from the controller's fields
3. xml parser + entry descriptor, from the manager's fields
4. stream provider, from ``newobj`` sites in the controller constructor
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional

from veilunpack.module.il import Code, ILFormatError
from veilunpack.module.model import (
    GenericInstance,
    MethodDef,
    ModuleGraph,
    TypeDef,
    is_method,
)

logger = logging.getLogger(__name__)

ASSEMBLY_TYPE = "System.Reflection.Assembly"
GENERIC_LIST_TYPE = "System.Collections.Generic.List`1"


@dataclass(frozen=True)
class SignatureSet:
    """The six type roles of the bundle runtime, filled stage by stage."""
    controller: Optional[TypeDef] = None
    manager: Optional[TypeDef] = None
    stream_provider_iface: Optional[TypeDef] = None
    xml_parser: Optional[TypeDef] = None
    entry_descriptor: Optional[TypeDef] = None
    stream_provider: Optional[TypeDef] = None

    def fill(self, **slots: TypeDef) -> "SignatureSet":
        """Return a copy with empty slots filled. Slots are write-once."""
        for name in slots:
            if getattr(self, name) is not None:
                raise ValueError(f"signature slot {name!r} is already filled")
        return dataclasses.replace(self, **slots)

    @property
    def complete(self) -> bool:
        return all(getattr(self, f.name) is not None for f in dataclasses.fields(self))

    @property
    def types(self) -> tuple[TypeDef, ...]:
        """All six types in fixed order, or an empty tuple if any is missing."""
        if not self.complete:
            return ()
        return (
            self.controller,
            self.manager,
            self.stream_provider_iface,
            self.xml_parser,
            self.entry_descriptor,
            self.stream_provider,
        )


def _is_assembly_ctor(method: Optional[MethodDef]) -> bool:
    return is_method(method, "System.Void", f"({ASSEMBLY_TYPE})")


def find_init_method(type_def: TypeDef) -> Optional[MethodDef]:
    """Static ``void (Assembly)`` entry point of the controller."""
    for method in type_def.methods:
        if not method.is_static or not method.has_body:
            continue
        if not method.is_public and not method.is_assembly:
            continue
        if not is_method(method, "System.Void", f"({ASSEMBLY_TYPE})"):
            continue
        return method
    return None


def find_get_temp_filename_method(type_def: TypeDef) -> Optional[MethodDef]:
    for method in type_def.methods:
        if method.is_static or not method.has_body:
            continue
        if not method.is_public and not method.is_assembly:
            continue
        if not is_method(method, "System.String", "(System.String)"):
            continue
        return method
    return None


def find_bundle_type(module: ModuleGraph) -> Optional[TypeDef]:
    """Find the controller type among the module's top-level types."""
    for type_def in module.types:
        if type_def.namespace != "":
            continue
        if len(type_def.fields) != 2:
            continue

        ctor = type_def.get_method(".ctor")
        if ctor is None or not ctor.is_private:
            continue
        if not _is_assembly_ctor(ctor):
            continue

        if find_init_method(type_def) is None:
            continue
        if find_get_temp_filename_method(type_def) is None:
            continue

        return type_def

    return None


def find_assembly_manager_type(sigs: SignatureSet) -> SignatureSet:
    """Fill the manager and the stream provider interface from the controller's fields."""
    if sigs.controller is None:
        return sigs

    for field in sigs.controller.fields:
        type_def = field.field_type
        if not isinstance(type_def, TypeDef):
            continue
        if type_def is sigs.controller:
            continue
        if len(type_def.fields) != 2:
            continue

        ctor = type_def.get_method(".ctor")
        if ctor is None or len(ctor.parameters) != 2:
            continue
        iface = ctor.parameters[1]
        if not isinstance(iface, TypeDef) or not iface.is_interface:
            continue

        return sigs.fill(manager=type_def, stream_provider_iface=iface)

    return sigs


def find_xml_parser_type(sigs: SignatureSet) -> SignatureSet:
    """Fill the xml parser and entry descriptor from the manager's fields."""
    if sigs.manager is None:
        return sigs

    for field in sigs.manager.fields:
        type_def = field.field_type
        if not isinstance(type_def, TypeDef) or type_def.is_interface:
            continue
        if not is_method(type_def.get_method(".ctor"), "System.Void", "()"):
            continue
        if len(type_def.fields) != 1:
            continue

        list_type = type_def.fields[0].field_type
        if not isinstance(list_type, GenericInstance):
            continue
        if list_type.element_type.full_name != GENERIC_LIST_TYPE:
            continue
        if len(list_type.arguments) != 1:
            continue
        entry_type = list_type.arguments[0]
        if not isinstance(entry_type, TypeDef):
            continue

        return sigs.fill(xml_parser=type_def, entry_descriptor=entry_type)

    return sigs


def find_stream_provider_type(sigs: SignatureSet) -> SignatureSet:
    """Fill the stream provider from objects created in the controller's constructor.

    No field of the controller is typed as the provider, so this scans the
    constructor IL for ``newobj`` of a ``(Assembly, string)`` constructor whose
    type implements only the stream provider interface.
    """
    if sigs.controller is None or sigs.manager is None or sigs.stream_provider_iface is None:
        return sigs

    ctor = sigs.controller.get_method(".ctor")
    if not _is_assembly_ctor(ctor) or not ctor.has_body:
        return sigs

    try:
        for instr in ctor.body.instructions():
            if instr.opcode != Code.NEWOBJ:
                continue
            newobj_ctor = instr.operand
            if not isinstance(newobj_ctor, MethodDef):
                continue
            type_def = newobj_ctor.declaring_type
            if type_def is None or type_def is sigs.manager:
                continue
            if not is_method(newobj_ctor, "System.Void", f"({ASSEMBLY_TYPE},System.String)"):
                continue
            if len(type_def.interfaces) != 1:
                continue
            if type_def.interfaces[0] is not sigs.stream_provider_iface:
                continue

            return sigs.fill(stream_provider=type_def)
    except ILFormatError as e:
        logger.debug("Could not decode %s: %s", ctor.full_name, e)

    return sigs


DEPENDENT_STAGES = (
    find_assembly_manager_type,
    find_xml_parser_type,
    find_stream_provider_type,
)


def match_dependent_types(sigs: SignatureSet) -> SignatureSet:
    """Run every stage that builds on an already found controller."""
    for stage in DEPENDENT_STAGES:
        sigs = stage(sigs)
    return sigs


def match_signatures(module: ModuleGraph) -> SignatureSet:
    """Run all stages against ``module``."""
    controller = find_bundle_type(module)
    if controller is None:
        return SignatureSet()
    return match_dependent_types(SignatureSet(controller=controller))
