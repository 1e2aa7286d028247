"""Navigable graph of a .NET module and the readers that build it."""

from veilunpack.module.identity import (
    ModuleFormatError,
    ModuleIdentity,
    ModuleKind,
    get_assembly_simple_name,
    get_extension,
    read_identity,
)
from veilunpack.module.loader import load_module
from veilunpack.module.model import (
    FieldDef,
    GenericInstance,
    MethodBody,
    MethodDef,
    ModuleGraph,
    Resource,
    ResourceKind,
    TypeDef,
    TypeRef,
)

__all__ = [
    "FieldDef",
    "GenericInstance",
    "MethodBody",
    "MethodDef",
    "ModuleFormatError",
    "ModuleGraph",
    "ModuleIdentity",
    "ModuleKind",
    "Resource",
    "ResourceKind",
    "TypeDef",
    "TypeRef",
    "get_assembly_simple_name",
    "get_extension",
    "load_module",
    "read_identity",
]
