"""In-memory graph of a .NET module: types, members, bodies and resources."""

import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Union

# TypeAttributes / MethodAttributes bits (ECMA-335 II.23.1.15, II.23.1.10)
TYPE_INTERFACE = 0x0020

METHOD_MEMBER_ACCESS_MASK = 0x0007
METHOD_PRIVATE = 0x0001
METHOD_ASSEMBLY = 0x0003
METHOD_PUBLIC = 0x0006
METHOD_STATIC = 0x0010

FIELD_STATIC = 0x0010


@dataclass(eq=False)
class TypeRef:
    """A type defined outside the module (or a primitive)."""
    namespace: str
    name: str

    @property
    def full_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    def __str__(self) -> str:
        return self.full_name


@dataclass(eq=False)
class GenericInstance:
    """A closed generic type such as ``List`1<Foo>``."""
    element_type: "TypeSig"
    arguments: list["TypeSig"] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        args = ",".join(arg.full_name for arg in self.arguments)
        return f"{self.element_type.full_name}<{args}>"

    def __str__(self) -> str:
        return self.full_name


@dataclass(eq=False)
class DerivedType:
    """Pointer, by-ref or array of another type."""
    element_type: "TypeSig"
    suffix: str  # "*", "&", "[]", "[,]"...

    @property
    def full_name(self) -> str:
        return f"{self.element_type.full_name}{self.suffix}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(eq=False)
class GenericParam:
    number: int
    is_method_param: bool = False

    @property
    def full_name(self) -> str:
        return ("!!" if self.is_method_param else "!") + str(self.number)

    def __str__(self) -> str:
        return self.full_name


@dataclass(eq=False)
class FieldDef:
    name: str
    field_type: "TypeSig"
    flags: int = 0
    declaring_type: Optional["TypeDef"] = None
    token: int = 0

    @property
    def is_static(self) -> bool:
        return bool(self.flags & FIELD_STATIC)


@dataclass(eq=False)
class Instruction:
    """A decoded IL instruction.

    ``operand`` is the resolved token target for member/type operands, the
    raw value for everything else.
    """
    offset: int
    opcode: int
    operand: Any = None


class MethodBody:
    """IL code of a method, decoded on demand."""

    def __init__(self, code: bytes, resolve_token: Optional[Callable[[int], Any]] = None):
        self.code = bytes(code)
        self.resolve_token = resolve_token or (lambda token: None)

    def instructions(self) -> Iterator[Instruction]:
        """Return a fresh iterator over the decoded instructions."""
        from veilunpack.module.il import decode_instructions

        return decode_instructions(self.code, self.resolve_token)


@dataclass(eq=False)
class MethodDef:
    name: str
    return_type: "TypeSig"
    parameters: list["TypeSig"] = field(default_factory=list)
    flags: int = 0
    body: Optional[MethodBody] = None
    declaring_type: Optional["TypeDef"] = None
    token: int = 0

    @property
    def is_static(self) -> bool:
        return bool(self.flags & METHOD_STATIC)

    @property
    def is_public(self) -> bool:
        return self.flags & METHOD_MEMBER_ACCESS_MASK == METHOD_PUBLIC

    @property
    def is_assembly(self) -> bool:
        """True for ``internal`` methods."""
        return self.flags & METHOD_MEMBER_ACCESS_MASK == METHOD_ASSEMBLY

    @property
    def is_private(self) -> bool:
        return self.flags & METHOD_MEMBER_ACCESS_MASK == METHOD_PRIVATE

    @property
    def is_constructor(self) -> bool:
        return self.name == ".ctor"

    @property
    def has_body(self) -> bool:
        return self.body is not None

    @property
    def full_name(self) -> str:
        owner = self.declaring_type.full_name if self.declaring_type else ""
        params = ",".join(p.full_name for p in self.parameters)
        return f"{self.return_type.full_name} {owner}::{self.name}({params})"

    def __str__(self) -> str:
        return self.full_name


@dataclass(eq=False)
class MemberRef:
    """Reference to a field or method of another (usually external) type."""
    name: str
    declaring_type: Optional["TypeSig"] = None
    return_type: Optional["TypeSig"] = None
    parameters: list["TypeSig"] = field(default_factory=list)
    token: int = 0


@dataclass(eq=False)
class TypeDef:
    """A type defined in the module."""
    namespace: str
    name: str
    flags: int = 0
    fields: list[FieldDef] = field(default_factory=list)
    methods: list[MethodDef] = field(default_factory=list)
    interfaces: list["TypeSig"] = field(default_factory=list)
    base_type: Optional["TypeSig"] = None
    declaring_type: Optional["TypeDef"] = None
    token: int = 0

    @property
    def full_name(self) -> str:
        if self.declaring_type is not None:
            return f"{self.declaring_type.full_name}/{self.name}"
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    @property
    def is_interface(self) -> bool:
        return bool(self.flags & TYPE_INTERFACE)

    def get_method(self, name: str) -> Optional[MethodDef]:
        """Return the first method called ``name``."""
        for method in self.methods:
            if method.name == name:
                return method
        return None

    def add_field(self, item: FieldDef) -> FieldDef:
        item.declaring_type = self
        self.fields.append(item)
        return item

    def add_method(self, item: MethodDef) -> MethodDef:
        item.declaring_type = self
        self.methods.append(item)
        return item

    def __str__(self) -> str:
        return self.full_name


TypeSig = Union[TypeRef, TypeDef, GenericInstance, DerivedType, GenericParam]


class ResourceKind(str, Enum):
    """Where a manifest resource's content lives."""
    EMBEDDED = "embedded"
    LINKED = "linked"  # stored in another file of the assembly
    ASSEMBLY_LINKED = "assembly_linked"  # stored in another assembly


@dataclass(eq=False)
class Resource:
    name: str
    kind: ResourceKind = ResourceKind.EMBEDDED
    data: bytes = b""

    @property
    def is_embedded(self) -> bool:
        return self.kind == ResourceKind.EMBEDDED

    def get_resource_data(self) -> bytes:
        return self.data

    def get_stream(self) -> io.BytesIO:
        return io.BytesIO(self.data)


@dataclass(eq=False)
class ModuleGraph:
    """A loaded module: top-level types and manifest resources."""
    name: str = ""
    types: list[TypeDef] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    nested_types: list[TypeDef] = field(default_factory=list)

    @property
    def all_types(self) -> list[TypeDef]:
        return self.types + self.nested_types

    def get_resource(self, name: str) -> Optional[Resource]:
        """Return the first resource whose name equals ``name`` exactly."""
        for resource in self.resources:
            if resource.name == name:
                return resource
        return None


# Well-known corlib types referenced by signature blobs
CORLIB_NAMESPACE = "System"


def corlib_type(name: str) -> TypeRef:
    return TypeRef(CORLIB_NAMESPACE, name)


def is_method(method: Optional[Union[MethodDef, MemberRef]], return_type: str, parameters: str) -> bool:
    """Check a method's signature against type full names.

    ``parameters`` uses the form ``"(System.String,System.Int32)"``.
    """
    if method is None or method.return_type is None:
        return False
    if method.return_type.full_name != return_type:
        return False
    actual = "(" + ",".join(p.full_name for p in method.parameters) + ")"
    return actual == parameters
