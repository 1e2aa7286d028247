"""Decoding of metadata signature blobs (ECMA-335 II.23.2)."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from veilunpack.module.model import (
    DerivedType,
    GenericInstance,
    GenericParam,
    TypeRef,
    TypeSig,
    corlib_type,
)


class SignatureError(ValueError):
    """Raised for truncated or unsupported signature blobs."""


# Calling convention bits
SIG_GENERIC = 0x10
SIG_HASTHIS = 0x20
SIG_EXPLICITTHIS = 0x40
SIG_FIELD = 0x06

# Element types
ELEMENT_TYPE_PTR = 0x0F
ELEMENT_TYPE_BYREF = 0x10
ELEMENT_TYPE_VALUETYPE = 0x11
ELEMENT_TYPE_CLASS = 0x12
ELEMENT_TYPE_VAR = 0x13
ELEMENT_TYPE_ARRAY = 0x14
ELEMENT_TYPE_GENERICINST = 0x15
ELEMENT_TYPE_FNPTR = 0x1B
ELEMENT_TYPE_SZARRAY = 0x1D
ELEMENT_TYPE_MVAR = 0x1E
ELEMENT_TYPE_CMOD_REQD = 0x1F
ELEMENT_TYPE_CMOD_OPT = 0x20
ELEMENT_TYPE_SENTINEL = 0x41
ELEMENT_TYPE_PINNED = 0x45

PRIMITIVES = {
    0x01: "Void",
    0x02: "Boolean",
    0x03: "Char",
    0x04: "SByte",
    0x05: "Byte",
    0x06: "Int16",
    0x07: "UInt16",
    0x08: "Int32",
    0x09: "UInt32",
    0x0A: "Int64",
    0x0B: "UInt64",
    0x0C: "Single",
    0x0D: "Double",
    0x0E: "String",
    0x16: "TypedReference",
    0x18: "IntPtr",
    0x19: "UIntPtr",
    0x1C: "Object",
}

# TypeDefOrRef coded index tags
TAG_TYPEDEF = 0
TAG_TYPEREF = 1
TAG_TYPESPEC = 2

TypeResolver = Callable[[int, int], Optional[TypeSig]]


@dataclass
class MethodSig:
    return_type: TypeSig
    parameters: list[TypeSig] = field(default_factory=list)
    has_this: bool = False
    generic_param_count: int = 0


def decode_type_def_or_ref(value: int) -> tuple[int, int]:
    """Split a TypeDefOrRefOrSpecEncoded value into ``(tag, row index)``."""
    return value & 0x03, value >> 2


class SignatureReader:
    """Cursor over one signature blob."""

    def __init__(self, blob: bytes, resolve_type: TypeResolver):
        self.blob = bytes(blob)
        self.pos = 0
        self.resolve_type = resolve_type
        self._primitives: dict[int, TypeRef] = {}

    def read_byte(self) -> int:
        if self.pos >= len(self.blob):
            raise SignatureError("unexpected end of signature")
        value = self.blob[self.pos]
        self.pos += 1
        return value

    def peek_byte(self) -> int:
        if self.pos >= len(self.blob):
            raise SignatureError("unexpected end of signature")
        return self.blob[self.pos]

    def read_compressed_uint(self) -> int:
        first = self.read_byte()
        if first & 0x80 == 0:
            return first
        if first & 0xC0 == 0x80:
            return ((first & 0x3F) << 8) | self.read_byte()
        if first & 0xE0 == 0xC0:
            b1, b2, b3 = self.read_byte(), self.read_byte(), self.read_byte()
            return ((first & 0x1F) << 24) | (b1 << 16) | (b2 << 8) | b3
        raise SignatureError(f"bad compressed integer lead byte {first:#04x}")

    def read_compressed_int(self) -> int:
        start = self.pos
        raw = self.read_compressed_uint()
        width = self.pos - start
        bits = {1: 7, 2: 14, 4: 29}[width]
        negative = raw & 1
        value = raw >> 1
        if negative:
            value -= 1 << (bits - 1)
        return value

    def read_type_def_or_ref(self) -> TypeSig:
        tag, index = decode_type_def_or_ref(self.read_compressed_uint())
        resolved = self.resolve_type(tag, index)
        if resolved is None:
            return TypeRef("", f"<unresolved {tag}:{index}>")
        return resolved

    def skip_custom_mods(self) -> None:
        while self.pos < len(self.blob) and self.peek_byte() in (ELEMENT_TYPE_CMOD_REQD, ELEMENT_TYPE_CMOD_OPT):
            self.read_byte()
            self.read_compressed_uint()

    def read_type(self) -> TypeSig:
        self.skip_custom_mods()
        element = self.read_byte()

        if element in PRIMITIVES:
            if element not in self._primitives:
                self._primitives[element] = corlib_type(PRIMITIVES[element])
            return self._primitives[element]
        if element in (ELEMENT_TYPE_CLASS, ELEMENT_TYPE_VALUETYPE):
            return self.read_type_def_or_ref()
        if element == ELEMENT_TYPE_PTR:
            return DerivedType(self.read_type(), "*")
        if element == ELEMENT_TYPE_BYREF:
            return DerivedType(self.read_type(), "&")
        if element == ELEMENT_TYPE_SZARRAY:
            return DerivedType(self.read_type(), "[]")
        if element == ELEMENT_TYPE_PINNED:
            return self.read_type()
        if element == ELEMENT_TYPE_VAR:
            return GenericParam(self.read_compressed_uint())
        if element == ELEMENT_TYPE_MVAR:
            return GenericParam(self.read_compressed_uint(), is_method_param=True)
        if element == ELEMENT_TYPE_GENERICINST:
            kind = self.read_byte()
            if kind not in (ELEMENT_TYPE_CLASS, ELEMENT_TYPE_VALUETYPE):
                raise SignatureError(f"bad generic instance kind {kind:#04x}")
            generic_type = self.read_type_def_or_ref()
            count = self.read_compressed_uint()
            return GenericInstance(generic_type, [self.read_type() for _ in range(count)])
        if element == ELEMENT_TYPE_ARRAY:
            element_type = self.read_type()
            rank = self.read_compressed_uint()
            for _ in range(self.read_compressed_uint()):
                self.read_compressed_uint()
            for _ in range(self.read_compressed_uint()):
                self.read_compressed_int()
            return DerivedType(element_type, "[" + "," * max(rank - 1, 0) + "]")
        if element == ELEMENT_TYPE_FNPTR:
            self.read_method_sig()
            return TypeRef("", "method")

        raise SignatureError(f"unsupported element type {element:#04x}")

    def read_method_sig(self) -> MethodSig:
        conv = self.read_byte()
        generic_count = self.read_compressed_uint() if conv & SIG_GENERIC else 0
        param_count = self.read_compressed_uint()
        return_type = self.read_type()
        parameters = []
        while len(parameters) < param_count:
            if self.peek_byte() == ELEMENT_TYPE_SENTINEL:
                self.read_byte()
                continue
            parameters.append(self.read_type())
        return MethodSig(
            return_type=return_type,
            parameters=parameters,
            has_this=bool(conv & SIG_HASTHIS),
            generic_param_count=generic_count,
        )


def parse_method_sig(blob: bytes, resolve_type: TypeResolver) -> MethodSig:
    return SignatureReader(blob, resolve_type).read_method_sig()


def parse_field_sig(blob: bytes, resolve_type: TypeResolver) -> TypeSig:
    reader = SignatureReader(blob, resolve_type)
    conv = reader.read_byte()
    if conv & 0x0F != SIG_FIELD:
        raise SignatureError(f"not a field signature ({conv:#04x})")
    return reader.read_type()


def parse_type_spec(blob: bytes, resolve_type: TypeResolver) -> TypeSig:
    return SignatureReader(blob, resolve_type).read_type()
