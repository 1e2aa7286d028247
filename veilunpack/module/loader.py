"""Build a ModuleGraph from a .NET PE file using dnfile."""

import logging
from pathlib import Path
from typing import Any, Optional, Union

import dnfile
import pefile

from veilunpack.module.identity import ModuleFormatError, heap_bytes, heap_text, open_pe
from veilunpack.module.il import ILFormatError, read_method_body
from veilunpack.module.model import (
    FieldDef,
    MemberRef,
    MethodBody,
    MethodDef,
    ModuleGraph,
    Resource,
    ResourceKind,
    TypeDef,
    TypeRef,
    TypeSig,
)
from veilunpack.module.signature import (
    TAG_TYPEDEF,
    TAG_TYPEREF,
    TAG_TYPESPEC,
    SignatureError,
    parse_field_sig,
    parse_method_sig,
    parse_type_spec,
)

logger = logging.getLogger(__name__)

# Metadata token table ids
TOKEN_TYPEREF = 0x01
TOKEN_TYPEDEF = 0x02
TOKEN_FIELD = 0x04
TOKEN_METHODDEF = 0x06
TOKEN_MEMBERREF = 0x0A
TOKEN_TYPESPEC = 0x1B


def _rows(table) -> list:
    if table is None:
        return []
    return list(table.rows)


def _ref_index(ref) -> int:
    """1-based row index of a dnfile table reference, 0 when null."""
    if ref is None:
        return 0
    return ref.row_index or 0


def _coded_table_name(ref) -> Optional[str]:
    if ref is None or getattr(ref, "table", None) is None:
        return None
    return ref.table.name


class _GraphBuilder:
    """Translates dnfile metadata tables into model objects."""

    def __init__(self, pe: dnfile.dnPE):
        self.pe = pe
        self.tables = pe.net.mdtables
        self.type_defs: list[TypeDef] = []
        self.type_refs: list[TypeRef] = []
        self.type_specs: dict[int, TypeSig] = {}
        self.fields: dict[int, FieldDef] = {}
        self.methods: dict[int, MethodDef] = {}
        self.member_refs: dict[int, MemberRef] = {}

    def build(self, name: str) -> ModuleGraph:
        self._create_type_refs()
        type_rows = _rows(self.tables.TypeDef)
        self._create_type_defs(type_rows)
        self._create_members(type_rows)
        self._attach_interfaces()
        nested = self._attach_nesting()
        for index, row in enumerate(type_rows):
            type_def = self.type_defs[index]
            if _coded_table_name(row.Extends) is not None:
                type_def.base_type = self._resolve_coded(row.Extends)

        top_level = [t for t in self.type_defs if t not in nested]
        return ModuleGraph(
            name=name,
            types=top_level,
            nested_types=[t for t in self.type_defs if t in nested],
            resources=self._read_resources(),
        )

    def _create_type_refs(self) -> None:
        for row in _rows(self.tables.TypeRef):
            self.type_refs.append(TypeRef(heap_text(row.TypeNamespace), heap_text(row.TypeName)))

    def _create_type_defs(self, type_rows: list) -> None:
        for index, row in enumerate(type_rows, start=1):
            self.type_defs.append(TypeDef(
                namespace=heap_text(row.TypeNamespace),
                name=heap_text(row.TypeName),
                flags=row.struct.Flags,
                token=(TOKEN_TYPEDEF << 24) | index,
            ))

    def _create_members(self, type_rows: list) -> None:
        field_rows = _rows(self.tables.Field)
        method_rows = _rows(self.tables.MethodDef)

        for type_def, row in zip(self.type_defs, type_rows):
            for ref in row.FieldList or []:
                index = _ref_index(ref)
                if not 0 < index <= len(field_rows):
                    continue
                type_def.add_field(self._create_field(index, field_rows[index - 1]))
            for ref in row.MethodList or []:
                index = _ref_index(ref)
                if not 0 < index <= len(method_rows):
                    continue
                type_def.add_method(self._create_method(index, method_rows[index - 1]))

    def _create_field(self, index: int, row) -> FieldDef:
        try:
            field_type = parse_field_sig(heap_bytes(row.Signature), self.resolve_type)
        except SignatureError as e:
            logger.debug("Bad field signature for row %d: %s", index, e)
            field_type = TypeRef("", "<invalid>")
        item = FieldDef(
            name=heap_text(row.Name),
            field_type=field_type,
            flags=row.struct.Flags,
            token=(TOKEN_FIELD << 24) | index,
        )
        self.fields[index] = item
        return item

    def _create_method(self, index: int, row) -> MethodDef:
        try:
            sig = parse_method_sig(heap_bytes(row.Signature), self.resolve_type)
            return_type, parameters = sig.return_type, sig.parameters
        except SignatureError as e:
            logger.debug("Bad method signature for row %d: %s", index, e)
            return_type, parameters = TypeRef("", "<invalid>"), []
        item = MethodDef(
            name=heap_text(row.Name),
            return_type=return_type,
            parameters=parameters,
            flags=row.struct.Flags,
            body=self._read_body(index, row.struct.Rva),
            token=(TOKEN_METHODDEF << 24) | index,
        )
        self.methods[index] = item
        return item

    def _read_body(self, index: int, rva: int) -> Optional[MethodBody]:
        if not rva:
            return None
        try:
            code = read_method_body(self.pe.get_data(rva))
        except (ILFormatError, pefile.PEFormatError) as e:
            logger.debug("Unreadable body for method row %d: %s", index, e)
            return None
        return MethodBody(code, self.resolve_token)

    def _attach_interfaces(self) -> None:
        for row in _rows(self.tables.InterfaceImpl):
            index = _ref_index(row.Class)
            if not 0 < index <= len(self.type_defs):
                continue
            iface = self._resolve_coded(row.Interface)
            if iface is not None:
                self.type_defs[index - 1].interfaces.append(iface)

    def _attach_nesting(self) -> set:
        nested = set()
        for row in _rows(self.tables.NestedClass):
            inner = _ref_index(row.NestedClass)
            outer = _ref_index(row.EnclosingClass)
            if 0 < inner <= len(self.type_defs) and 0 < outer <= len(self.type_defs):
                self.type_defs[inner - 1].declaring_type = self.type_defs[outer - 1]
                nested.add(self.type_defs[inner - 1])
        return nested

    def _resolve_coded(self, ref) -> Optional[TypeSig]:
        table = _coded_table_name(ref)
        tag = {"TypeDef": TAG_TYPEDEF, "TypeRef": TAG_TYPEREF, "TypeSpec": TAG_TYPESPEC}.get(table)
        if tag is None:
            return None
        return self.resolve_type(tag, _ref_index(ref))

    def resolve_type(self, tag: int, index: int) -> Optional[TypeSig]:
        """Resolve a TypeDefOrRef coded index (tag, 1-based row)."""
        if index <= 0:
            return None
        if tag == TAG_TYPEDEF:
            return self.type_defs[index - 1] if index <= len(self.type_defs) else None
        if tag == TAG_TYPEREF:
            return self.type_refs[index - 1] if index <= len(self.type_refs) else None
        if tag == TAG_TYPESPEC:
            return self._resolve_type_spec(index)
        return None

    def _resolve_type_spec(self, index: int) -> Optional[TypeSig]:
        if index in self.type_specs:
            return self.type_specs[index]
        rows = _rows(self.tables.TypeSpec)
        if index > len(rows):
            return None
        try:
            spec = parse_type_spec(heap_bytes(rows[index - 1].Signature), self.resolve_type)
        except SignatureError as e:
            logger.debug("Bad TypeSpec row %d: %s", index, e)
            return None
        self.type_specs[index] = spec
        return spec

    def resolve_token(self, token: int) -> Any:
        """Resolve an IL operand token to a model object."""
        table, index = token >> 24, token & 0x00FFFFFF
        if table == TOKEN_METHODDEF:
            return self.methods.get(index)
        if table == TOKEN_FIELD:
            return self.fields.get(index)
        if table == TOKEN_TYPEDEF:
            return self.resolve_type(TAG_TYPEDEF, index)
        if table == TOKEN_TYPEREF:
            return self.resolve_type(TAG_TYPEREF, index)
        if table == TOKEN_TYPESPEC:
            return self.resolve_type(TAG_TYPESPEC, index)
        if table == TOKEN_MEMBERREF:
            return self._resolve_member_ref(index)
        return None

    def _resolve_member_ref(self, index: int) -> Optional[MemberRef]:
        if index in self.member_refs:
            return self.member_refs[index]
        rows = _rows(self.tables.MemberRef)
        if not 0 < index <= len(rows):
            return None
        row = rows[index - 1]
        item = MemberRef(
            name=heap_text(row.Name),
            declaring_type=self._resolve_coded(row.Class),
            token=(TOKEN_MEMBERREF << 24) | index,
        )
        blob = heap_bytes(row.Signature)
        if blob and blob[0] & 0x0F != 0x06:
            try:
                sig = parse_method_sig(blob, self.resolve_type)
                item.return_type, item.parameters = sig.return_type, sig.parameters
            except SignatureError as e:
                logger.debug("Bad MemberRef signature row %d: %s", index, e)
        self.member_refs[index] = item
        return item

    def _read_resources(self) -> list[Resource]:
        resources = []
        for row in _rows(self.tables.ManifestResource):
            implementation = row.struct.Implementation_CodedIndex
            if not implementation:
                kind = ResourceKind.EMBEDDED
                data = self._read_embedded(heap_text(row.Name), row.struct.Offset)
            elif implementation & 0x03 == 0:  # File
                kind, data = ResourceKind.LINKED, b""
            else:
                kind, data = ResourceKind.ASSEMBLY_LINKED, b""
            resources.append(Resource(name=heap_text(row.Name), kind=kind, data=data))
        return resources

    def _read_embedded(self, name: str, offset: int) -> bytes:
        # length-prefixed blob at ResourcesRva + offset
        rva = self.pe.net.struct.ResourcesRva + offset
        try:
            size = int.from_bytes(self.pe.get_data(rva, 4), "little")
            data = self.pe.get_data(rva + 4, size) if size else b""
        except pefile.PEFormatError as e:
            logger.debug("Unreadable resource %s: %s", name, e)
            return b""
        return bytes(data)


def load_module(source: Union[Path, str, bytes]) -> ModuleGraph:
    """Load a .NET module from a path or raw bytes.

    Raises:
        ModuleFormatError: if the input is not a .NET PE image
    """
    if isinstance(source, (bytes, bytearray)):
        data, name = bytes(source), ""
    else:
        path = Path(source)
        data, name = path.read_bytes(), path.name
    pe = open_pe(data)
    try:
        graph = _GraphBuilder(pe).build(name)
    except (pefile.PEFormatError, dnfile.errors.dnFormatError) as e:
        raise ModuleFormatError(f"unreadable module metadata: {e}") from e
    finally:
        pe.close()
    logger.debug(
        "Loaded %s: %d top-level types, %d resources",
        name or "<bytes>", len(graph.types), len(graph.resources),
    )
    return graph
