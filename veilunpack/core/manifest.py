"""Manifest parsing and extraction of the bundled modules."""

import io
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterator, Optional, Union

from veilunpack.core.inflate import inflate as default_inflate
from veilunpack.diagnostics import DiagnosticKind, Diagnostics
from veilunpack.module.identity import (
    ModuleIdentity,
    get_assembly_simple_name,
    read_identity as default_read_identity,
)

logger = logging.getLogger(__name__)

MANIFEST_ELEMENT = "manifest"
ASSEMBLY_ELEMENT = "assembly"
OFFSET_ATTRIBUTE = "offset"

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1
_DECIMAL = re.compile(r"\s*[+-]?[0-9]+\s*", re.ASCII)

InflateFunc = Callable[[bytes, int, int, bool], bytes]
IdentityReader = Callable[[bytes], ModuleIdentity]


class ManifestError(ValueError):
    """Raised when the manifest resource is not well-formed XML."""


@dataclass(frozen=True)
class AssemblyInfo:
    """One module recovered from the bundle."""
    full_name: str
    extension: str
    data: bytes = field(repr=False)
    simple_name: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "simple_name", get_assembly_simple_name(self.full_name))

    @property
    def file_name(self) -> str:
        return self.simple_name + self.extension

    def __str__(self) -> str:
        return self.full_name


def parse_offset(value: Optional[str]) -> int:
    """Parse a base-10 ``offset`` attribute, returning -1 if absent or invalid."""
    if not value or not _DECIMAL.fullmatch(value):
        return -1
    number = int(value)
    if not _INT32_MIN <= number <= _INT32_MAX:
        return -1
    return number


def local_name(tag: str) -> str:
    """Element name without its ``{namespace}`` prefix."""
    return tag.rpartition("}")[2]


def parse_manifest(manifest: Union[bytes, BinaryIO]) -> ET.Element:
    """Parse the manifest document and return its root element."""
    stream = io.BytesIO(manifest) if isinstance(manifest, (bytes, bytearray)) else manifest
    try:
        return ET.parse(stream).getroot()
    except ET.ParseError as e:
        raise ManifestError(f"invalid bundle manifest: {e}") from e


def iter_assemblies(
    data: bytes,
    manifest: Union[bytes, BinaryIO],
    diagnostics: Optional[Diagnostics] = None,
    inflate: InflateFunc = default_inflate,
    read_identity: IdentityReader = default_read_identity,
) -> Iterator[AssemblyInfo]:
    """Yield the modules listed in ``manifest`` in document order.

    Each ``<assembly offset="N"/>`` entry is decompressed from ``data[N:]``.
    Unexpected elements and unusable offsets are reported to ``diagnostics``
    and skipped; decompression and module-format errors propagate.
    """
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    root = parse_manifest(manifest)
    if local_name(root.tag).lower() != MANIFEST_ELEMENT:
        diagnostics.warn(
            DiagnosticKind.MISSING_MANIFEST,
            "Could not find Manifest element",
            element=local_name(root.tag),
        )
        return

    for child in root:
        # comments and processing instructions
        if not isinstance(child.tag, str):
            continue

        name = local_name(child.tag)
        if name.lower() != ASSEMBLY_ELEMENT:
            diagnostics.warn(
                DiagnosticKind.UNKNOWN_ELEMENT,
                f"Unknown element: {name}",
                element=name,
            )
            continue

        offset = parse_offset(child.get(OFFSET_ATTRIBUTE))
        if offset < 0:
            diagnostics.warn(
                DiagnosticKind.MISSING_OFFSET,
                "Could not find offset attribute",
                element=name,
                attribute=OFFSET_ATTRIBUTE,
            )
            continue

        payload = inflate(data, offset, len(data) - offset, True)
        identity = read_identity(payload)
        logger.debug("Extracted %s (%d bytes) from offset %d", identity.full_name, len(payload), offset)
        yield AssemblyInfo(identity.full_name, identity.extension, payload)


def extract_assemblies(
    data: bytes,
    manifest: Union[bytes, BinaryIO],
    diagnostics: Optional[Diagnostics] = None,
    inflate: InflateFunc = default_inflate,
    read_identity: IdentityReader = default_read_identity,
) -> list[AssemblyInfo]:
    """List form of :func:`iter_assemblies`."""
    return list(iter_assemblies(data, manifest, diagnostics, inflate, read_identity))
