"""Minimal identity reading for .NET modules recovered from a bundle."""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import dnfile
import pefile

logger = logging.getLogger(__name__)

IMAGE_FILE_DLL = 0x2000
IMAGE_SUBSYSTEM_WINDOWS_GUI = 2
IMAGE_SUBSYSTEM_WINDOWS_CUI = 3

ASSEMBLY_FLAG_PUBLIC_KEY = 0x0001


class ModuleFormatError(ValueError):
    """Raised when bytes do not form a readable .NET module."""


class ModuleKind(str, Enum):
    """Kind of a module as derived from its PE headers."""
    CONSOLE = "console"
    WINDOWS = "windows"
    DLL = "dll"
    NETMODULE = "netmodule"


_EXTENSIONS = {
    ModuleKind.CONSOLE: ".exe",
    ModuleKind.WINDOWS: ".exe",
    ModuleKind.DLL: ".dll",
    ModuleKind.NETMODULE: ".netmodule",
}


@dataclass(frozen=True)
class ModuleIdentity:
    full_name: str
    kind: ModuleKind

    @property
    def extension(self) -> str:
        return get_extension(self.kind)


def get_extension(kind: ModuleKind) -> str:
    """File extension used when writing a module of ``kind`` to disk."""
    return _EXTENSIONS[kind]


def get_assembly_simple_name(full_name: str) -> str:
    """Strip version, culture and key token from an assembly full name."""
    return full_name.split(",", 1)[0].strip()


def public_key_token(public_key: bytes) -> bytes:
    """Compute the 8-byte strong-name token of a public key."""
    if len(public_key) == 8:
        return public_key
    return hashlib.sha1(public_key).digest()[-8:][::-1]


def format_assembly_name(
    name: str,
    version: tuple[int, int, int, int],
    culture: Optional[str] = None,
    token: Optional[bytes] = None,
) -> str:
    """Build the display name ``Name, Version=..., Culture=..., PublicKeyToken=...``."""
    version_text = ".".join(str(part) for part in version)
    token_text = token.hex() if token else "null"
    return f"{name}, Version={version_text}, Culture={culture or 'neutral'}, PublicKeyToken={token_text}"


def module_kind_from_headers(characteristics: int, subsystem: int, has_assembly: bool = True) -> ModuleKind:
    if not has_assembly:
        return ModuleKind.NETMODULE
    if characteristics & IMAGE_FILE_DLL:
        return ModuleKind.DLL
    if subsystem == IMAGE_SUBSYSTEM_WINDOWS_CUI:
        return ModuleKind.CONSOLE
    return ModuleKind.WINDOWS


def heap_value(value):
    """Unwrap a dnfile heap item into a plain ``str``/``bytes`` value."""
    if hasattr(value, "value"):
        value = value.value
    return value


def heap_text(value) -> str:
    value = heap_value(value)
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def heap_bytes(value) -> bytes:
    value = heap_value(value)
    if value is None:
        return b""
    return bytes(value)


def open_pe(data: bytes) -> dnfile.dnPE:
    """Parse ``data`` as a .NET PE image."""
    try:
        pe = dnfile.dnPE(data=data)
    except pefile.PEFormatError as e:
        raise ModuleFormatError(f"not a PE image: {e}") from e
    if pe.net is None or pe.net.mdtables is None:
        raise ModuleFormatError("PE image has no .NET metadata")
    return pe


def read_identity(data: bytes) -> ModuleIdentity:
    """Read the assembly full name and module kind from module bytes."""
    pe = open_pe(data)
    tables = pe.net.mdtables

    assembly_rows = list(tables.Assembly.rows) if tables.Assembly is not None else []
    has_assembly = bool(assembly_rows)
    kind = module_kind_from_headers(
        pe.FILE_HEADER.Characteristics,
        pe.OPTIONAL_HEADER.Subsystem,
        has_assembly,
    )

    if not has_assembly:
        module_rows = list(tables.Module.rows) if tables.Module is not None else []
        if not module_rows:
            raise ModuleFormatError("module has neither an Assembly nor a Module row")
        full_name = heap_text(module_rows[0].Name)
        logger.debug("Read netmodule identity %s", full_name)
        return ModuleIdentity(full_name=full_name, kind=kind)

    row = assembly_rows[0]
    public_key = heap_bytes(row.PublicKey)
    token = None
    if public_key and (row.struct.Flags & ASSEMBLY_FLAG_PUBLIC_KEY or len(public_key) == 8):
        token = public_key_token(public_key)
    full_name = format_assembly_name(
        heap_text(row.Name),
        (row.MajorVersion, row.MinorVersion, row.BuildNumber, row.RevisionNumber),
        heap_text(row.Culture),
        token,
    )
    logger.debug("Read assembly identity %s (%s)", full_name, kind.value)
    return ModuleIdentity(full_name=full_name, kind=kind)
