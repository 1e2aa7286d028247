"""Core bundle detection and extraction functionality."""

from veilunpack.core.inflate import DecompressionError, inflate
from veilunpack.core.manifest import AssemblyInfo, ManifestError, extract_assemblies, parse_offset
from veilunpack.core.matcher import SignatureSet, match_signatures
from veilunpack.core.resolver import AssemblyResolver
from veilunpack.core.resources import BundleResources, locate_bundle_resources

__all__ = [
    "AssemblyInfo",
    "AssemblyResolver",
    "BundleResources",
    "DecompressionError",
    "ManifestError",
    "SignatureSet",
    "extract_assemblies",
    "inflate",
    "locate_bundle_resources",
    "match_signatures",
    "parse_offset",
]
