"""Veilunpack - detection and extraction of bundled .NET modules."""

__version__ = "0.1.0"
__author__ = "veilunpack"

from veilunpack.config import Config
from veilunpack.core import AssemblyInfo, AssemblyResolver
from veilunpack.module import load_module

__all__ = [
    "__version__",
    "AssemblyInfo",
    "AssemblyResolver",
    "Config",
    "load_module",
]
