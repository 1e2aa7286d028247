"""Detection and extraction of a module bundle in one host module."""

import logging
from typing import Optional

from veilunpack.config import Config
from veilunpack.core.inflate import inflate as default_inflate
from veilunpack.core.manifest import (
    AssemblyInfo,
    IdentityReader,
    InflateFunc,
    iter_assemblies,
)
from veilunpack.core.matcher import SignatureSet, find_bundle_type, match_dependent_types
from veilunpack.core.resources import BundleResources, locate_bundle_resources
from veilunpack.diagnostics import Diagnostics
from veilunpack.module.identity import read_identity as default_read_identity
from veilunpack.module.model import ModuleGraph, Resource, TypeDef

logger = logging.getLogger(__name__)


class AssemblyResolver:
    """Finds the bundle runtime types and the modules embedded in a host module.

    Usage::

        resolver = AssemblyResolver(module)
        resolver.initialize()
        for info in resolver.assembly_infos:
            ...
        if resolver.can_remove_types:
            remove(resolver.bundle_types)
    """

    def __init__(
        self,
        module: ModuleGraph,
        config: Optional[Config] = None,
        diagnostics: Optional[Diagnostics] = None,
        inflate: InflateFunc = default_inflate,
        read_identity: IdentityReader = default_read_identity,
    ):
        self.module = module
        self.config = config or Config()
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self._inflate = inflate
        self._read_identity = read_identity
        self._resources: Optional[BundleResources] = None
        self._signatures = SignatureSet()
        self._infos: list[AssemblyInfo] = []

    @property
    def signatures(self) -> SignatureSet:
        return self._signatures

    @property
    def detected(self) -> bool:
        """True once both resources and the controller type were found."""
        return self._resources is not None

    @property
    def can_remove_types(self) -> bool:
        return self._signatures.complete

    @property
    def bundle_types(self) -> list[TypeDef]:
        return list(self._signatures.types)

    @property
    def assembly_infos(self) -> list[AssemblyInfo]:
        return list(self._infos)

    @property
    def bundle_data_resource(self) -> Optional[Resource]:
        return self._resources.data if self._resources else None

    @property
    def bundle_xml_file_resource(self) -> Optional[Resource]:
        return self._resources.manifest if self._resources else None

    def initialize(self) -> None:
        """Detect the bundle and extract its modules.

        A module without the bundle is left alone. Decompression and
        module-format errors propagate; records extracted before the
        failing entry are kept.
        """
        self._resources = None
        self._signatures = SignatureSet()
        self._infos = []

        if not self._find_type_and_resources():
            return
        self._find_embedded_assemblies()

    def _find_type_and_resources(self) -> bool:
        resources = locate_bundle_resources(
            self.module,
            self.config.bundle_data_resource,
            self.config.bundle_manifest_resource,
        )
        if resources is None:
            return False

        controller = find_bundle_type(self.module)
        if controller is None:
            return False

        self._resources = resources
        self._signatures = match_dependent_types(SignatureSet(controller=controller))
        logger.debug(
            "Bundle controller %s found, all types found: %s",
            controller.full_name, self._signatures.complete,
        )
        return True

    def _find_embedded_assemblies(self) -> None:
        data = self._resources.data.get_resource_data()
        manifest = self._resources.manifest.get_stream()
        for info in iter_assemblies(
            data,
            manifest,
            diagnostics=self.diagnostics,
            inflate=self._inflate,
            read_identity=self._read_identity,
        ):
            self._infos.append(info)
