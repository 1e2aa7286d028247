"""Locating the bundle's payload and manifest resources."""

from dataclasses import dataclass
from typing import Optional

from veilunpack.config import BUNDLE_DATA_RESOURCE, BUNDLE_MANIFEST_RESOURCE
from veilunpack.module.model import ModuleGraph, Resource


@dataclass(frozen=True)
class BundleResources:
    """The compressed payload blob and its manifest."""
    data: Resource
    manifest: Resource


def find_embedded_resource(module: ModuleGraph, name: str) -> Optional[Resource]:
    """Return the resource named exactly ``name`` if it is stored in the module."""
    resource = module.get_resource(name)
    if resource is None or not resource.is_embedded:
        return None
    return resource


def locate_bundle_resources(
    module: ModuleGraph,
    data_name: str = BUNDLE_DATA_RESOURCE,
    manifest_name: str = BUNDLE_MANIFEST_RESOURCE,
) -> Optional[BundleResources]:
    """Find both bundle resources, or ``None`` if either is absent."""
    data = find_embedded_resource(module, data_name)
    manifest = find_embedded_resource(module, manifest_name)
    if data is None or manifest is None:
        return None
    return BundleResources(data=data, manifest=manifest)
