"""
Pydantic schemas for the AddonSync backend.

Typed records for addon manifests and platform collection entries.
"""

from .manifest import AddonEntry, CatalogEntry, CatalogExtra, CatalogKey, Manifest, ResourceEntry, parse_manifest

__all__ = [
    "AddonEntry",
    "CatalogEntry",
    "CatalogExtra",
    "CatalogKey",
    "Manifest",
    "ResourceEntry",
    "parse_manifest",
]
