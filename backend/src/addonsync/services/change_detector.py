"""
Change detection for addon manifests.

``manifest_hash`` is a content hash over the sync-relevant parts of a manifest;
two manifests that differ only in key order or in the order of set-like lists
(types, resources, id prefixes, extras) hash the same. Catalog order is part
of the hash because the platform displays catalogs in manifest order.

``diff_manifests`` reports capability churn between two manifests in the
labels operators see: resource names and ``type/id`` catalog labels.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from ..schemas.manifest import resource_label
from .manifest_filter import catalog_keys, resource_names


def _str_sorted(values: list[Any]) -> list[str]:
    return sorted(str(v) for v in values)


def _normalize_catalog(catalog: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": str(catalog.get("id") or ""),
        "name": str(catalog.get("name") or ""),
        "type": str(catalog.get("type") or ""),
    }
    if isinstance(catalog.get("genres"), list):
        out["genres"] = _str_sorted(catalog["genres"])
    if isinstance(catalog.get("extra"), list):
        extras = [e if isinstance(e, dict) else {"name": str(e)} for e in catalog["extra"]]
        out["extra"] = sorted(extras, key=lambda e: str(e.get("name") or ""))
    for list_field in ("extraSupported", "extraRequired"):
        if isinstance(catalog.get(list_field), list):
            out[list_field] = _str_sorted(catalog[list_field])
    return out


def normalize_manifest(manifest: dict[str, Any] | None) -> dict[str, Any]:
    """Pick the deterministic, sync-relevant fields of a manifest."""
    if not isinstance(manifest, dict):
        return {}

    pick: dict[str, Any] = {}
    for scalar in ("id", "name", "version", "description", "logo"):
        if manifest.get(scalar) is not None:
            pick[scalar] = str(manifest[scalar])

    if isinstance(manifest.get("types"), list):
        pick["types"] = _str_sorted(manifest["types"])

    if isinstance(manifest.get("resources"), list):
        labels = [resource_label(r) for r in manifest["resources"]]
        pick["resources"] = sorted(label for label in labels if label)

    if isinstance(manifest.get("catalogs"), list):
        catalogs = [_normalize_catalog(c) for c in manifest["catalogs"] if isinstance(c, dict)]
        if catalogs:
            pick["catalogs"] = catalogs

    if isinstance(manifest.get("behaviorHints"), dict):
        pick["behaviorHints"] = manifest["behaviorHints"]

    if isinstance(manifest.get("idPrefixes"), list):
        pick["idPrefixes"] = _str_sorted(manifest["idPrefixes"])

    if isinstance(manifest.get("addonCatalogs"), list):
        addon_catalogs = [
            {
                "id": str(ac.get("id") or ""),
                "name": str(ac.get("name") or ""),
                "type": str(ac.get("type") or ""),
            }
            for ac in manifest["addonCatalogs"]
            if isinstance(ac, dict)
        ]
        pick["addonCatalogs"] = sorted(addon_catalogs, key=lambda ac: ac["id"] + ac["type"])

    return pick


def canonical_manifest_json(manifest: dict[str, Any] | None) -> str:
    return json.dumps(normalize_manifest(manifest), sort_keys=True, separators=(",", ":"), default=str)


def manifest_hash(manifest: dict[str, Any] | None) -> str:
    """SHA-256 hex digest of the canonical manifest form."""
    return hashlib.sha256(canonical_manifest_json(manifest).encode("utf-8")).hexdigest()


@dataclass
class ManifestDiff:
    added_resources: list[str] = field(default_factory=list)
    removed_resources: list[str] = field(default_factory=list)
    added_catalogs: list[str] = field(default_factory=list)
    removed_catalogs: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added_resources or self.removed_resources or self.added_catalogs or self.removed_catalogs)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "addedResources": list(self.added_resources),
            "removedResources": list(self.removed_resources),
            "addedCatalogs": list(self.added_catalogs),
            "removedCatalogs": list(self.removed_catalogs),
        }


def _ordered_difference(items: list[str], exclude: set[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        if item not in exclude and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def diff_manifests(old: dict[str, Any] | None, new: dict[str, Any] | None) -> ManifestDiff:
    """Resource and catalog churn from ``old`` to ``new``.

    Additions are listed in ``new`` order and removals in ``old`` order.
    Catalogs are compared by logical key, so an embedded-search entry that
    exists on both sides is never reported.
    """
    old_resources, new_resources = resource_names(old), resource_names(new)
    old_catalogs = [k.label for k in catalog_keys(old)]
    new_catalogs = [k.label for k in catalog_keys(new)]

    return ManifestDiff(
        added_resources=_ordered_difference(new_resources, set(old_resources)),
        removed_resources=_ordered_difference(old_resources, set(new_resources)),
        added_catalogs=_ordered_difference(new_catalogs, set(old_catalogs)),
        removed_catalogs=_ordered_difference(old_catalogs, set(new_catalogs)),
    )
