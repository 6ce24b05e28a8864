"""
Manifest normalizer/filter.

Reduces an addon manifest to the resources and catalogs an operator selected
for it. The filtered manifest is what gets pushed to users, hashed for
change detection and diffed on reload.

Catalog selection is by logical key, so a catalog with an embedded search
extra can be kept for browsing only, for search only, or both (see
``CatalogEntry.logical_keys``). Whenever the catalog resource survives the
resource selection, filtering keeps this invariant::

    catalog_keys(filter_manifest(m, r, sel)) == [k for k in catalog_keys(m) if k in sel]
"""

import copy
from collections.abc import Iterable
from typing import Any

from ..schemas.manifest import (
    EMBED_SEARCH_SUFFIX,
    SEARCH_EXTRA,
    CatalogKey,
    parse_catalog,
    resource_label,
)

CATALOG_RESOURCE = "catalog"
ADDON_CATALOG_RESOURCE = "addon_catalog"


def normalize_catalog_selection(catalogs: Iterable[Any] | None) -> set[CatalogKey]:
    if not catalogs:
        return set()
    keys = set()
    for item in catalogs:
        key = CatalogKey.coerce(item)
        if key is not None:
            keys.add(key)
    return keys


def catalog_keys(manifest: dict[str, Any] | None) -> list[CatalogKey]:
    """Logical catalog keys of a manifest, in catalog order."""
    keys: list[CatalogKey] = []
    for raw in (manifest or {}).get("catalogs") or []:
        parsed = parse_catalog(raw)
        if parsed is not None:
            keys.extend(parsed.logical_keys())
    return keys


def resource_names(manifest: dict[str, Any] | None) -> list[str]:
    names = []
    for raw in (manifest or {}).get("resources") or []:
        label = resource_label(raw)
        if label is not None:
            names.append(label)
    return names


def _strip_search(catalog: dict[str, Any]) -> dict[str, Any]:
    if isinstance(catalog.get("extra"), list):
        catalog["extra"] = [
            e for e in catalog["extra"] if not (isinstance(e, dict) and e.get("name") == SEARCH_EXTRA)
        ]
    for field in ("extraSupported", "extraRequired"):
        if isinstance(catalog.get(field), list):
            catalog[field] = [name for name in catalog[field] if name != SEARCH_EXTRA]
    return catalog


def _require_search(catalog: dict[str, Any]) -> dict[str, Any]:
    if isinstance(catalog.get("extra"), list):
        for entry in catalog["extra"]:
            if isinstance(entry, dict) and entry.get("name") == SEARCH_EXTRA:
                entry["isRequired"] = True
    supported = catalog.get("extraSupported")
    if isinstance(supported, list) and SEARCH_EXTRA in supported:
        required = catalog.get("extraRequired")
        required = list(required) if isinstance(required, list) else []
        if SEARCH_EXTRA not in required:
            required.append(SEARCH_EXTRA)
        catalog["extraRequired"] = required
    return catalog


def _filter_catalog(raw: Any, selected: set[CatalogKey]) -> dict[str, Any] | None:
    parsed = parse_catalog(raw)
    if parsed is None:
        return None

    if not parsed.has_embedded_search:
        return raw if parsed.key in selected else None

    present = parsed.logical_keys()
    kept = [key for key in present if key in selected]
    if not kept:
        return None
    if len(kept) == len(present):
        return raw
    if kept[0].id.endswith(EMBED_SEARCH_SUFFIX):
        return _require_search(raw)
    return _strip_search(raw)


def filter_manifest(
    manifest: dict[str, Any],
    resources: Iterable[str] | None = None,
    catalogs: Iterable[Any] | None = None,
) -> dict[str, Any]:
    """Return a filtered deep copy of ``manifest``.

    Args:
        manifest: Unfiltered manifest JSON
        resources: Resource names to keep; empty or None keeps all resources
        catalogs: Catalog keys (``{type, id}`` or CatalogKey) to keep; empty
            or None keeps all catalogs

    Returns:
        A new manifest dict; the input is never modified.

    """
    result = copy.deepcopy(manifest)

    selected_resources = [r for r in (resources or []) if r]
    if selected_resources:
        wanted = set(selected_resources)
        result["resources"] = [
            r for r in result.get("resources") or [] if resource_label(r) in wanted
        ]
        if CATALOG_RESOURCE not in wanted and "catalogs" in result:
            result["catalogs"] = []
        if ADDON_CATALOG_RESOURCE not in wanted and "addonCatalogs" in result:
            result["addonCatalogs"] = []

    selected_catalogs = normalize_catalog_selection(catalogs)
    if selected_catalogs and result.get("catalogs"):
        filtered = []
        for raw in result["catalogs"]:
            kept = _filter_catalog(raw, selected_catalogs)
            if kept is not None:
                filtered.append(kept)
        result["catalogs"] = filtered

    return result
