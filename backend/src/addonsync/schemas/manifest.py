"""
Addon manifest schemas.

Manifests arrive as arbitrary JSON from addon hosts. They are validated into
these models at the fetch boundary so shape errors are reported as
ManifestValidationError instead of surfacing deep inside the filter or the
hash. Unknown fields are preserved: a manifest is passed on to the platform
exactly as the addon published it, minus the capabilities a group filtered out.
"""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ManifestValidationError

SEARCH_EXTRA = "search"
EMBED_SEARCH_SUFFIX = "-embed-search"


@dataclass(frozen=True, order=True)
class CatalogKey:
    """Logical identity of a catalog: ``(type, id)``."""

    type: str
    id: str

    @property
    def label(self) -> str:
        return f"{self.type}/{self.id}"

    @property
    def is_embedded_search(self) -> bool:
        return self.id.endswith(EMBED_SEARCH_SUFFIX)

    @classmethod
    def coerce(cls, value: Any) -> "CatalogKey | None":
        """Accept a CatalogKey, a ``{type, id}`` mapping or a ``(type, id)`` pair."""
        if isinstance(value, CatalogKey):
            return value
        if isinstance(value, dict):
            catalog_type, catalog_id = value.get("type"), value.get("id")
        elif isinstance(value, (list, tuple)) and len(value) == 2:
            catalog_type, catalog_id = value
        else:
            return None
        if not catalog_type or not catalog_id:
            return None
        return cls(str(catalog_type), str(catalog_id))

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "id": self.id}


class _ManifestPart(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ResourceEntry(_ManifestPart):
    name: str
    types: list[str] | None = None
    id_prefixes: list[str] | None = Field(None, alias="idPrefixes")


class CatalogExtra(_ManifestPart):
    name: str
    is_required: bool = Field(False, alias="isRequired")
    options: list[Any] | None = None


class CatalogEntry(_ManifestPart):
    type: str
    id: str
    name: str | None = None
    extra: list[CatalogExtra] = Field(default_factory=list)
    extra_supported: list[str] = Field(default_factory=list, alias="extraSupported")
    extra_required: list[str] = Field(default_factory=list, alias="extraRequired")
    genres: list[Any] | None = None

    @property
    def key(self) -> CatalogKey:
        return CatalogKey(self.type, self.id)

    def extra_names(self) -> set[str]:
        return {e.name for e in self.extra} | set(self.extra_supported)

    def required_extras(self) -> set[str]:
        return {e.name for e in self.extra if e.is_required} | set(self.extra_required)

    @property
    def has_embedded_search(self) -> bool:
        """Search plus at least one other extra: search is selectable on its own."""
        names = self.extra_names()
        return SEARCH_EXTRA in names and bool(names - {SEARCH_EXTRA})

    def logical_keys(self) -> list[CatalogKey]:
        """Selectable keys for this catalog.

        A catalog with an optional embedded search exposes the base key and a
        synthetic ``<id>-embed-search`` key. Once search is required it is a
        search-only catalog and exposes only the synthetic key.
        """
        if not self.has_embedded_search:
            return [self.key]
        embed = CatalogKey(self.type, f"{self.id}{EMBED_SEARCH_SUFFIX}")
        if SEARCH_EXTRA in self.required_extras():
            return [embed]
        return [self.key, embed]


class Manifest(_ManifestPart):
    id: str
    name: str
    version: str
    description: str | None = None
    logo: str | None = None
    types: list[str] = Field(default_factory=list)
    resources: list[str | ResourceEntry] = Field(default_factory=list)
    catalogs: list[CatalogEntry] = Field(default_factory=list)
    addon_catalogs: list[dict[str, Any]] = Field(default_factory=list, alias="addonCatalogs")
    id_prefixes: list[str] | None = Field(None, alias="idPrefixes")
    behavior_hints: dict[str, Any] | None = Field(None, alias="behaviorHints")

    def resource_labels(self) -> list[str]:
        return [r if isinstance(r, str) else r.name for r in self.resources]

    def catalog_keys(self) -> list[CatalogKey]:
        keys: list[CatalogKey] = []
        for catalog in self.catalogs:
            keys.extend(catalog.logical_keys())
        return keys


class AddonEntry(_ManifestPart):
    """One entry of a user's remote addon collection."""

    transport_url: str = Field(alias="transportUrl")
    transport_name: str = Field("", alias="transportName")
    manifest: dict[str, Any] = Field(default_factory=dict)
    flags: dict[str, Any] | None = None

    @property
    def name(self) -> str:
        return str(self.manifest.get("name") or "")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_manifest(data: Any) -> Manifest:
    """Validate raw manifest JSON.

    Raises:
        ManifestValidationError: If required fields are missing or mistyped

    """
    if not isinstance(data, dict):
        raise ManifestValidationError("manifest must be a JSON object")
    try:
        return Manifest.model_validate(data)
    except PydanticValidationError as e:
        raise ManifestValidationError(
            "manifest does not match the addon manifest schema",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


def parse_catalog(data: Any) -> CatalogEntry | None:
    """Best-effort catalog parse; malformed entries yield None."""
    if not isinstance(data, dict):
        return None
    try:
        return CatalogEntry.model_validate(data)
    except PydanticValidationError:
        return None


def resource_label(resource: Any) -> str | None:
    if isinstance(resource, str):
        return resource
    if isinstance(resource, dict) and resource.get("name"):
        return str(resource["name"])
    return None
