"""
Exclusion/protection policy.

Decides which addons a user should end up with, given the group's ordered
addon list and the user's current remote collection:

1. Group addons are taken in group order (disabled entries were dropped
   upstream of this class).
2. Addons the user excluded are removed.
3. Remote addons whose name is protected (per-user list, plus platform
   defaults while safe mode is on) are never removed, even if excluded
   or not part of the group.

The result lists group-derived addons first, then protected remote addons
the group did not contribute, in their previous relative order. When the
group provides an addon with the same name as a protected remote addon, the
remote entry is kept unchanged in the group's slot.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from ..core.config import get_settings_instance
from ..core.logging import get_logger
from ..schemas.manifest import AddonEntry
from .change_detector import manifest_hash

logger = get_logger(__name__)


def normalize_addon_name(name: str | None) -> str:
    return (name or "").strip().casefold()


def canonicalize_manifest_url(raw: str | None) -> str:
    """Comparable form of an addon transport URL.

    Drops any leading ``@``, the scheme, query and fragment, a trailing
    ``/manifest.json`` and trailing slashes; lowercases the rest.
    """
    if not raw:
        return ""
    url = str(raw).strip().lstrip("@")
    lowered = url.lower()
    for scheme in ("https://", "http://"):
        if lowered.startswith(scheme):
            lowered = lowered[len(scheme) :]
            break
    lowered = lowered.split("?", 1)[0].split("#", 1)[0]
    if lowered.endswith("/manifest.json"):
        lowered = lowered[: -len("/manifest.json")]
    return lowered.rstrip("/")


def addon_fingerprint(entry: AddonEntry) -> str:
    """Identity used for change comparison: canonical URL plus manifest hash."""
    return f"{canonicalize_manifest_url(entry.transport_url)}|{manifest_hash(entry.manifest)}"


@dataclass(frozen=True)
class GroupAddonEntry:
    """A group addon ready to push: its addon id and the wire entry."""

    addon_id: str
    entry: AddonEntry


class ExclusionPolicy:
    def __init__(self, default_addon_names: Iterable[str] | None = None) -> None:
        if default_addon_names is None:
            default_addon_names = get_settings_instance().default_addon_names
        self._default_names = frozenset(
            n for n in (normalize_addon_name(name) for name in default_addon_names) if n
        )

    @property
    def default_addon_names(self) -> frozenset[str]:
        return self._default_names

    def protected_names(self, protected_addons: Iterable[str], safe_mode: bool) -> frozenset[str]:
        names = {n for n in (normalize_addon_name(name) for name in protected_addons or []) if n}
        if safe_mode:
            names |= self._default_names
        return frozenset(names)

    def is_protected(self, entry: AddonEntry, protected: frozenset[str]) -> bool:
        return normalize_addon_name(entry.name) in protected

    def resolve(
        self,
        group_entries: list[GroupAddonEntry],
        excluded_addon_ids: Iterable[str],
        protected_addons: Iterable[str],
        current: list[AddonEntry],
        safe_mode: bool,
    ) -> list[AddonEntry]:
        """Compute the target collection for one user.

        Args:
            group_entries: Enabled group addons in group order
            excluded_addon_ids: Addon ids the user must not receive
            protected_addons: Per-user protected addon names
            current: The user's current remote collection, in remote order
            safe_mode: Whether platform default addons are protected

        Returns:
            The ordered target collection.

        """
        excluded = set(excluded_addon_ids or [])
        protected = self.protected_names(protected_addons, safe_mode)

        # Protected remote entries by name, in remote order
        protected_remote: dict[str, list[int]] = {}
        for index, entry in enumerate(current):
            if self.is_protected(entry, protected):
                protected_remote.setdefault(normalize_addon_name(entry.name), []).append(index)

        placed: set[int] = set()
        seen_urls: set[str] = set()
        target: list[AddonEntry] = []

        def _append(entry: AddonEntry) -> None:
            url = canonicalize_manifest_url(entry.transport_url)
            if url in seen_urls:
                return
            seen_urls.add(url)
            target.append(entry)

        for group_entry in group_entries:
            if group_entry.addon_id in excluded:
                continue
            entry = group_entry.entry
            candidates = protected_remote.get(normalize_addon_name(entry.name))
            if candidates:
                unplaced = [i for i in candidates if i not in placed]
                if not unplaced:
                    continue
                placed.add(unplaced[0])
                entry = current[unplaced[0]]
            _append(entry)

        for index, entry in enumerate(current):
            if index in placed or not self.is_protected(entry, protected):
                continue
            placed.add(index)
            _append(entry)

        return target
