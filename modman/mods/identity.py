# modman/mods/identity.py
from __future__ import annotations
import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from modman.semver.semver import compareVersions

if TYPE_CHECKING:
    from modman.mods.models import ModRecord

logger = logging.getLogger(__name__)

__all__ = [
    "UNKNOWN_ID",
    "MANIFEST_ID_RE",
    "normalizeId",
    "isValidCanonicalId",
    "createIdFromFilename",
    "detectDuplicateIds",
    "resolveDuplicateConflict",
    "collapseDuplicates",
]

UNKNOWN_ID = "unknown"

# Charset accepted in a package manifest before normalization
MANIFEST_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

_CANONICAL_ID_RE = re.compile(r"^[a-z0-9](?:[a-z0-9.-]*[a-z0-9])?$")
_SEPARATORS_RE = re.compile(r"[\s_]+")
_DISALLOWED_RE = re.compile(r"[^a-z0-9.-]")
_SEPARATOR_RUN_RE = re.compile(r"[.-]{2,}")



def normalizeId(raw: str | None) -> str:
    """
    Canonical, case-insensitive mod id.

        "Author.Cool_Mod"   -> "author.cool-mod"
        "  My  Mod!! "      -> "my-mod"
        "a..b"              -> "a-b"
        "" / None / "!!"    -> "unknown"
    """
    if not raw:
        return UNKNOWN_ID
    value = raw.strip().lower()
    value = _SEPARATORS_RE.sub("-", value)
    value = _DISALLOWED_RE.sub("", value)
    value = _SEPARATOR_RUN_RE.sub("-", value)
    value = value.strip(".-")
    return value or UNKNOWN_ID



def isValidCanonicalId(value: str) -> bool:
    return bool(value) and value != UNKNOWN_ID and bool(_CANONICAL_ID_RE.fullmatch(value))



def createIdFromFilename(path: str | Path) -> str:
    """Best guess at an id for a loose plugin binary ("CoolMod.dll" -> "coolmod")."""
    return normalizeId(Path(path).stem)



def detectDuplicateIds(records: Iterable[ModRecord]) -> dict[str, list[ModRecord]]:
    """Canonical id -> every record claiming it, for ids claimed more than once."""
    groups: dict[str, list[ModRecord]] = {}
    for record in records:
        groups.setdefault(normalizeId(record.id), []).append(record)
    return {modId: group for modId, group in groups.items() if len(group) > 1}



def _safeCompare(left: str, right: str) -> int:
    try:
        return compareVersions(left, right)
    except ValueError:
        return 0



def _preferred(left: ModRecord, right: ModRecord, priority: Sequence[str]) -> ModRecord:
    for criterion in priority:
        if criterion == "enabled":
            if left.enabled != right.enabled:
                return left if left.enabled else right
        elif criterion == "metadata":
            leftScore, rightScore = left.metadataScore(), right.metadataScore()
            if leftScore != rightScore:
                return left if leftScore > rightScore else right
        elif criterion == "version":
            cmp = _safeCompare(left.version, right.version)
            if cmp != 0:
                return left if cmp > 0 else right
        elif criterion == "installedAt":
            if left.installedAt != right.installedAt:
                return left if left.installedAt > right.installedAt else right
        else:
            raise ValueError(f"Unknown duplicate priority criterion {criterion!r}")
    return left



def resolveDuplicateConflict(candidates: Sequence[ModRecord], priority: Sequence[str]) -> ModRecord:
    """
    Pick the record that survives among records sharing one canonical id.

    `priority` lists criteria in order ("enabled", "metadata", "version",
    "installedAt"); the first criterion that tells two records apart wins.
    Full ties keep the earlier candidate.
    """
    if not candidates:
        raise ValueError("No candidates to choose from")
    winner = candidates[0]
    for candidate in candidates[1:]:
        winner = _preferred(winner, candidate, priority)
    return winner



def collapseDuplicates(records: Iterable[ModRecord], priority: Sequence[str]) -> list[ModRecord]:
    """One record per canonical id, in first-seen order."""
    groups: dict[str, list[ModRecord]] = {}
    for record in records:
        groups.setdefault(normalizeId(record.id), []).append(record)

    out: list[ModRecord] = []
    for modId, group in groups.items():
        if len(group) > 1:
            winner = resolveDuplicateConflict(group, priority)
            logger.warning(
                "Duplicate mod id '%s' found %d times; keeping the one at '%s'",
                modId, len(group), winner.installPath,
            )
            out.append(winner)
        else:
            out.append(group[0])
    return out
