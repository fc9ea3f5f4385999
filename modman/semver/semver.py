# modman/semver/semver.py
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import Literal

__all__ = [
    "SEMVER_PATTERN_RE",
    "SemVerModVersion",
    "parseSemVerModVersion",
    "parseVersionLenient",
    "normalizeVersion",
    "compareVersions",
    "SemVerComparator",
    "SemVerModRequirement",
    "parseVersionRange",
    "versionSatisfiesRequirement",
    "RangeStatus",
    "RangeErrorKind",
    "RangeCheck",
    "satisfiesRange",
    "VersionConflictType",
    "classifyMismatch",
]



SEMVER_PATTERN_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|[0-9A-Za-z-]*[A-Za-z-][0-9A-Za-z-]*)"
    r"(?:\.(?:0|[1-9]\d*|[0-9A-Za-z-]*[A-Za-z-][0-9A-Za-z-]*))*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

# Up to three leading integer groups: "1.2.3.4" -> 1.2.3, "v2_0b" -> 2.0.0
_LENIENT_RE = re.compile(r"^\s*[vV]?(\d+)(?:[._-](\d+))?(?:[._-](\d+))?")



@total_ordering
@dataclass(frozen=True)
class SemVerModVersion:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        prerelease = f"-{'.'.join(self.prerelease)}" if self.prerelease else ""
        build = f"+{'.'.join(self.build)}" if self.build else ""
        return f"{base}{prerelease}{build}"

    def __repr__(self) -> str:
        return (
            "SemVerModVersion("
            f"major={self.major}, minor={self.minor}, patch={self.patch}, "
            f"prerelease={self.prerelease}, build={self.build}"
            ")"
        )

    def _prereleaseCmpKey(self) -> tuple:
        # Numeric identifiers have lower precedence than non-numeric.
        # We encode numeric as (0, int), non-numeric as (1, str),
        # so numeric < non-numeric in tuple comparison.
        parts: list[tuple[int, int | str]] = []
        for ident in self.prerelease:
            if ident.isdigit():
                parts.append((0, int(ident)))
            else:
                parts.append((1, ident))
        return tuple(parts)

    def _cmpKey(self) -> tuple:
        # Build is ignored for ordering
        # No prerelease version is preferred over any prerelease version
        releaseFlag = 1 if not self.prerelease else 0
        return (
            self.major,
            self.minor,
            self.patch,
            releaseFlag,
            self._prereleaseCmpKey()
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVerModVersion):
            return NotImplemented
        return (
            self.major == other.major
            and self.minor == other.minor
            and self.patch == other.patch
            and self.prerelease == other.prerelease
        )

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVerModVersion):
            return NotImplemented
        return self._cmpKey() < other._cmpKey()



def parseSemVerModVersion(raw: str) -> SemVerModVersion:
    """
    Parse a semantic version string into SemVerModVersion.

    Accepted forms (examples):
        "1"             -> 1.0.0
        "1.2"           -> 1.2.0
        "1.2.3"         -> 1.2.3
        "1.2.3-alpha.1"
        "1.2.3+build.1"
        "v1.2.3"

    Rejected:
        ".1", "1.", "1..3", "1.2.3.4", "01.2.3" (leading zeroes), etc.
    """
    if raw is None:
        raise ValueError("Version string cannot be None")

    if not isinstance(raw, str):
        raise TypeError(f"Version string must be a string type, got {type(raw).__name__}")

    raw = raw.strip()
    if not raw:
        raise ValueError("Version string cannot be empty or whitespace only")

    # Accept a single 'v' and remove it (v1.2.3 -> 1.2.3)
    if raw[0] in "vV" and len(raw) > 1 and "0" <= raw[1] <= "9":
        raw = raw[1:]

    # Split into core (numeric) and suffix (-prerelease +build)
    sepIndex = len(raw)
    for ch in ("-", "+"):
        idx = raw.find(ch)
        if idx != -1 and idx < sepIndex:
            sepIndex = idx

    core = raw[:sepIndex]
    suffix = raw[sepIndex:]

    coreParts = core.split(".")
    if not 1 <= len(coreParts) <= 3:
        raise ValueError(f"Invalid version core {core!r} in {raw!r}")

    # Reject empty components: ".1", "1.", "1..3"
    if any(part == "" for part in coreParts):
        raise ValueError(f"Empty numeric component in version {raw!r}")

    numericParts: list[int] = []
    for part in coreParts:
        if not re.fullmatch(r"0|[1-9]\d*", part):
            raise ValueError(f"Invalid numeric component {part!r} in version {raw!r}")
        numericParts.append(int(part))

    while len(numericParts) < 3:
        numericParts.append(0)

    major, minor, patch = numericParts

    normalized = f"{major}.{minor}.{patch}{suffix}"

    mtch = SEMVER_PATTERN_RE.match(normalized)
    if not mtch:
        raise ValueError(f"Invalid semantic version {raw!r} (normalized {normalized!r})")

    prereleaseGroup = mtch.group("prerelease")
    buildGroup = mtch.group("build")

    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()
    if prereleaseGroup is not None:
        prerelease = tuple(prereleaseGroup.split("."))
    if buildGroup is not None:
        build = tuple(buildGroup.split("."))

    return SemVerModVersion(
        major=major,
        minor=minor,
        patch=patch,
        prerelease=prerelease,
        build=build
    )



def parseVersionLenient(raw: str | SemVerModVersion) -> SemVerModVersion:
    """
    Strict parse first; on failure extract up to three leading integer groups.

    Third-party mods rarely ship strict semver ("1.0.0.2", "2.1b", "v3_1").
    Only input without any leading integer is rejected.
    """
    if isinstance(raw, SemVerModVersion):
        return raw
    if not isinstance(raw, str):
        raise TypeError(f"Version must be a string, got {type(raw).__name__}")
    try:
        return parseSemVerModVersion(raw)
    except ValueError:
        pass

    mtch = _LENIENT_RE.match(raw)
    if not mtch:
        raise ValueError(f"No version number found in {raw!r}")
    major, minor, patch = (int(group) if group else 0 for group in mtch.groups())
    return SemVerModVersion(major, minor, patch)



def normalizeVersion(raw: str) -> str:
    """Canonical "M.m.p[-pre]" text for a possibly sloppy version; raises ValueError if unusable."""
    parsed = parseVersionLenient(raw)
    return str(SemVerModVersion(parsed.major, parsed.minor, parsed.patch, parsed.prerelease))



def compareVersions(left: str | SemVerModVersion, right: str | SemVerModVersion) -> int:
    """Returns -1, 0 or 1. Both sides are parsed leniently."""
    versionLeft = parseVersionLenient(left)
    versionRight = parseVersionLenient(right)
    if versionLeft < versionRight:
        return -1
    if versionLeft > versionRight:
        return 1
    return 0



# ---------------------------------------------------------------------- #
#                              Requirements                              #
# ---------------------------------------------------------------------- #

Operator = Literal["<", "<=", ">", ">=", "=="]



@dataclass(frozen=True)
class SemVerComparator:
    operator: Operator
    version: SemVerModVersion

    def test(self, version: SemVerModVersion) -> bool:
        if self.operator == "==":
            return version == self.version
        if self.operator == ">=":
            return version >= self.version
        if self.operator == "<=":
            return version <= self.version
        if self.operator == ">":
            return version > self.version
        if self.operator == "<":
            return version < self.version
        raise ValueError(f"Unknown operator {self.operator!r}")

    def __str__(self) -> str:
        return f"{self.operator}{self.version}"



@dataclass(frozen=True)
class SemVerModRequirement:
    # All comparators are AND-ed.
    comparators: tuple[SemVerComparator, ...] = ()
    # If True, requirement is a wildcard ("any version")
    isAny: bool = False
    raw: str = ""

    def __str__(self) -> str:
        if self.isAny:
            return "*"
        return " ".join(str(comp) for comp in self.comparators)

    def isSatisfiable(self) -> bool:
        """False when no version at all can satisfy every comparator (e.g. ">=2.0 <1.0")."""
        if self.isAny or not self.comparators:
            return True

        exact = [comp.version for comp in self.comparators if comp.operator == "=="]
        if exact:
            pinned = exact[0]
            return all(comp.test(pinned) for comp in self.comparators)

        lower: SemVerComparator | None = None
        upper: SemVerComparator | None = None
        for comp in self.comparators:
            if comp.operator in (">", ">="):
                if lower is None or comp.version > lower.version or (
                    comp.version == lower.version and comp.operator == ">"
                ):
                    lower = comp
            else:
                if upper is None or comp.version < upper.version or (
                    comp.version == upper.version and comp.operator == "<"
                ):
                    upper = comp

        if lower is None or upper is None:
            return True
        if lower.version > upper.version:
            return False
        if lower.version == upper.version:
            return lower.operator == ">=" and upper.operator == "<="
        return True



def _makeComparator(op: str, versionStr: str, rawRequirement: str) -> SemVerComparator:
    if not versionStr:
        raise ValueError(f"Missing version after operator {op!r} in requirement {rawRequirement!r}")
    parsedVersion = parseSemVerModVersion(versionStr)
    canonOp = "==" if op == "=" else op
    if canonOp not in ("<", "<=", ">", ">=", "=="):
        raise ValueError(f"Unsupported operator {op!r} in requirement {rawRequirement!r}")
    return SemVerComparator(canonOp, parsedVersion)



def _caretToComparators(version: SemVerModVersion) -> tuple[SemVerComparator, SemVerComparator]:
    """
    ^M.m.p -> caret expansion following SemVer semantics:

    - If M > 0:
        >= M.m.p  and  < (M+1).0.0
    - If M == 0 and m > 0:
        >= 0.m.p  and  < 0.(m+1).0
    - If M == 0 and m == 0
        >= 0.0.p  and  < 0.0.(p+1)
    """
    Major, minor, patch = version.major, version.minor, version.patch
    greaterOrEqual = SemVerComparator(">=", version)
    if Major > 0:
        upperVersion = SemVerModVersion(Major + 1, 0, 0)
    elif Major == 0 and minor > 0:
        upperVersion = SemVerModVersion(0, minor + 1, 0)
    else:
        upperVersion = SemVerModVersion(0, 0, patch + 1)
    lessThan = SemVerComparator("<", upperVersion)
    return greaterOrEqual, lessThan



def _tildeToComparators(version: SemVerModVersion) -> tuple[SemVerComparator, SemVerComparator]:
    """
    ~M.m.p -> tilde expansion (simplified npm-ish):

    - If minor or patch non-zero:
        >= M.m.p  and  < M.(m+1).0
    - Else (only Major specified, e.g. '~1')
        >= M.0.0  and  < (M+1).0.0
    """
    Major, minor, patch = version.major, version.minor, version.patch
    greaterOrEqual = SemVerComparator(">=", version)
    if minor > 0 or patch > 0:
        upperVersion = SemVerModVersion(Major, minor + 1, 0)
    else:
        upperVersion = SemVerModVersion(Major + 1, 0, 0)
    lessThan = SemVerComparator("<", upperVersion)
    return greaterOrEqual, lessThan



def _intervalToComparators(rawVersion: str) -> tuple[SemVerComparator, ...]:
    """
    Interval notation:

        "[1.2.3]"       -> == 1.2.3
        "[1.0,2.0)"     -> >= 1.0.0 AND < 2.0.0
        "(1.0,)"        -> > 1.0.0
        "(,2.0]"        -> <= 2.0.0
    """
    opening, closing = rawVersion[0], rawVersion[-1]
    if closing not in ")]":
        raise ValueError(f"Unterminated interval {rawVersion!r}")

    inner = rawVersion[1:-1].strip()
    if "," not in inner:
        if opening != "[" or closing != "]" or not inner:
            raise ValueError(f"Exact interval must look like '[1.2.3]', got {rawVersion!r}")
        return (SemVerComparator("==", parseSemVerModVersion(inner)),)

    left, sep, right = inner.partition(",")
    left, right = left.strip(), right.strip()
    if "," in right:
        raise ValueError(f"Too many bounds in interval {rawVersion!r}")
    if not left and not right:
        raise ValueError(f"Interval {rawVersion!r} has no bounds")

    comparators: list[SemVerComparator] = []
    if left:
        comparators.append(SemVerComparator(">=" if opening == "[" else ">", parseSemVerModVersion(left)))
    if right:
        comparators.append(SemVerComparator("<=" if closing == "]" else "<", parseSemVerModVersion(right)))
    return tuple(comparators)



def parseVersionRange(rawVersion: str | None) -> SemVerModRequirement:
    """
    Parse a requirement string into SemVerModRequirement.

    Accepted forms:

        None, "", or "*"        -> wildcard (no constraint)

        "1.2.3"                 -> >= 1.2.3 (a bare version is a minimum)
        "=1.2.3", "==1.2.3"     -> == 1.2.3
        ">=1.2.0"               -> >= 1.2.0
        ">=1.2.0 <2.0.0"        -> >=1.2.0 AND <2.0.0 (commas work too)

        "^1.2.3"                -> >=1.2.3 AND <2.0.0 (with 0.x semantics)
        "~1.2.3"                -> >=1.2.3 AND <1.3.0

        "1.2.3 - 2.0.0"         -> >=1.2.3 AND <=2.0.0

        "[1.0,2.0)", "(1.0,)", "(,2.0]", "[1.2.3]"  -> interval notation

    Raises ValueError on malformed input. A range no version can satisfy is
    still returned; see SemVerModRequirement.isSatisfiable().
    """
    if rawVersion is None:
        return SemVerModRequirement(isAny=True)
    if not isinstance(rawVersion, str):
        raise TypeError(f"Requirement must be a string or None, got {type(rawVersion).__name__}")

    original = rawVersion
    rawVersion = rawVersion.strip()
    if not rawVersion or rawVersion == "*":
        return SemVerModRequirement(isAny=True, raw=original)

    if rawVersion[0] in "[(":
        return SemVerModRequirement(comparators=_intervalToComparators(rawVersion), raw=original)

    # Hyphen range needs whitespace around '-' so prereleases ("1.0.0-beta") stay intact
    mtch = re.match(r"^(?P<left>\S+)\s+-\s+(?P<right>\S+)$", rawVersion)
    if mtch:
        versionLeft = parseSemVerModVersion(mtch.group("left"))
        versionRight = parseSemVerModVersion(mtch.group("right"))
        comparators = (SemVerComparator(">=", versionLeft), SemVerComparator("<=", versionRight))
        return SemVerModRequirement(comparators=comparators, raw=original)

    comparators: list[SemVerComparator] = []
    for token in re.split(r"[\s,]+", rawVersion):
        if not token:
            continue

        # Caret or tilde
        if token[0] in ("^", "~"):
            if len(token) == 1:
                raise ValueError(f"Missing version after {token[0]!r} in requirement {rawVersion!r}")
            parsedVersion = parseSemVerModVersion(token[1:])
            if token[0] == "^":
                comparators.extend(_caretToComparators(parsedVersion))
            else:
                comparators.extend(_tildeToComparators(parsedVersion))
            continue

        # Relational / equality operators
        op = None
        versionPart = None
        for candidate in ("<=", ">=", "==", "<", ">", "="):
            if token.startswith(candidate):
                op = candidate
                versionPart = token[len(candidate):]
                break
        if op is not None and isinstance(versionPart, str):
            comparators.append(_makeComparator(op, versionPart, rawVersion))
            continue

        # Otherwise plain version -> >=version
        comparators.append(SemVerComparator(">=", parseSemVerModVersion(token)))

    if not comparators:
        return SemVerModRequirement(isAny=True, raw=original)

    return SemVerModRequirement(comparators=tuple(comparators), raw=original)



def versionSatisfiesRequirement(
    version: SemVerModVersion,
    requirement: SemVerModRequirement | None,
) -> bool:
    """
    Checks if a version satisfies the given requirement.

    requirement None or isAny=True => always returns True.
    """
    if requirement is None or requirement.isAny:
        return True
    return all(comparator.test(version) for comparator in requirement.comparators)



# ---------------------------------------------------------------------- #
#                          Tri-state range check                         #
# ---------------------------------------------------------------------- #

class RangeStatus(str, Enum):
    SATISFIED = "satisfied"
    NOT_SATISFIED = "notSatisfied"
    ERROR = "error"



class RangeErrorKind(str, Enum):
    INVALID_VERSION = "invalidVersion"
    INVALID_RANGE = "invalidRange"



@dataclass(frozen=True, slots=True)
class RangeCheck:
    status: RangeStatus
    errorKind: RangeErrorKind | None = None
    message: str | None = None
    version: SemVerModVersion | None = None
    requirement: SemVerModRequirement | None = None

    @property
    def isSatisfied(self) -> bool:
        return self.status is RangeStatus.SATISFIED

    @property
    def isError(self) -> bool:
        return self.status is RangeStatus.ERROR



def satisfiesRange(
    version: str | SemVerModVersion,
    versionRange: str | SemVerModRequirement | None,
) -> RangeCheck:
    """
    Tri-state range check. Never turns bad input into NOT_SATISFIED:
    an unparseable version or range yields status ERROR with errorKind set.
    """
    try:
        parsedVersion = parseVersionLenient(version)
    except (TypeError, ValueError) as err:
        return RangeCheck(RangeStatus.ERROR, RangeErrorKind.INVALID_VERSION, str(err))

    if isinstance(versionRange, SemVerModRequirement):
        requirement = versionRange
    else:
        try:
            requirement = parseVersionRange(versionRange)
        except (TypeError, ValueError) as err:
            return RangeCheck(RangeStatus.ERROR, RangeErrorKind.INVALID_RANGE, str(err), version=parsedVersion)

    if versionSatisfiesRequirement(parsedVersion, requirement):
        return RangeCheck(RangeStatus.SATISFIED, version=parsedVersion, requirement=requirement)
    return RangeCheck(RangeStatus.NOT_SATISFIED, version=parsedVersion, requirement=requirement)



class VersionConflictType(str, Enum):
    TOO_OLD = "tooOld"
    TOO_NEW = "tooNew"
    INVALID_FORMAT = "invalidFormat"
    UNSATISFIABLE_RANGE = "unsatisfiableRange"



def classifyMismatch(version: SemVerModVersion, requirement: SemVerModRequirement) -> VersionConflictType:
    """Why `version` fails `requirement`: below a lower bound, above an upper bound, or nothing could pass."""
    if not requirement.isSatisfiable():
        return VersionConflictType.UNSATISFIABLE_RANGE

    for comparator in requirement.comparators:
        if comparator.test(version):
            continue
        if comparator.operator in (">", ">="):
            return VersionConflictType.TOO_OLD
        if comparator.operator in ("<", "<="):
            return VersionConflictType.TOO_NEW
        return VersionConflictType.TOO_OLD if version < comparator.version else VersionConflictType.TOO_NEW

    raise ValueError(f"Version {version} satisfies {requirement}; nothing to classify")
