"""
Version Comparison

Dotted numeric version comparison and compatibility constraint matching.

Versions are split on ``.`` and compared component-wise as integers, the
shorter one padded with zeros. Components that are not integers (``"1.x"``,
``"2.0-beta"``) are read as ``0`` rather than rejected.
"""

from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple


class UpdateType(Enum):
    """Size of the jump between two versions."""
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"


ANY_VERSION = "*"
MIN_VERSION_PREFIX = ">="


def _component(part: str) -> int:
    try:
        return int(part.strip())
    except ValueError:
        return 0


def parse_version(version: str) -> Tuple[int, ...]:
    """Split a version into integer components; malformed parts become 0."""
    return tuple(_component(part) for part in (version or "").split("."))


def _padded(a: str, b: str) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    a_parts = list(parse_version(a))
    b_parts = list(parse_version(b))
    length = max(len(a_parts), len(b_parts))
    a_parts.extend([0] * (length - len(a_parts)))
    b_parts.extend([0] * (length - len(b_parts)))
    return tuple(a_parts), tuple(b_parts)


def compare(a: str, b: str) -> int:
    """
    Compare two versions.

    Returns:
        -1 if ``a < b``, 0 if equal, 1 if ``a > b``
    """
    a_parts, b_parts = _padded(a, b)
    for a_part, b_part in zip(a_parts, b_parts):
        if a_part > b_part:
            return 1
        if a_part < b_part:
            return -1
    return 0


def is_newer(candidate: str, current: str) -> bool:
    return compare(candidate, current) > 0


def version_key(version: str) -> Tuple[int, ...]:
    """Sort key ordering versions numerically. Trailing zeros are dropped so equal versions share a key."""
    parts = list(parse_version(version))
    while len(parts) > 1 and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def sort_versions(versions: Iterable[str], reverse: bool = False) -> List[str]:
    return sorted(versions, key=version_key, reverse=reverse)


def satisfies(app_version: str, constraints: Sequence[str]) -> bool:
    """
    Check whether the host application version meets any constraint.

    Constraints are ``"*"`` or ``">=MAJOR.MINOR.PATCH"``. An empty list is not
    satisfied, and unrecognised constraint forms never match.
    """
    for constraint in constraints or ():
        constraint = constraint.strip()
        if constraint == ANY_VERSION:
            return True
        if constraint.startswith(MIN_VERSION_PREFIX):
            minimum = constraint[len(MIN_VERSION_PREFIX):].strip()
            if compare(app_version, minimum) >= 0:
                return True
    return False


def classify_update(current: str, latest: str) -> UpdateType:
    """Classify the update from ``current`` to ``latest`` by the first differing component."""
    current_parts, latest_parts = _padded(current, latest)
    current_parts += (0, 0)
    latest_parts += (0, 0)
    if current_parts[0] != latest_parts[0]:
        return UpdateType.MAJOR
    if current_parts[1] != latest_parts[1]:
        return UpdateType.MINOR
    return UpdateType.PATCH


def is_breaking(current: str, latest: str) -> bool:
    return classify_update(current, latest) == UpdateType.MAJOR


class VersionComparator:
    """
    Version comparison bound to a host application version.

    Thin object wrapper over the module functions so the orchestrator can
    carry the app version around with the comparison rules.
    """

    def __init__(self, app_version: str):
        self.app_version = app_version

    compare = staticmethod(compare)
    classify_update = staticmethod(classify_update)
    is_breaking = staticmethod(is_breaking)
    is_newer = staticmethod(is_newer)
    sort_versions = staticmethod(sort_versions)

    def satisfies(self, constraints: Sequence[str]) -> bool:
        return satisfies(self.app_version, constraints)

    def previous_version(self, versions: Iterable[str], current: str) -> Optional[str]:
        """Greatest version strictly lower than ``current``, or None."""
        older = [v for v in versions if compare(v, current) < 0]
        if not older:
            return None
        return sort_versions(older)[-1]
