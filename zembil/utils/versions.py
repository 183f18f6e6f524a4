"""
Version ordering used when a package is requested without an explicit version.

Release versions are compared with a real version parser: semantic_version for
npm and packaging (PEP 440) for everything else, so '2.0.0-rc.1' sorts below
'2.0.0'. When any version in a collection cannot be parsed (Maven SNAPSHOTs,
Go pseudo-versions) the whole collection falls back to a natural ordering:
runs of digits numerically, everything else case-insensitively as text.
"""

import re
from collections.abc import Callable, Iterable

import semantic_version
from packaging.version import InvalidVersion, Version

_NUMBER_RE = re.compile(r"(\d+)")


def version_key(version: str) -> tuple:
    """A sort key that orders version strings (or file names) naturally."""
    parts = []
    for part in _NUMBER_RE.split(version):
        if not part:
            continue
        if part.isdigit():
            parts.append((0, int(part)))
        else:
            parts.append((1, part.lower()))
    return tuple(parts)


def _parser_for(manager: str | None) -> Callable:
    if manager is not None and str(getattr(manager, "value", manager)) == "npm":
        return semantic_version.Version
    return Version


def parsed_key(versions: Iterable[str], manager: str | None = None) -> Callable[[str], object]:
    """
    Returns a sort key usable across all of `versions`.

    Either every version parses and the parsed objects are compared, or none
    of them are and the natural key is used, so keys never mix types.
    """
    parser = _parser_for(manager)
    parsed = {}
    try:
        for version in versions:
            parsed[version] = parser(version)
    except (InvalidVersion, ValueError):
        return version_key
    return parsed.__getitem__


def sort_versions(versions: Iterable[str], manager: str | None = None) -> list[str]:
    """Returns the versions in ascending order."""
    versions = list(versions)
    return sorted(versions, key=parsed_key(versions, manager))


def latest_version(versions: Iterable[str], manager: str | None = None) -> str | None:
    """The highest of `versions`, or None when there are none."""
    ordered = sort_versions(versions, manager)
    return ordered[-1] if ordered else None
