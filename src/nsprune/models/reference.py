"""Reference domain model for nsprune.

RefName is a reference name held as an ordered tuple of path segments.
Reference pairs a name with the content hash it points at.
NamespacePattern selects the references owned by one peer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from nsprune.exceptions import InvalidIdentifierError, InvalidReferenceNameError

# Characters forbidden anywhere in a ref name (git-check-ref-format)
_FORBIDDEN_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")

NAMESPACES_SEGMENT = "namespaces"


def validate_segment(segment: str) -> str | None:
    """Return the reason a single path segment is invalid, or None if valid."""
    if not segment:
        return "empty path segment"
    if segment.startswith("."):
        return "segment cannot start with '.'"
    if segment.endswith(".lock"):
        return "segment cannot end with '.lock'"
    if ".." in segment:
        return "segment cannot contain '..'"
    if "@{" in segment:
        return "segment cannot contain '@{'"
    if _FORBIDDEN_CHARS.search(segment):
        return "segment contains forbidden characters (control, space, ~, ^, :, ?, *, [, \\)"
    return None


def validate_ref_name(name: str) -> None:
    """Validate a full reference name against git-style naming rules.

    Raises InvalidReferenceNameError on violation.
    """
    if not name:
        raise InvalidReferenceNameError(name, "reference name cannot be empty")

    if name.startswith("/") or name.endswith("/") or "//" in name:
        raise InvalidReferenceNameError(name, "reference name has invalid slash usage")

    if name.endswith("."):
        raise InvalidReferenceNameError(name, "reference name cannot end with '.'")

    for segment in name.split("/"):
        reason = validate_segment(segment)
        if reason is not None:
            raise InvalidReferenceNameError(name, reason)


def validate_identifier(kind: str, value: str) -> str:
    """Validate a repository or peer identifier.

    An identifier must be usable both as a directory name under the storage
    root and as a single ref-name segment.

    Raises InvalidIdentifierError on violation.
    """
    if not value:
        raise InvalidIdentifierError(kind, value, "identifier cannot be empty")
    if "/" in value:
        raise InvalidIdentifierError(kind, value, "identifier cannot contain '/'")
    reason = validate_segment(value)
    if reason is not None:
        raise InvalidIdentifierError(kind, value, reason)
    return value


@dataclass(frozen=True)
class RefName:
    """A reference name as an ordered sequence of path segments."""

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, name: str) -> RefName:
        """Parse a slash-separated reference name, validating it."""
        validate_ref_name(name)
        return cls(tuple(name.split("/")))

    def startswith(self, prefix: Iterable[str]) -> bool:
        """True if the leading segments equal *prefix* segment for segment."""
        prefix = tuple(prefix)
        return self.segments[: len(prefix)] == prefix

    def __str__(self) -> str:
        return "/".join(self.segments)

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(frozen=True)
class Reference:
    """A named pointer to a content hash in a repository's reference store."""

    name: RefName
    target: str

    @classmethod
    def of(cls, name: str, target: str) -> Reference:
        return cls(RefName.parse(name), target)


@dataclass(frozen=True)
class NamespacePattern:
    """Matches the references stored under one peer's namespace.

    A name matches when its segments begin with ``namespaces/<peer>`` or
    with ``refs/namespaces/<peer>`` (the spelling git uses for namespaced
    refs), and at least one segment follows the peer.  Segments are
    compared whole, so peer ``abc`` never matches ``namespaces/abcd/...``.
    """

    peer: str

    def __post_init__(self) -> None:
        validate_identifier("peer", self.peer)

    @property
    def prefixes(self) -> tuple[tuple[str, ...], ...]:
        return (
            (NAMESPACES_SEGMENT, self.peer),
            ("refs", NAMESPACES_SEGMENT, self.peer),
        )

    def matches(self, name: RefName) -> bool:
        for prefix in self.prefixes:
            if len(name) > len(prefix) and name.startswith(prefix):
                return True
        return False

    def __str__(self) -> str:
        return f"{NAMESPACES_SEGMENT}/{self.peer}/*"
