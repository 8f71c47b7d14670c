"""Namespace filter: select the references owned by one peer.

Pure functions, no storage access.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from nsprune.models.reference import NamespacePattern, Reference


def filter_namespace(
    references: Iterable[Reference],
    peer: str | NamespacePattern,
) -> Iterator[Reference]:
    """Yield the references whose names fall under *peer*'s namespace.

    Lazy and total: any iterable is accepted, including an empty one.
    Matching is a whole-segment prefix test (see NamespacePattern).

    Raises:
        InvalidIdentifierError: If *peer* is not a valid identifier.
    """
    pattern = peer if isinstance(peer, NamespacePattern) else NamespacePattern(peer)
    return (ref for ref in references if pattern.matches(ref.name))
