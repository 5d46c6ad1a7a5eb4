# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: loupe_tags.py — Sharing-tag hierarchy and selection validation.

Tags form a directed graph through parent links; a tag may have several
parents and the data may contain cycles.  A selection is valid when no
selected tag is an ancestor of another selected tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Dict,
    FrozenSet,
    Hashable,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from loupe_errors import ConflictDetected

__all__ = ["TagNode", "TagHierarchy", "TagSelection"]

ParentSpec = Union[Hashable, Iterable[Hashable], None]


@dataclass(slots=True, frozen=True)
class TagNode:
    id: Hashable
    parents: FrozenSet[Hashable] = field(default_factory=frozenset)


def _parent_tuple(parents: ParentSpec) -> Tuple[Hashable, ...]:
    if parents is None:
        return ()
    if isinstance(parents, (str, bytes)) or not isinstance(parents, Iterable):
        return (parents,)
    return tuple(p for p in parents if p is not None)


class TagHierarchy:
    """
    Parent map of the tag graph.

    Unknown tag ids are treated as roots.  Traversals keep a visited set,
    so cyclic parent data terminates.
    """

    __slots__ = ("_parents",)

    def __init__(self, parents_by_tag: Optional[Mapping[Hashable, ParentSpec]] = None) -> None:
        self._parents: Dict[Hashable, Tuple[Hashable, ...]] = {
            tag: _parent_tuple(parents)
            for tag, parents in (parents_by_tag or {}).items()
        }

    @classmethod
    def from_nodes(cls, nodes: Iterable[TagNode]) -> "TagHierarchy":
        return cls({node.id: node.parents for node in nodes})

    def parents(self, tag_id: Hashable) -> Tuple[Hashable, ...]:
        return self._parents.get(tag_id, ())

    def _walk_up(self, tag_id: Hashable) -> Iterator[Hashable]:
        visited: Set[Hashable] = {tag_id}
        stack: List[Hashable] = list(self.parents(tag_id))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            yield current
            stack.extend(self.parents(current))

    def is_ancestor(self, descendant_id: Hashable, ancestor_id: Hashable) -> bool:
        """
        True if *ancestor_id* is reachable from *descendant_id* through one
        or more parent links.  A tag is never its own ancestor, even when
        the data contains a cycle through it.
        """
        return any(tag == ancestor_id for tag in self._walk_up(descendant_id))

    def ancestors(self, tag_id: Hashable) -> FrozenSet[Hashable]:
        return frozenset(self._walk_up(tag_id))

    def find_conflict(self, selected_ids: Iterable[Hashable]) -> Optional[Tuple[Hashable, Hashable]]:
        """
        First pair ``(selected[i], selected[j])``, ``i < j`` in input order,
        where either is an ancestor of the other; ``None`` if valid.
        """
        selected = list(selected_ids)
        ancestor_sets = [self.ancestors(tag) for tag in selected]
        for i in range(len(selected)):
            for j in range(i + 1, len(selected)):
                a, b = selected[i], selected[j]
                if a == b:
                    continue
                if b in ancestor_sets[i] or a in ancestor_sets[j]:
                    return a, b
        return None

    def require_valid(self, selected_ids: Iterable[Hashable]) -> None:
        conflict = self.find_conflict(selected_ids)
        if conflict is not None:
            raise ConflictDetected(*conflict)

    def __contains__(self, tag_id: object) -> bool:
        return tag_id in self._parents

    def __len__(self) -> int:
        return len(self._parents)


class TagSelection:
    """
    An ordered, duplicate-free tag selection that stays conflict-free.

    Every mutation is validated first; a rejected change raises
    ``ConflictDetected`` and leaves the selection untouched.
    """

    def __init__(self, hierarchy: TagHierarchy, selected_ids: Iterable[Hashable] = ()) -> None:
        self._hierarchy = hierarchy
        ids = self._dedupe(selected_ids)
        hierarchy.require_valid(ids)
        self._ids: Tuple[Hashable, ...] = ids

    @staticmethod
    def _dedupe(ids: Iterable[Hashable]) -> Tuple[Hashable, ...]:
        return tuple(dict.fromkeys(ids))

    @property
    def ids(self) -> Tuple[Hashable, ...]:
        return self._ids

    def add(self, tag_id: Hashable) -> None:
        if tag_id in self._ids:
            return
        candidate = self._ids + (tag_id,)
        self._hierarchy.require_valid(candidate)
        self._ids = candidate

    def remove(self, tag_id: Hashable) -> None:
        self._ids = tuple(t for t in self._ids if t != tag_id)

    def replace(self, selected_ids: Iterable[Hashable]) -> None:
        candidate = self._dedupe(selected_ids)
        self._hierarchy.require_valid(candidate)
        self._ids = candidate

    def __contains__(self, tag_id: object) -> bool:
        return tag_id in self._ids

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"TagSelection({list(self._ids)!r})"
