# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: loupe_errors.py — Failure kinds raised by the Loupe core.

Every failure is a distinct type so callers can tell "no data" apart from
"not yet" apart from "compared, nothing close".  An empty match list is a
success and is never signalled through these classes.
"""

from __future__ import annotations

from typing import Hashable, Tuple

__all__ = [
    "LoupeError",
    "DataUnavailable",
    "InvalidInput",
    "ReferenceUnavailable",
    "NotReady",
    "ConflictDetected",
]


class LoupeError(Exception):
    """Base class for all Loupe failures."""


class DataUnavailable(LoupeError, LookupError):
    """No usable weighting rows or spectral curve for a conversion."""


class InvalidInput(LoupeError, ValueError):
    """A Lab color with a non-finite component was handed to a metric."""


class ReferenceUnavailable(LoupeError, LookupError):
    """The reference color resolves to no Lab value from any source."""

    def __init__(self, reference_id: Hashable) -> None:
        super().__init__(
            f"Reference color {reference_id!r} has no resolvable Lab value "
            "(no spectral, measurement or stored Lab data)."
        )
        self.reference_id = reference_id


class NotReady(LoupeError):
    """Weighting tables are still loading and the search needs them."""

    def __init__(self, reference_id: Hashable, *, candidates: bool = False) -> None:
        if candidates:
            detail = ("every candidate against it is spectral-only and the "
                      "weighting tables are not loaded yet.")
        else:
            detail = "it is spectral-only and the weighting tables are not loaded yet."
        super().__init__(f"Search for reference color {reference_id!r} deferred: {detail}")
        self.reference_id = reference_id
        self.candidates = candidates


class ConflictDetected(LoupeError, ValueError):
    """Two selected tags stand in an ancestor/descendant relation."""

    def __init__(self, first: Hashable, second: Hashable) -> None:
        super().__init__(
            f"Cannot select both {first!r} and {second!r}: one is an "
            "ancestor of the other."
        )
        self.first = first
        self.second = second

    @property
    def pair(self) -> Tuple[Hashable, Hashable]:
        return self.first, self.second
