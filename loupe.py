# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: loupe.py — Public entry points.

    convert_spectral_to_lab   reflectance curve + weighting rows -> Lab
    compute_delta_e           Lab pair + formula -> float
    find_similar_colors       reference + corpus + controls -> SearchOutcome
    validate_tag_selection    selected ids + parent map -> conflict or None
"""

from __future__ import annotations

from typing import Any, Hashable, Iterable, Mapping, Optional, Tuple, Union

from loupe_about import __version__
from loupe_colorengine import WeightedIntegrationConverter
from loupe_errors import (
    ConflictDetected,
    DataUnavailable,
    InvalidInput,
    LoupeError,
    NotReady,
    ReferenceUnavailable,
)
from loupe_metrics import delta_e
from loupe_records import (
    CandidateColor,
    DeltaEMethod,
    LabColor,
    MeasurementRecord,
    SearchControls,
    SimilarityResult,
    SpectralCurve,
)
from loupe_search import SearchOutcome, SimilaritySearchEngine
from loupe_standards import WeightingLibrary, WeightingRow
from loupe_tags import TagHierarchy, TagSelection

__all__ = [
    "__version__",
    "convert_spectral_to_lab",
    "compute_delta_e",
    "find_similar_colors",
    "validate_tag_selection",
    # re-exports
    "CandidateColor",
    "ConflictDetected",
    "DataUnavailable",
    "DeltaEMethod",
    "InvalidInput",
    "LabColor",
    "LoupeError",
    "MeasurementRecord",
    "NotReady",
    "ReferenceUnavailable",
    "SearchControls",
    "SearchOutcome",
    "SimilarityResult",
    "SimilaritySearchEngine",
    "SpectralCurve",
    "TagHierarchy",
    "TagSelection",
    "WeightingLibrary",
    "WeightingRow",
]


def convert_spectral_to_lab(curve: Union[SpectralCurve, Mapping[Any, Any]],
                            weighting_rows: Iterable[WeightingRow],
                            *, extrapolate_tails: bool = False) -> LabColor:
    """Raises ``DataUnavailable`` when no Lab can be computed."""
    return WeightedIntegrationConverter.convert(
        curve, weighting_rows, extrapolate_tails=extrapolate_tails
    )


def compute_delta_e(lab_a: Any, lab_b: Any,
                    method: Union[DeltaEMethod, str] = DeltaEMethod.DE00) -> float:
    """Raises ``InvalidInput`` for non-finite components."""
    return delta_e(lab_a, lab_b, method)


def find_similar_colors(reference: CandidateColor,
                        corpus: Iterable[CandidateColor],
                        controls: Optional[SearchControls] = None,
                        *,
                        standards: Optional[WeightingLibrary] = None,
                        engine: Optional[SimilaritySearchEngine] = None,
                        enriched: bool = False) -> SearchOutcome:
    """
    One-shot search.  Pass a long-lived *engine* to reuse its cache; when
    both *engine* and *standards* are given, *standards* replaces the
    engine's library.
    """
    if engine is None:
        engine = SimilaritySearchEngine(standards)
    elif standards is not None:
        engine.standards = standards
    return engine.find_similar(reference, controls, corpus, enriched=enriched)


def validate_tag_selection(selected_ids: Iterable[Hashable],
                           parents_by_tag: Mapping[Hashable, Any]
                           ) -> Optional[Tuple[Hashable, Hashable]]:
    return TagHierarchy(parents_by_tag).find_conflict(selected_ids)
