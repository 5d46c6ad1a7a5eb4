# -*- coding: utf-8 -*-
# Loupe: Colorimetry and similarity search for color standards
#
# Copyright (c) 2026 opticsWolf
#
# SPDX-License-Identifier: LGPL-3.0-or-later

import pytest

import loupe
from loupe_standards import FALLBACK_D50_2_TABLE5


def test_version_exposed():
    assert loupe.__version__ == "0.1.0"


def test_convert_spectral_to_lab():
    lab = loupe.convert_spectral_to_lab({400: 0.5, 500: 0.8, 600: 0.3}, FALLBACK_D50_2_TABLE5)
    assert (lab.L, lab.a, lab.b) == pytest.approx((67.907, 98.057, -39.273), abs=0.02)


def test_convert_failure_is_typed():
    with pytest.raises(loupe.DataUnavailable):
        loupe.convert_spectral_to_lab({400: 0.5}, FALLBACK_D50_2_TABLE5)


def test_compute_delta_e():
    assert loupe.compute_delta_e((50, 2.6772, -79.7751), (50, 0, -82.7485)) == pytest.approx(2.0425, abs=1e-4)
    with pytest.raises(loupe.InvalidInput):
        loupe.compute_delta_e((float("nan"), 0, 0), (50, 0, 0), "dE76")


def test_find_similar_colors_with_shared_engine():
    engine = loupe.SimilaritySearchEngine()
    reference = loupe.CandidateColor("ref", lab=(50, 10, 10))
    corpus = [loupe.CandidateColor(f"c{i}", lab=(50, 10 + i, 10)) for i in range(1, 6)]
    controls = loupe.SearchControls(method="dE76", threshold=2.5, max_results=10)

    first = loupe.find_similar_colors(reference, corpus, controls, engine=engine)
    assert [r.candidate_id for r in first.filtered] == ["c1", "c2"]
    again = loupe.find_similar_colors(reference, corpus, controls, engine=engine)
    assert again.from_cache


def test_find_similar_colors_standards_replace_engine_library():
    engine = loupe.SimilaritySearchEngine()
    reference = loupe.CandidateColor("ref", measurements=[
        loupe.MeasurementRecord(mode="M0", spectral={400: 0.5, 500: 0.8, 600: 0.3})])
    with pytest.raises(loupe.NotReady):
        loupe.find_similar_colors(reference, [], engine=engine)
    outcome = loupe.find_similar_colors(reference, [], engine=engine,
                                        standards=loupe.WeightingLibrary.fallback())
    assert outcome.reference_lab.L == pytest.approx(67.907, abs=0.02)


def test_validate_tag_selection():
    parents = {"A": ["B"], "B": [], "C": []}
    assert loupe.validate_tag_selection(["A", "B"], parents) == ("A", "B")
    assert loupe.validate_tag_selection(["A", "C"], parents) is None


def test_errors_share_base():
    for exc in (loupe.DataUnavailable, loupe.InvalidInput, loupe.NotReady,
                loupe.ReferenceUnavailable, loupe.ConflictDetected):
        assert issubclass(exc, loupe.LoupeError)
