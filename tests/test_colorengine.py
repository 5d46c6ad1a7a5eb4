# -*- coding: utf-8 -*-
# Loupe: Colorimetry and similarity search for color standards
#
# Copyright (c) 2026 opticsWolf
#
# SPDX-License-Identifier: LGPL-3.0-or-later

import numpy as np
import pytest

from loupe_colorengine import (
    WeightedIntegrationConverter,
    spectral_to_xyz,
    xyz_to_lab,
)
from loupe_errors import DataUnavailable
from loupe_records import LabSource, SpectralCurve
from loupe_standards import FALLBACK_D50_2_TABLE5, WeightingRow, WeightingTable

convert = WeightedIntegrationConverter.convert
FULL_GRID = list(range(380, 731, 10))


@pytest.fixture(scope="module")
def d50_table():
    return WeightingTable(FALLBACK_D50_2_TABLE5)


def _synthetic_rows(n=8, seed=3):
    rng = np.random.default_rng(seed)
    w = rng.uniform(0.01, 2.0, size=(n, 3))
    return [
        WeightingRow("X", "10", 9, 400 + 20 * i, *w[i])
        for i in range(n)
    ]


# --- Golden & flat curves ---------------------------------------------------

def test_golden_three_point_curve():
    lab = convert({400: 0.5, 500: 0.8, 600: 0.3}, FALLBACK_D50_2_TABLE5)
    assert lab.source is LabSource.SPECTRAL
    assert lab.L == pytest.approx(67.907, abs=0.02)
    assert lab.a == pytest.approx(98.057, abs=0.02)
    assert lab.b == pytest.approx(-39.273, abs=0.02)


@pytest.mark.parametrize("level", [0.05, 0.5, 1.0])
def test_flat_curve_is_neutral(level):
    curve = SpectralCurve(FULL_GRID, [level] * len(FULL_GRID))
    lab = convert(curve, FALLBACK_D50_2_TABLE5)
    assert lab.a == pytest.approx(0.0, abs=1e-2)
    assert lab.b == pytest.approx(0.0, abs=1e-2)


def test_flat_half_reflectance_lightness():
    curve = SpectralCurve(FULL_GRID, [0.5] * len(FULL_GRID))
    lab = convert(curve, FALLBACK_D50_2_TABLE5)
    assert lab.L == pytest.approx(116.0 * 0.5 ** (1.0 / 3.0) - 16.0, abs=1e-6)


def test_flat_partial_curve_is_neutral_for_any_table():
    rows = _synthetic_rows()
    curve = SpectralCurve([420, 440, 460], [0.4, 0.4, 0.4])
    lab = convert(curve, rows)
    assert lab.a == pytest.approx(0.0, abs=1e-2)
    assert lab.b == pytest.approx(0.0, abs=1e-2)


def test_perfect_white_is_l100():
    curve = SpectralCurve(FULL_GRID, [1.0] * len(FULL_GRID))
    lab = convert(curve, FALLBACK_D50_2_TABLE5)
    assert lab.L == pytest.approx(100.0, abs=1e-9)


def test_accepts_table_or_rows(d50_table):
    curve = {400: 0.5, 500: 0.8, 600: 0.3}
    assert convert(curve, d50_table) == convert(curve, FALLBACK_D50_2_TABLE5)


# --- Integration details ----------------------------------------------------

def test_white_point_from_overlap(d50_table):
    curve = SpectralCurve([500, 510, 520], [0.2, 0.4, 0.6])
    xyz, white = spectral_to_xyz(curve, d50_table)
    assert white[1] == pytest.approx(100.0)
    w = d50_table.weights[(d50_table.wavelengths >= 500) & (d50_table.wavelengths <= 520)]
    expected = (np.array([0.2, 0.4, 0.6]) @ w) * (100.0 / w[:, 1].sum())
    np.testing.assert_allclose(xyz, expected)


def test_extrapolated_tails_fold_end_weights(d50_table):
    curve = SpectralCurve([550, 560], [1.0, 0.0])
    xyz, white = spectral_to_xyz(curve, d50_table, extrapolate_tails=True)

    wl, w = d50_table.wavelengths, d50_table.weights
    below = w[wl <= 550].sum(axis=0)
    total = w.sum(axis=0)
    np.testing.assert_allclose(xyz, below * (100.0 / total[1]))
    np.testing.assert_allclose(white, total * (100.0 / total[1]))


def test_extrapolated_flat_curve_stays_neutral():
    curve = SpectralCurve(list(range(420, 701, 10)), [0.5] * 29)
    lab = convert(curve, FALLBACK_D50_2_TABLE5, extrapolate_tails=True)
    assert lab.a == pytest.approx(0.0, abs=1e-2)
    assert lab.b == pytest.approx(0.0, abs=1e-2)


def test_tails_change_partial_result():
    curve = {500: 0.2, 550: 0.6, 600: 0.9}
    plain = convert(curve, FALLBACK_D50_2_TABLE5)
    tails = convert(curve, FALLBACK_D50_2_TABLE5, extrapolate_tails=True)
    assert plain != tails


def test_xyz_to_lab_shapes():
    white = np.array([96.422, 100.0, 82.521])
    single = xyz_to_lab(white, white)
    np.testing.assert_allclose(single, [100.0, 0.0, 0.0], atol=1e-9)
    batch = xyz_to_lab(np.vstack([white, white * 0.0]), white)
    assert batch.shape == (2, 3)
    np.testing.assert_allclose(batch[1], [0.0, 0.0, 0.0], atol=1e-9)


# --- Failures -----------------------------------------------------------------

def test_empty_rows():
    with pytest.raises(DataUnavailable):
        convert({400: 0.5, 410: 0.5}, [])


def test_single_point_curve():
    with pytest.raises(DataUnavailable):
        convert({400: 0.5}, FALLBACK_D50_2_TABLE5)


def test_no_overlap():
    with pytest.raises(DataUnavailable):
        convert({800: 0.5, 810: 0.5}, FALLBACK_D50_2_TABLE5)


def test_no_overlap_with_tails():
    with pytest.raises(DataUnavailable):
        convert({800: 0.5, 810: 0.5}, FALLBACK_D50_2_TABLE5, extrapolate_tails=True)


def test_zero_y_weights():
    rows = [WeightingRow("Z", "2", 1, wl, 0.1, 0.0, 0.1) for wl in (400, 410)]
    with pytest.raises(DataUnavailable):
        convert({400: 0.5, 410: 0.5}, rows)


def test_non_finite_result():
    # zero X weights give Xn = 0 and an undefined a*
    rows = [WeightingRow("Z", "2", 1, wl, 0.0, 1.0, 1.0) for wl in (400, 410)]
    with np.errstate(divide="ignore", invalid="ignore"):
        with pytest.raises(DataUnavailable):
            convert({400: 0.5, 410: 0.5}, rows)


def test_mixed_triples():
    rows = [WeightingRow("D50", "2", 5, 400, 1, 1, 1), WeightingRow("D65", "2", 5, 410, 1, 1, 1)]
    with pytest.raises(ValueError):
        convert({400: 0.5, 410: 0.5}, rows)
