# -*- coding: utf-8 -*-
# Loupe: Colorimetry and similarity search for color standards
#
# Copyright (c) 2026 opticsWolf
#
# SPDX-License-Identifier: LGPL-3.0-or-later

import numpy as np
import pytest

from loupe_errors import InvalidInput
from loupe_metrics import ColorMetrics, delta_e, delta_e_batch
from loupe_records import DeltaEMethod, LabColor

ALL_METHODS = list(DeltaEMethod)

# Sharma, Wu & Dalal (2005), Table 1
SHARMA_PAIRS = [
    ((50.0, 2.6772, -79.7751), (50.0, 0.0, -82.7485), 2.0425),
    ((50.0, 0.0, 0.0), (50.0, -1.0, 2.0), 2.3669),
    ((50.0, 2.5, 0.0), (73.0, 25.0, -18.0), 27.1492),
    ((50.0, -0.001, 2.49), (50.0, 0.0009, -2.49), 4.8045),
    ((60.2574, -34.0099, 36.2677), (60.4626, -34.1751, 39.4387), 1.2644),
]


@pytest.fixture(scope="module")
def random_labs():
    rng = np.random.default_rng(42)
    labs = np.column_stack([
        rng.uniform(5, 95, 25),
        rng.uniform(-80, 80, 25),
        rng.uniform(-80, 80, 25),
    ])
    return [tuple(row) for row in labs]


@pytest.mark.parametrize("method", ALL_METHODS)
def test_identity_is_zero(method, random_labs):
    for lab in random_labs:
        assert delta_e(lab, lab, method) == pytest.approx(0.0, abs=1e-9)


@pytest.mark.parametrize("method", [DeltaEMethod.DE76, DeltaEMethod.DE00])
def test_symmetric_methods(method, random_labs):
    for a, b in zip(random_labs, random_labs[1:]):
        assert delta_e(a, b, method) == pytest.approx(delta_e(b, a, method), abs=1e-9)


@pytest.mark.parametrize("lab1, lab2, expected", SHARMA_PAIRS)
def test_ciede2000_reference_pairs(lab1, lab2, expected):
    assert delta_e(lab1, lab2, "dE00") == pytest.approx(expected, abs=1e-4)


def test_de76_lightness_only():
    assert delta_e((50, 0, 0), (55, 0, 0), "dE76") == pytest.approx(5.0)


def test_de94_lightness_only_uses_kl_two():
    assert delta_e((50, 10, 10), (55, 10, 10), "dE94") == pytest.approx(2.5)


def test_de94_is_directional():
    chromatic, neutral = (50, 60, 0), (50, 0, 0)
    assert delta_e(chromatic, neutral, "dE94") == pytest.approx(60.0 / (1.0 + 0.048 * 60.0))
    assert delta_e(neutral, chromatic, "dE94") == pytest.approx(60.0)


def test_de94_custom_constants():
    res = ColorMetrics.delta_E_94(np.array([50.0, 0, 0]), np.array([55.0, 0, 0]),
                                  k_L=1.0, K1=0.045, K2=0.015)
    assert res == pytest.approx(5.0)


@pytest.mark.parametrize("method", [DeltaEMethod.DECMC_1_1, DeltaEMethod.DECMC_2_1])
def test_cmc_is_directional(method):
    a, b = (40, 50, 10), (60, 5, -20)
    assert delta_e(a, b, method) != pytest.approx(delta_e(b, a, method), abs=1e-3)


def test_cmc_lightness_ratio():
    ref, smp = (50, 0, 0), (55, 0, 0)
    one_one = delta_e(ref, smp, "dECMC1:1")
    two_one = delta_e(ref, smp, "dECMC2:1")
    assert one_one == pytest.approx(2.0 * two_one)
    sl = 0.040975 * 50 / (1 + 0.01765 * 50)
    assert one_one == pytest.approx(5.0 / sl)


def test_cmc_dark_reference_uses_constant_sl():
    assert delta_e((10, 0, 0), (15, 0, 0), "dECMC1:1") == pytest.approx(5.0 / 0.511)


@pytest.mark.parametrize("method", ALL_METHODS)
def test_zero_chroma_is_finite(method):
    res = delta_e((50, 0, 0), (60, 0, 0), method)
    assert np.isfinite(res)
    assert res > 0


def test_ciede2000_neutral_pair():
    # no chroma: only the lightness term survives
    sl = 1.0 + 0.015 * 25.0 / np.sqrt(45.0)
    assert delta_e((50, 0, 0), (60, 0, 0), "dE00") == pytest.approx(10.0 / sl)


def test_ciede2000_textiles_halves_lightness_term():
    ref, smp = np.array([50.0, 0, 0]), np.array([60.0, 0, 0])
    sl = 1.0 + 0.015 * 25.0 / np.sqrt(45.0)
    textiles = ColorMetrics.delta_E_2000(ref, smp, k_C=3.0, textiles=True)
    assert textiles == pytest.approx(10.0 / (2.0 * sl))
    assert textiles == pytest.approx(ColorMetrics.delta_E_2000(ref, smp, k_L=2.0))


@pytest.mark.parametrize("bad", [
    (np.nan, 0, 0),
    (50, np.inf, 0),
    {"L": 50, "a": 0},
    LabColor(50.0, 0.0, float("nan")),
])
def test_non_finite_input(bad):
    with pytest.raises(InvalidInput):
        delta_e(bad, (50, 0, 0))
    with pytest.raises(InvalidInput):
        delta_e((50, 0, 0), bad)


def test_invalid_input_is_value_error():
    with pytest.raises(ValueError):
        delta_e((np.nan, 0, 0), (50, 0, 0))


def test_unknown_method():
    with pytest.raises(ValueError):
        delta_e((50, 0, 0), (50, 0, 0), "dE99")


def test_accepts_mappings_and_labcolor():
    assert delta_e({"L": 50, "a": 0, "b": 0}, LabColor(55.0, 0.0, 0.0), "dE76") == pytest.approx(5.0)


@pytest.mark.parametrize("method", ALL_METHODS)
def test_batch_matches_scalar(method, random_labs):
    ref = random_labs[0]
    samples = np.array(random_labs[1:])
    batch = delta_e_batch(ref, samples, method)
    assert batch.shape == (len(samples),)
    expected = [delta_e(ref, s, method) for s in random_labs[1:]]
    np.testing.assert_allclose(batch, expected, rtol=1e-9, atol=1e-9)


def test_batch_empty():
    assert delta_e_batch((50, 0, 0), np.empty((0, 3))).shape == (0,)


def test_batch_non_finite_sample():
    with pytest.raises(InvalidInput):
        delta_e_batch((50, 0, 0), np.array([[50, 0, 0], [np.nan, 0, 0]]))


def test_array_api_broadcasts():
    ref = np.array([50.0, 0.0, 0.0])
    samples = np.array([[55.0, 0.0, 0.0], [60.0, 0.0, 0.0]])
    np.testing.assert_allclose(ColorMetrics.delta_E_76(ref, samples), [5.0, 10.0])
    assert isinstance(ColorMetrics.delta_E_76(ref, samples[0]), float)
    with pytest.raises(ValueError):
        ColorMetrics.delta_E_76(np.zeros((2, 3)), np.zeros((3, 3)))
