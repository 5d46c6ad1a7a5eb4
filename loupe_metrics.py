# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Color-Difference Metrics
========================
JIT-compiled Delta E formulas with a scalar entry point for single pairs
and a batch entry point (one reference against N samples) for the search
engine.

Formulas:
    - dE76       Euclidean distance in L*a*b*.
    - dE94       CIE 1994 with k_L = 2, K1 = 0.048, K2 = 0.014 by default.
                 S_C and S_H use the chroma of the *reference*.
    - dE00       CIEDE2000 (Sharma, Wu & Dalal 2005) with parametric
                 k_L, k_C, k_H (all 1 by default) and a ``textiles``
                 shortcut (k_L = 2).
    - dECMC l:c  CMC 1984, l:c = 1:1 or 2:1.  All weights derive from the
                 *reference*.

Symmetry:
    dE76 and dE00 are symmetric.  dE94 and CMC are directional: the first
    argument is the reference (standard), the second the sample (batch).

Inputs with a non-finite component raise ``InvalidInput``; the compiled
kernels never see NaN.

The scalar and batch kernels, and the ``ColorMetrics`` facade, are shared
with the Loom color engine (``loom_colorengine.ColorMetrics``); the
CIEDE2000 kernel is unchanged from there.

References:
    - Sharma, G., Wu, W., & Dalal, E. N. (2005). "The CIEDE2000
      color-difference formula".
    - Clarke, McDonald, Rigg (1984). "CMC l:c colour difference formula".
    - CIE Publication 116-1995 (CIE 1994 colour difference).
"""

import numpy as np
from numba import njit, float64, prange
from typing import Any, Final, Tuple, TypeAlias, Union

from loupe_errors import InvalidInput
from loupe_records import DeltaEMethod, LabColor, coerce_lab

__all__ = [
    "DE94_K_L",
    "DE94_K1",
    "DE94_K2",
    "ColorMetrics",
    "delta_e",
    "delta_e_batch",
]

ArrayFloat: TypeAlias = np.typing.NDArray[np.floating]
LabInput: TypeAlias = Union[LabColor, Any]

# --- Constants ---
C25_7: Final[float] = 25.0**7
DEG2RAD: Final[float] = np.pi / 180.0

DE94_K_L: Final[float] = 2.0
DE94_K1: Final[float] = 0.048
DE94_K2: Final[float] = 0.014

# (l, c) per CMC variant
_CMC_RATIOS: Final[dict] = {
    DeltaEMethod.DECMC_1_1: (1.0, 1.0),
    DeltaEMethod.DECMC_2_1: (2.0, 1.0),
}


# =============================================================================
# 1. SCALAR KERNELS
# =============================================================================

@njit(float64(float64, float64, float64, float64, float64, float64), cache=True, fastmath=True)
def _delta_e_76_single(L1: float, a1: float, b1: float, L2: float, a2: float, b2: float) -> float:
    dL = L1 - L2
    da = a1 - a2
    db = b1 - b2
    return np.sqrt(dL*dL + da*da + db*db)


@njit(float64(float64, float64, float64, float64, float64, float64, float64, float64, float64), cache=True, fastmath=True)
def _delta_e_94_single(L1: float, a1: float, b1: float, L2: float, a2: float, b2: float, k_L: float, K1: float, K2: float) -> float:
    """CIE 1994; weighting functions from the reference (first) color."""
    dL = L1 - L2
    C1 = np.sqrt(a1*a1 + b1*b1)
    C2 = np.sqrt(a2*a2 + b2*b2)
    dC = C1 - C2

    da = a1 - a2
    db = b1 - b2
    # dH² = da² + db² - dC²  (can be negative due to FP noise → clamp)
    dH_sq = da*da + db*db - dC*dC
    if dH_sq < 0.0:
        dH_sq = 0.0

    SC = 1.0 + K1 * C1
    SH = 1.0 + K2 * C1

    term_L = dL / k_L
    term_C = dC / SC
    term_H_sq = dH_sq / (SH * SH)
    return np.sqrt(term_L*term_L + term_C*term_C + term_H_sq)


@njit(float64(float64, float64, float64, float64, float64, float64, float64, float64), cache=True, fastmath=True)
def _delta_e_cmc_single(L1: float, a1: float, b1: float, L2: float, a2: float, b2: float, pl: float, pc: float) -> float:
    """CMC l:c (1984); all weights from the reference (first) color."""
    dL = L1 - L2
    C1 = np.sqrt(a1*a1 + b1*b1)
    C2 = np.sqrt(a2*a2 + b2*b2)
    dC = C1 - C2

    da = a1 - a2
    db = b1 - b2
    dH_sq = da*da + db*db - dC*dC
    if dH_sq < 0.0:
        dH_sq = 0.0

    h1 = np.degrees(np.arctan2(b1, a1)) % 360.0

    if L1 < 16.0:
        SL = 0.511
    else:
        SL = (0.040975 * L1) / (1.0 + 0.01765 * L1)

    SC = (0.0638 * C1) / (1.0 + 0.0131 * C1) + 0.638

    if 164.0 <= h1 <= 345.0:
        T = 0.56 + abs(0.2 * np.cos((h1 + 168.0) * DEG2RAD))
    else:
        T = 0.36 + abs(0.4 * np.cos((h1 + 35.0) * DEG2RAD))

    C1_4 = C1**4
    F = np.sqrt(C1_4 / (C1_4 + 1900.0))

    SH = SC * (F * T + 1.0 - F)

    term_L = dL / (pl * SL)
    term_C = dC / (pc * SC)
    term_H_sq = dH_sq / (SH * SH)
    return np.sqrt(term_L*term_L + term_C*term_C + term_H_sq)


@njit(float64(float64, float64, float64, float64, float64, float64, float64, float64, float64), cache=True, fastmath=True)
def _delta_e_2000_single(L1: float, a1: float, b1: float, L2: float, a2: float, b2: float, k_L: float, k_C: float, k_H: float) -> float:
    """Single-pair CIEDE2000 with parametric factors."""
    C1 = np.hypot(a1, b1)
    C2 = np.hypot(a2, b2)
    C_bar = (C1 + C2) * 0.5
    C_bar_7 = C_bar**7
    G = 0.5 * (1.0 - np.sqrt(C_bar_7 / (C_bar_7 + C25_7)))
    scale = 1.0 + G
    a1_p = scale * a1
    a2_p = scale * a2
    C1_p = np.hypot(a1_p, b1)
    C2_p = np.hypot(a2_p, b2)
    h1_p = np.degrees(np.arctan2(b1, a1_p)) % 360.0
    h2_p = np.degrees(np.arctan2(b2, a2_p)) % 360.0
    dL_p = L2 - L1
    dC_p = C2_p - C1_p
    dh_p = 0.0
    if C1_p * C2_p > 1e-12:
        diff = h2_p - h1_p
        if abs(diff) <= 180: dh_p = diff
        elif diff > 180: dh_p = diff - 360.0
        else: dh_p = diff + 360.0
    dH_p = 2.0 * np.sqrt(C1_p * C2_p) * np.sin((dh_p * DEG2RAD) * 0.5)
    L_bar_p = (L1 + L2) * 0.5
    C_bar_p = (C1_p + C2_p) * 0.5
    h_bar_p = h1_p + h2_p
    if C1_p * C2_p > 1e-12:
        if abs(h1_p - h2_p) <= 180: h_bar_p *= 0.5
        elif h_bar_p < 360: h_bar_p = (h_bar_p + 360.0) * 0.5
        else: h_bar_p = (h_bar_p - 360.0) * 0.5
    T = 1.0 - 0.17 * np.cos((h_bar_p - 30.0) * DEG2RAD) + \
        0.24 * np.cos((2.0 * h_bar_p) * DEG2RAD) + \
        0.32 * np.cos((3.0 * h_bar_p + 6.0) * DEG2RAD) - \
        0.20 * np.cos((4.0 * h_bar_p - 63.0) * DEG2RAD)
    d_theta = 30.0 * np.exp(-((h_bar_p - 275.0) / 25.0)**2)
    C_bar_p_7 = C_bar_p**7
    RC = 2.0 * np.sqrt(C_bar_p_7 / (C_bar_p_7 + C25_7))
    RT = -np.sin((2.0 * d_theta) * DEG2RAD) * RC
    L_term = (L_bar_p - 50.0)**2
    SL = 1.0 + (0.015 * L_term) / np.sqrt(20.0 + L_term)
    SC = 1.0 + 0.045 * C_bar_p
    SH = 1.0 + 0.015 * C_bar_p * T
    return np.sqrt((dL_p / (k_L * SL))**2 + (dC_p / (k_C * SC))**2 + (dH_p / (k_H * SH))**2 + RT * (dC_p / (k_C * SC)) * (dH_p / (k_H * SH)))


# =============================================================================
# 2. BATCH KERNELS (row i of lab1 against row i of lab2)
# =============================================================================

@njit(cache=True, fastmath=True, parallel=True)
def _batch_delta_e_76(lab1: ArrayFloat, lab2: ArrayFloat) -> ArrayFloat:
    n = len(lab1)
    res = np.empty(n, dtype=np.float64)
    for i in prange(n):
        res[i] = _delta_e_76_single(lab1[i, 0], lab1[i, 1], lab1[i, 2], lab2[i, 0], lab2[i, 1], lab2[i, 2])
    return res


@njit(cache=True, fastmath=True, parallel=True)
def _batch_delta_e_94(lab1: ArrayFloat, lab2: ArrayFloat, k_L: float, K1: float, K2: float) -> ArrayFloat:
    n = len(lab1)
    res = np.empty(n, dtype=np.float64)
    for i in prange(n):
        res[i] = _delta_e_94_single(lab1[i, 0], lab1[i, 1], lab1[i, 2], lab2[i, 0], lab2[i, 1], lab2[i, 2], k_L, K1, K2)
    return res


@njit(cache=True, fastmath=True, parallel=True)
def _batch_delta_e_cmc(lab1: ArrayFloat, lab2: ArrayFloat, pl: float, pc: float) -> ArrayFloat:
    n = len(lab1)
    res = np.empty(n, dtype=np.float64)
    for i in prange(n):
        res[i] = _delta_e_cmc_single(lab1[i, 0], lab1[i, 1], lab1[i, 2], lab2[i, 0], lab2[i, 1], lab2[i, 2], pl, pc)
    return res


@njit(cache=True, fastmath=True, parallel=True)
def _batch_delta_e_2000(lab1: ArrayFloat, lab2: ArrayFloat, k_L: float, k_C: float, k_H: float) -> ArrayFloat:
    n = len(lab1)
    res = np.empty(n, dtype=np.float64)
    for i in prange(n):
        res[i] = _delta_e_2000_single(lab1[i, 0], lab1[i, 1], lab1[i, 2], lab2[i, 0], lab2[i, 1], lab2[i, 2], k_L, k_C, k_H)
    return res


# =============================================================================
# 3. PUBLIC API
# =============================================================================

class ColorMetrics:
    """
    Array-level Delta E.  Every method takes a reference ``lab1`` and a
    sample ``lab2``, each (3,) or (N, 3); a single row broadcasts against N.
    """

    @staticmethod
    def _prepare_inputs(lab1: ArrayFloat, lab2: ArrayFloat) -> Tuple[ArrayFloat, ArrayFloat]:
        """
        Broadcasting helper.

        ``broadcast_to`` views are materialised into contiguous arrays
        before they reach the ``prange`` kernels.
        """
        l1 = np.ascontiguousarray(np.atleast_2d(lab1), dtype=np.float64)
        l2 = np.ascontiguousarray(np.atleast_2d(lab2), dtype=np.float64)

        if l1.shape[-1] != 3 or l2.shape[-1] != 3:
            raise ValueError(f"Inputs must have shape (N, 3), got {l1.shape} and {l2.shape}")

        if l1.shape[0] != l2.shape[0]:
            if l1.shape[0] == 1: l1 = np.ascontiguousarray(np.broadcast_to(l1, l2.shape))
            elif l2.shape[0] == 1: l2 = np.ascontiguousarray(np.broadcast_to(l2, l1.shape))
            else: raise ValueError(f"Shapes {l1.shape} and {l2.shape} are not broadcastable.")
        return l1, l2

    @staticmethod
    def _finish(res: ArrayFloat, lab1: ArrayFloat, lab2: ArrayFloat) -> Union[float, ArrayFloat]:
        if np.ndim(lab1) == 1 and np.ndim(lab2) == 1:
            return float(res[0])
        return res

    @staticmethod
    def delta_E_76(lab1: ArrayFloat, lab2: ArrayFloat) -> Union[float, ArrayFloat]:
        """CIE Delta E 1976 (Euclidean distance in Lab)."""
        l1, l2 = ColorMetrics._prepare_inputs(lab1, lab2)
        return ColorMetrics._finish(_batch_delta_e_76(l1, l2), lab1, lab2)

    @staticmethod
    def delta_E_94(lab1: ArrayFloat, lab2: ArrayFloat,
                   k_L: float = DE94_K_L, K1: float = DE94_K1, K2: float = DE94_K2) -> Union[float, ArrayFloat]:
        """
        CIE 1994 Color Difference.

        Note: **asymmetric**. lab1 is the reference, lab2 the sample.

        Args:
            k_L: Lightness parametric factor (default 2.0).
            K1: Chroma weighting constant (default 0.048).
            K2: Hue weighting constant (default 0.014).
        """
        l1, l2 = ColorMetrics._prepare_inputs(lab1, lab2)
        return ColorMetrics._finish(_batch_delta_e_94(l1, l2, k_L, K1, K2), lab1, lab2)

    @staticmethod
    def delta_E_2000(lab1: ArrayFloat, lab2: ArrayFloat,
                     k_L: float = 1.0, k_C: float = 1.0, k_H: float = 1.0,
                     textiles: bool = False) -> Union[float, ArrayFloat]:
        """
        CIEDE2000 Color Difference with parametric weights.

        ``textiles=True`` overrides k_L=2, k_C=1, k_H=1 (CIE recommendation
        for textile applications).
        """
        if textiles:
            k_L, k_C, k_H = 2.0, 1.0, 1.0
        l1, l2 = ColorMetrics._prepare_inputs(lab1, lab2)
        return ColorMetrics._finish(_batch_delta_e_2000(l1, l2, k_L, k_C, k_H), lab1, lab2)

    @staticmethod
    def delta_E_CMC(lab1: ArrayFloat, lab2: ArrayFloat,
                    pl: float = 2.0, pc: float = 1.0) -> Union[float, ArrayFloat]:
        """
        CMC l:c (1984) Color Difference.

        Note: **asymmetric**. lab1 is the reference (standard), lab2 the
        sample (batch).  ``pl=2`` is acceptability, ``pl=1`` perceptibility.
        """
        l1, l2 = ColorMetrics._prepare_inputs(lab1, lab2)
        return ColorMetrics._finish(_batch_delta_e_cmc(l1, l2, pl, pc), lab1, lab2)

    @staticmethod
    def by_method(lab1: ArrayFloat, lab2: ArrayFloat,
                  method: Union[DeltaEMethod, str] = DeltaEMethod.DE00) -> Union[float, ArrayFloat]:
        """Dispatch to the formula named by *method*."""
        method = DeltaEMethod.parse(method)
        if method is DeltaEMethod.DE76:
            return ColorMetrics.delta_E_76(lab1, lab2)
        if method is DeltaEMethod.DE94:
            return ColorMetrics.delta_E_94(lab1, lab2)
        if method is DeltaEMethod.DE00:
            return ColorMetrics.delta_E_2000(lab1, lab2)
        pl, pc = _CMC_RATIOS[method]
        return ColorMetrics.delta_E_CMC(lab1, lab2, pl=pl, pc=pc)


def _finite_lab(value: LabInput, role: str) -> LabColor:
    lab = coerce_lab(value)
    if not lab.is_finite:
        raise InvalidInput(f"{role} Lab ({lab.L}, {lab.a}, {lab.b}) has a non-finite component.")
    return lab


def delta_e(lab_a: LabInput, lab_b: LabInput,
            method: Union[DeltaEMethod, str] = DeltaEMethod.DE00) -> float:
    """
    Color difference between a reference *lab_a* and a sample *lab_b*.

    Accepts LabColor, ``{"L", "a", "b"}`` mappings or length-3 sequences.

    Raises:
        InvalidInput: either color has a non-finite component.
        ValueError: *method* names no known formula.
    """
    method = DeltaEMethod.parse(method)
    ref = _finite_lab(lab_a, "Reference")
    smp = _finite_lab(lab_b, "Sample")

    if method is DeltaEMethod.DE76:
        return float(_delta_e_76_single(ref.L, ref.a, ref.b, smp.L, smp.a, smp.b))
    if method is DeltaEMethod.DE94:
        return float(_delta_e_94_single(ref.L, ref.a, ref.b, smp.L, smp.a, smp.b,
                                        DE94_K_L, DE94_K1, DE94_K2))
    if method is DeltaEMethod.DE00:
        return float(_delta_e_2000_single(ref.L, ref.a, ref.b, smp.L, smp.a, smp.b,
                                          1.0, 1.0, 1.0))
    pl, pc = _CMC_RATIOS[method]
    return float(_delta_e_cmc_single(ref.L, ref.a, ref.b, smp.L, smp.a, smp.b, pl, pc))


def delta_e_batch(reference: LabInput, samples: ArrayFloat,
                  method: Union[DeltaEMethod, str] = DeltaEMethod.DE00) -> ArrayFloat:
    """
    Differences between one reference and N samples, shape (N,).

    Raises:
        InvalidInput: the reference or any sample has a non-finite component.
    """
    ref = _finite_lab(reference, "Reference")
    arr = np.asarray(samples, dtype=np.float64).reshape(-1, 3)
    if arr.shape[0] == 0:
        return np.empty(0, dtype=np.float64)
    if not np.all(np.isfinite(arr)):
        bad = int(np.flatnonzero(~np.all(np.isfinite(arr), axis=1))[0])
        raise InvalidInput(f"Sample {bad} has a non-finite Lab component.")
    res = ColorMetrics.by_method(ref.as_array()[np.newaxis, :], arr, method)
    return np.asarray(res, dtype=np.float64)
