# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Spectral Color Engine
=====================
Weighted-ordinate (ASTM E308) integration of reflectance curves to CIE XYZ
and the CIE 1976 L*a*b* transform.

Normalization Convention:
    Integration runs over the wavelengths the curve and the weighting table
    have in common:

        X = k · Σ R(λ) Wx(λ)     k = 100 / Σ Wy(λ)

    and the white point is taken from the *same* wavelength set,
    Xn = k · Σ Wx(λ) (so Yn = 100).  A spectrally flat curve therefore
    maps to a* = b* = 0 whatever the table, and a partial curve is never
    compared against a white that includes wavelengths it lacks.

    With ``extrapolate_tails=True`` the table weights below the first and
    above the last sample are folded onto the end samples (ASTM E308
    end-of-range handling) and normalisation runs over the full table.

Numerics:
    The Lab kernel is compiled with ``fastmath=False`` so non-finite values
    propagate; the converter checks finiteness and reports failure instead
    of returning NaN.

References:
    - ASTM E308-18 "Standard Practice for Computing the Colors of Objects
      by Using the CIE System".
    - CIE 15:2004 "Colorimetry".
"""

import functools
import logging
import numpy as np
from numba import njit
from typing import Any, Callable, Final, Iterable, Tuple, TypeAlias, Union

from loupe_errors import DataUnavailable
from loupe_records import LabColor, LabSource, SpectralCurve
from loupe_standards import WeightingRow, WeightingTable

__all__ = [
    # --- Type Aliases ---
    "ArrayFloat",

    # --- Constants ---
    "LAB_EPSILON",
    "LAB_KAPPA",

    # --- Decorators ---
    "handle_shapes",

    # --- Functions ---
    "spectral_to_xyz",
    "xyz_to_lab",

    # --- Classes ---
    "WeightedIntegrationConverter",
]

logger = logging.getLogger(__name__)

# --- Type Aliases ---
ArrayFloat: TypeAlias = np.typing.NDArray[np.floating]
WeightingInput: TypeAlias = Union[WeightingTable, Iterable[WeightingRow]]

# --- Exact Rational Math Constants ---
# delta = 6/29 is the threshold where f(t) switches from cubic to linear.
_LAB_DELTA: Final[float] = 6.0 / 29.0
LAB_EPSILON: Final[float] = _LAB_DELTA * _LAB_DELTA * _LAB_DELTA  # ~0.008856
LAB_KAPPA: Final[float] = (116.0 * 29.0 * 29.0) / (3.0 * 6.0 * 6.0)  # 24389/27 ~903.296


# =============================================================================
# 1. DECORATORS
# =============================================================================

def handle_shapes(func: Callable[..., ArrayFloat]) -> Callable[..., ArrayFloat]:
    """
    Normalize inputs to (N, 3) and restore the caller's shape.

    - If input is (3,), returns (3,)
    - If input is (N, 3), returns (N, 3)
    """
    @functools.wraps(func)
    def wrapper(arr: ArrayFloat, *args: Any, **kwargs: Any) -> ArrayFloat:
        arr = np.asarray(arr, dtype=np.float64)
        arr_in = np.ascontiguousarray(np.atleast_2d(arr))

        if arr_in.shape[-1] != 3:
            raise ValueError(f"Expected last dimension size 3, got {arr_in.shape[-1]}")

        res = func(arr_in, *args, **kwargs)

        if arr.ndim == 1:
            return res[0]
        return res
    return wrapper


# =============================================================================
# 2. LOW-LEVEL MATH KERNELS (Numba)
# =============================================================================

@njit(cache=True, fastmath=False)
def _xyz_to_lab_f(t: ArrayFloat) -> ArrayFloat:
    """
    Non-linear transfer function f(t) for CIELAB.

    Cube root above epsilon, linear segment (kappa·t + 16)/116 below.
    """
    out = np.empty_like(t)
    t_flat = t.ravel()
    out_flat = out.ravel()

    for i in range(t.size):
        v = t_flat[i]
        if v > LAB_EPSILON:
            out_flat[i] = v ** (1.0 / 3.0)
        else:
            out_flat[i] = (LAB_KAPPA * v + 16.0) / 116.0
    return out


# =============================================================================
# 3. XYZ -> LAB
# =============================================================================

@handle_shapes
def xyz_to_lab(xyz_array: ArrayFloat, white: ArrayFloat) -> ArrayFloat:
    """
    Converts XYZ to CIELAB relative to *white*.

    Args:
        xyz_array: XYZ data, shape (N, 3) or (3,).
        white: Reference white (Xn, Yn, Zn) on the same scale as *xyz_array*.

    Returns:
        Lab coordinates, same leading shape as the input.
    """
    white = np.asarray(white, dtype=np.float64)
    f_xyz = _xyz_to_lab_f(xyz_array / white)

    out = np.empty_like(xyz_array)
    out[..., 0] = 116.0 * f_xyz[..., 1] - 16.0
    out[..., 1] = 500.0 * (f_xyz[..., 0] - f_xyz[..., 1])
    out[..., 2] = 200.0 * (f_xyz[..., 1] - f_xyz[..., 2])
    return out


# =============================================================================
# 4. WEIGHTED-ORDINATE INTEGRATION
# =============================================================================

def _as_table(weighting: WeightingInput) -> WeightingTable:
    if isinstance(weighting, WeightingTable):
        return weighting
    rows = list(weighting)
    if not rows:
        raise DataUnavailable("No weighting rows supplied.")
    return WeightingTable(rows)


def _tail_weights(curve: SpectralCurve, table: WeightingTable) -> ArrayFloat:
    """
    Per-sample weights with the table's out-of-range rows folded onto the
    first and last curve samples.
    """
    wl_c = curve.wavelengths
    wl_t = table.wavelengths
    w_t = table.weights

    weights = np.zeros((wl_c.shape[0], 3), dtype=np.float64)
    idx = np.searchsorted(wl_t, wl_c)
    idx_clipped = np.minimum(idx, wl_t.shape[0] - 1)
    matched = wl_t[idx_clipped] == wl_c
    weights[matched] = w_t[idx_clipped[matched]]

    weights[0] = w_t[wl_t <= wl_c[0]].sum(axis=0)
    weights[-1] = w_t[wl_t >= wl_c[-1]].sum(axis=0)
    return weights


def spectral_to_xyz(
    curve: SpectralCurve,
    table: WeightingTable,
    extrapolate_tails: bool = False,
) -> Tuple[ArrayFloat, ArrayFloat]:
    """
    Integrates *curve* against *table*.

    Returns:
        ``(xyz, white)``: both (3,) float64 on the Yn = 100 scale.

    Raises:
        DataUnavailable: fewer than two samples, no wavelength overlap, or a
            non-positive Y weight sum.
    """
    if not curve.is_usable:
        raise DataUnavailable(
            f"Spectral curve has {len(curve)} usable point(s); at least 2 are required."
        )

    if extrapolate_tails:
        wl_c, wl_t = curve.wavelengths, table.wavelengths
        if wl_c[-1] < wl_t[0] or wl_c[0] > wl_t[-1]:
            raise DataUnavailable(
                f"Curve range [{wl_c[0]}, {wl_c[-1]}] nm lies outside table "
                f"{table.key} range [{wl_t[0]}, {wl_t[-1]}] nm."
            )
        weights = _tail_weights(curve, table)
        refl = curve.reflectances
        white_raw = table.weights.sum(axis=0)
    else:
        common, i_curve, i_table = np.intersect1d(
            curve.wavelengths, table.wavelengths,
            assume_unique=True, return_indices=True,
        )
        if common.size == 0:
            raise DataUnavailable(
                f"Curve and table {table.key} share no wavelengths."
            )
        weights = table.weights[i_table]
        refl = curve.reflectances[i_curve]
        white_raw = weights.sum(axis=0)

    if not white_raw[1] > 0.0:
        raise DataUnavailable(
            f"Sum of Y weights is {white_raw[1]:g} over the integration range of {table.key}."
        )

    k = 100.0 / white_raw[1]
    xyz = (refl @ weights) * k
    return xyz, white_raw * k


class WeightedIntegrationConverter:
    """Reflectance curve -> CIELAB via ASTM E308 weighting tables."""

    @staticmethod
    def convert(
        curve: Union[SpectralCurve, Any],
        weighting: WeightingInput,
        extrapolate_tails: bool = False,
    ) -> LabColor:
        """
        Converts a reflectance curve to Lab.

        Args:
            curve: SpectralCurve or ``{wavelength: reflectance}`` mapping.
            weighting: A WeightingTable or the rows of exactly one
                (illuminant, observer, table) triple.
            extrapolate_tails: Fold out-of-range table weights onto the end
                samples and normalise over the full table.

        Returns:
            LabColor with source ``SPECTRAL``.

        Raises:
            DataUnavailable: empty rows, unusable curve, no overlap or a
                non-finite result.
            ValueError: rows mixing several weighting triples.
        """
        if not isinstance(curve, SpectralCurve):
            curve = SpectralCurve.from_mapping(curve)
        table = _as_table(weighting)

        xyz, white = spectral_to_xyz(curve, table, extrapolate_tails)
        lab = xyz_to_lab(xyz, white)

        if not np.all(np.isfinite(lab)):
            raise DataUnavailable(f"Non-finite Lab from curve {curve!r} and table {table.key}.")

        logger.debug("Converted %r with %s -> Lab %s", curve, table.key, lab)
        return LabColor(float(lab[0]), float(lab[1]), float(lab[2]), LabSource.SPECTRAL)
