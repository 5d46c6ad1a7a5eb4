# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: loupe_records.py — Immutable input/output records of the Loupe core.

Everything here is a read-only value object.  Spectral curves, measurements
and catalog colors are produced upstream (import, device capture) and are
never mutated by the engine; Lab colors and similarity results are computed
on demand.

Notes:
  1.  SpectralCurve stores a sorted integer wavelength grid and a float64
      reflectance vector, both flagged read-only.
  2.  Measurement modes are normalised on construction ("m 3", "3", 3 and
      "M-3" all become "M3") so equality checks never depend on spelling.
  3.  DeltaEMethod lives here rather than in loupe_metrics because
      SearchControls carries one and the metrics module imports LabColor.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    Final,
    Hashable,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeAlias,
    Union,
)

import numpy as np

__all__ = [
    "WeightingKey",
    "DEFAULT_MAX_RESULTS",
    "DEFAULT_THRESHOLD",
    "MIN_THRESHOLD",
    "normalize_mode",
    "normalize_observer",
    "LabSource",
    "DeltaEMethod",
    "SpectralCurve",
    "LabColor",
    "coerce_lab",
    "MeasurementRecord",
    "CandidateColor",
    "SimilarityResult",
    "SearchControls",
]

# ---------------------------------------------------------------------------
# Type aliases & defaults
# ---------------------------------------------------------------------------
# (illuminant name, observer id, table number)
WeightingKey: TypeAlias = Tuple[str, str, int]
LabLike: TypeAlias = Union["LabColor", Mapping[str, Any], Sequence[float], np.ndarray]

DEFAULT_MAX_RESULTS: Final[int] = 50
DEFAULT_THRESHOLD: Final[float] = 10.0
MIN_THRESHOLD: Final[float] = 0.1

# Percentage detection for imported curves: both conditions must hold.
_PERCENT_MAX: Final[float] = 1.1
_PERCENT_MEAN: Final[float] = 1.0


# =============================================================================
# 1.  Measurement modes
# =============================================================================
_MODE_LOOSE = re.compile(r"M\s*-?\s*([0-3])")


def normalize_mode(value: Any) -> Optional[str]:
    """
    Normalise a measurement-mode designation to ``"M0"`` … ``"M3"``.

    Accepts integers 0-3, digit strings, canonical names and sloppy forms
    such as ``"m 3"``, ``"M-3"`` or ``"MODE M3"``.  Returns ``None`` for
    anything unrecognised.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return f"M{value}" if 0 <= value <= 3 else None

    text = str(value).strip().upper()
    if len(text) == 1 and text in "0123":
        return f"M{text}"
    match = _MODE_LOOSE.search(text)
    if match:
        return f"M{match.group(1)}"
    return None


def normalize_observer(value: Any) -> str:
    """Observer ids compare as bare strings: 2, 2.0, "2" and " 2° " give "2"."""
    text = str(value).strip().rstrip("°").strip()
    if text.endswith(".0"):
        text = text[:-2]
    return text


# =============================================================================
# 2.  Enumerations
# =============================================================================
class LabSource(str, Enum):
    """Where a Lab value came from, in decreasing order of authority."""
    SPECTRAL = "spectral"
    MEASUREMENT = "measurement"
    STORED = "stored"
    NONE = "none"


_METHOD_ALIASES: Final[Dict[str, str]] = {
    "de00": "dE00",
    "de2000": "dE00",
    "ciede2000": "dE00",
    "deltae2000": "dE00",
    "de76": "dE76",
    "deltae76": "dE76",
    "cielab": "dE76",
    "de94": "dE94",
    "deltae94": "dE94",
    "decmc": "dECMC2:1",
    "decmc21": "dECMC2:1",
    "decmc2:1": "dECMC2:1",
    "decmc11": "dECMC1:1",
    "decmc1:1": "dECMC1:1",
    "cmc": "dECMC2:1",
    "cmc21": "dECMC2:1",
    "cmc11": "dECMC1:1",
}


class DeltaEMethod(str, Enum):
    """Supported color-difference formulas."""
    DE76 = "dE76"
    DE94 = "dE94"
    DE00 = "dE00"
    DECMC_1_1 = "dECMC1:1"
    DECMC_2_1 = "dECMC2:1"

    @classmethod
    def parse(cls, value: Union["DeltaEMethod", str]) -> "DeltaEMethod":
        """
        Resolve a method from its canonical name or a legacy alias
        (``"dE2000"``, ``"ciede2000"``, ``"cmc"``, ``"cmc11"`` …).

        Raises
        ------
        ValueError
            If *value* names no known method.
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        try:
            return cls(text)
        except ValueError:
            pass
        canonical = _METHOD_ALIASES.get(text.lower().replace(" ", ""))
        if canonical is None:
            raise ValueError(f"Unknown delta E method: {value!r}")
        return cls(canonical)

    @property
    def is_symmetric(self) -> bool:
        return self in (DeltaEMethod.DE76, DeltaEMethod.DE00)


# =============================================================================
# 3.  SpectralCurve
# =============================================================================
@dataclass(slots=True, frozen=True, eq=False)
class SpectralCurve:
    """
    Reflectance per integer wavelength (nm).

    Wavelengths are sorted ascending on construction; points whose
    wavelength or reflectance is non-finite are dropped.  Duplicate
    wavelengths are rejected.  A curve is *usable* with two or more points.
    """
    wavelengths: np.ndarray
    reflectances: np.ndarray

    def __post_init__(self) -> None:
        wl = np.asarray(self.wavelengths, dtype=np.float64).ravel()
        refl = np.asarray(self.reflectances, dtype=np.float64).ravel()
        if wl.shape != refl.shape:
            raise ValueError(
                f"SpectralCurve: {wl.shape[0]} wavelengths vs "
                f"{refl.shape[0]} reflectances."
            )

        keep = np.isfinite(wl) & np.isfinite(refl)
        wl, refl = wl[keep], refl[keep]

        order = np.argsort(wl, kind="stable")
        wl_int = np.rint(wl[order]).astype(np.int64)
        refl = np.ascontiguousarray(refl[order])

        if wl_int.size > 1 and np.any(np.diff(wl_int) == 0):
            raise ValueError("SpectralCurve: duplicate wavelengths.")

        wl_int.setflags(write=False)
        refl.setflags(write=False)
        object.__setattr__(self, "wavelengths", wl_int)
        object.__setattr__(self, "reflectances", refl)

    @classmethod
    def from_mapping(cls, mapping: Mapping[Any, Any]) -> "SpectralCurve":
        """Build from ``{wavelength: reflectance}``; keys may be strings."""
        wls: list[float] = []
        vals: list[float] = []
        for key, value in mapping.items():
            try:
                wl = float(key)
                refl = float(value)
            except (TypeError, ValueError):
                continue
            wls.append(wl)
            vals.append(refl)
        return cls(np.array(wls, dtype=np.float64), np.array(vals, dtype=np.float64))

    def __len__(self) -> int:
        return int(self.wavelengths.shape[0])

    @property
    def is_usable(self) -> bool:
        return len(self) >= 2

    def as_dict(self) -> Dict[int, float]:
        return {int(w): float(r) for w, r in zip(self.wavelengths, self.reflectances)}

    def normalized(self) -> "SpectralCurve":
        """
        Return a copy with percentage data scaled to fractions.

        Data counts as percent when its maximum exceeds 1.1 *and* its mean
        exceeds 1.0; only values above 1.0 are divided by 100.
        """
        refl = self.reflectances
        if refl.size == 0:
            return self
        if float(refl.max()) > _PERCENT_MAX and float(refl.mean()) > _PERCENT_MEAN:
            scaled = np.where(refl > 1.0, refl / 100.0, refl)
            return SpectralCurve(self.wavelengths, scaled)
        return self

    def __repr__(self) -> str:
        if len(self) == 0:
            return "SpectralCurve(points=0)"
        return (
            f"SpectralCurve(points={len(self)}, "
            f"range=[{int(self.wavelengths[0])}, {int(self.wavelengths[-1])}])"
        )


# =============================================================================
# 4.  LabColor
# =============================================================================
@dataclass(slots=True, frozen=True)
class LabColor:
    """CIELAB coordinates plus the provenance of the value."""
    L: float
    a: float
    b: float
    source: LabSource = LabSource.NONE

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.L) and math.isfinite(self.a) and math.isfinite(self.b)

    @property
    def chroma(self) -> float:
        return math.hypot(self.a, self.b)

    @property
    def hue(self) -> float:
        """Hue angle in degrees, [0, 360)."""
        return math.degrees(math.atan2(self.b, self.a)) % 360.0

    def as_array(self) -> np.ndarray:
        return np.array([self.L, self.a, self.b], dtype=np.float64)

    def with_source(self, source: LabSource) -> "LabColor":
        return LabColor(self.L, self.a, self.b, source)

    def __iter__(self):
        return iter((self.L, self.a, self.b))


def _to_float(value: Any) -> float:
    if value is None:
        return math.nan
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in ("nan", "null", "undefined", "none"):
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return float(value)


def coerce_lab(value: LabLike, source: LabSource = LabSource.NONE) -> LabColor:
    """
    Accept a LabColor, a mapping with ``L/a/b`` (or ``l/A/B``,
    ``lab_l/lab_a/lab_b``) keys, or a length-3 sequence.

    Missing or unparsable components become NaN; finiteness is the caller's
    decision.  A LabColor passes through with its own provenance.

    Raises
    ------
    TypeError
        If *value* has none of the accepted shapes.
    """
    if isinstance(value, LabColor):
        return value
    if isinstance(value, Mapping):
        L = value.get("L", value.get("l", value.get("lab_l")))
        a = value.get("a", value.get("A", value.get("lab_a")))
        b = value.get("b", value.get("B", value.get("lab_b")))
        return LabColor(_to_float(L), _to_float(a), _to_float(b), source)

    arr = np.asarray(value, dtype=np.float64).ravel()
    if arr.shape != (3,):
        raise TypeError(f"Expected a Lab triple, got shape {arr.shape}.")
    return LabColor(float(arr[0]), float(arr[1]), float(arr[2]), source)


# =============================================================================
# 5.  Measurements & catalog colors
# =============================================================================
@dataclass(slots=True, frozen=True, eq=False)
class MeasurementRecord:
    """
    One device capture of a color.

    ``spectral`` and ``lab`` accept raw mappings / triples and are coerced;
    ``mode`` is normalised (unrecognised modes become ``None``).
    """
    mode: Optional[str] = None
    spectral: Optional[SpectralCurve] = None
    lab: Optional[LabColor] = None
    tint: Optional[float] = None
    id: Optional[Hashable] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", normalize_mode(self.mode))
        if self.spectral is not None and not isinstance(self.spectral, SpectralCurve):
            object.__setattr__(self, "spectral", SpectralCurve.from_mapping(self.spectral))
        if self.lab is not None:
            object.__setattr__(self, "lab", coerce_lab(self.lab, LabSource.MEASUREMENT))
        if self.tint is not None:
            object.__setattr__(self, "tint", float(self.tint))

    @property
    def is_solid(self) -> bool:
        return self.tint is None or math.isclose(self.tint, 100.0)

    @property
    def has_spectral(self) -> bool:
        return self.spectral is not None and self.spectral.is_usable

    @property
    def stored_lab(self) -> Optional[LabColor]:
        """The stored Lab if all three components are finite."""
        if self.lab is not None and self.lab.is_finite:
            return self.lab
        return None


@dataclass(slots=True, frozen=True, eq=False)
class CandidateColor:
    """A catalog color: measurements plus optional top-level stored Lab."""
    id: Hashable
    name: str = ""
    measurements: Tuple[MeasurementRecord, ...] = field(default_factory=tuple)
    lab: Optional[LabColor] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "measurements", tuple(self.measurements))
        if self.lab is not None:
            object.__setattr__(self, "lab", coerce_lab(self.lab, LabSource.STORED))

    @property
    def stored_lab(self) -> Optional[LabColor]:
        if self.lab is not None and self.lab.is_finite:
            return self.lab
        return None


@dataclass(slots=True, frozen=True)
class SimilarityResult:
    """One scored candidate."""
    candidate_id: Hashable
    delta_e: float
    lab_used: LabColor
    name: str = ""


# =============================================================================
# 6.  Search controls
# =============================================================================
@dataclass(slots=True, frozen=True)
class SearchControls:
    """
    User-facing search parameters.

    ``threshold`` is clamped to at least ``MIN_THRESHOLD`` (NaN becomes the
    minimum); ``max_results`` must be positive.
    """
    mode: str = "M0"
    illuminant: str = "D50"
    observer: str = "2"
    table: int = 5
    method: DeltaEMethod = DeltaEMethod.DE00
    threshold: float = DEFAULT_THRESHOLD
    max_results: int = DEFAULT_MAX_RESULTS

    def __post_init__(self) -> None:
        mode = normalize_mode(self.mode)
        if mode is None:
            raise ValueError(f"Unrecognised measurement mode: {self.mode!r}")
        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "illuminant", str(self.illuminant).strip())
        object.__setattr__(self, "observer", normalize_observer(self.observer))
        object.__setattr__(self, "table", int(self.table))
        object.__setattr__(self, "method", DeltaEMethod.parse(self.method))

        threshold = float(self.threshold)
        if math.isnan(threshold):
            threshold = MIN_THRESHOLD
        object.__setattr__(self, "threshold", max(MIN_THRESHOLD, threshold))

        max_results = int(self.max_results)
        if max_results < 1:
            raise ValueError(f"max_results must be >= 1, got {max_results}")
        object.__setattr__(self, "max_results", max_results)

    @property
    def weighting_key(self) -> WeightingKey:
        return (self.illuminant, self.observer, self.table)
