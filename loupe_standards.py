# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: loupe_standards.py — ASTM E308 weighting tables.

A weighting table is the set of rows sharing one (illuminant, observer,
table number) triple.  Rows arrive from an external store, possibly in
bulk and possibly late; ``WeightingLibrary.loaded`` tells the search
engine whether that load has completed.

Notes:
  1.  Duplicate wavelengths inside one table trigger a warning; the last
      row wins.
  2.  ``WeightingLibrary.generation`` is bumped on every load so callers
      holding derived results can detect staleness.
  3.  ``FALLBACK_D50_2_TABLE5`` embeds the D50 / 2° / Table 5 rows
      (380-730 nm, 10 nm) so colorimetry works without a store.  The
      weights are the legacy store's placeholder values, not the published
      ASTM E308 Table 5: their full-table white is about
      (45.48, 100, 214.01) while every row carries the published
      (96.422, 100, 82.521).  Conversion normalises against the white of
      the weights actually integrated, so flat curves stay neutral; the
      published white is kept for reference only.  Load the real table
      through ``WeightingLibrary.load`` for absolute colorimetry.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    Final,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import numpy as np

from loupe_records import WeightingKey, normalize_observer

__all__ = [
    "WeightingRow",
    "WeightingTable",
    "WeightingLibrary",
    "FALLBACK_D50_2_TABLE5",
]


# =============================================================================
# 1.  Rows
# =============================================================================
@dataclass(slots=True, frozen=True)
class WeightingRow:
    """
    One row of a weighting table: tristimulus weights at one wavelength.

    ``white_point`` is the published (Xn, Yn, Zn) of the table, if known.
    It is informational; conversion derives the white point from the
    weights actually used.
    """
    illuminant: str
    observer: str
    table: int
    wavelength: int
    x: float
    y: float
    z: float
    white_point: Optional[Tuple[float, float, float]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "illuminant", str(self.illuminant).strip())
        object.__setattr__(self, "observer", normalize_observer(self.observer))
        object.__setattr__(self, "table", int(self.table))

        wl = float(self.wavelength)
        if not math.isfinite(wl):
            raise ValueError(f"WeightingRow: non-finite wavelength {self.wavelength!r}")
        object.__setattr__(self, "wavelength", int(round(wl)))

        for name in ("x", "y", "z"):
            value = float(getattr(self, name))
            if not math.isfinite(value):
                raise ValueError(f"WeightingRow: non-finite {name} weight at {wl:g} nm")
            object.__setattr__(self, name, value)

        if self.white_point is not None:
            wp = tuple(float(v) for v in self.white_point)
            if len(wp) != 3:
                raise ValueError("WeightingRow: white_point must have three components.")
            object.__setattr__(self, "white_point", wp)

    @property
    def key(self) -> WeightingKey:
        return (self.illuminant, self.observer, self.table)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "WeightingRow":
        """
        Build from a store record.

        Accepts the column names of the standards store
        (``illuminant_name``, ``table_number``, ``x_factor`` …) as well as
        the field names of this class.
        """
        def pick(*names: str, default: Any = None) -> Any:
            for name in names:
                if name in record and record[name] is not None:
                    return record[name]
            return default

        wp_parts = (
            pick("white_point_x"),
            pick("white_point_y"),
            pick("white_point_z"),
        )
        white_point = pick("white_point")
        if white_point is None and all(v is not None for v in wp_parts):
            white_point = wp_parts

        return cls(
            illuminant=pick("illuminant_name", "illuminant"),
            observer=pick("observer"),
            table=pick("table_number", "table"),
            wavelength=pick("wavelength"),
            x=pick("x_factor", "x"),
            y=pick("y_factor", "y"),
            z=pick("z_factor", "z"),
            white_point=white_point,
        )


# =============================================================================
# 2.  Tables
# =============================================================================
class WeightingTable:
    """
    All rows of one (illuminant, observer, table) triple as aligned arrays.

    Attributes
    ----------
    key : WeightingKey
    wavelengths : np.ndarray
        Sorted int64 grid, read-only.
    weights : np.ndarray
        ``(N, 3)`` float64 x/y/z weights aligned with ``wavelengths``,
        read-only.
    """

    __slots__ = ("key", "wavelengths", "weights", "published_white_point")

    def __init__(self, rows: Iterable[WeightingRow]) -> None:
        rows = list(rows)
        if not rows:
            raise ValueError("WeightingTable: no rows.")

        key = rows[0].key
        by_wavelength: Dict[int, WeightingRow] = {}
        for row in rows:
            if row.key != key:
                raise ValueError(
                    f"WeightingTable: mixed weighting keys {key} and {row.key}."
                )
            if row.wavelength in by_wavelength:
                warnings.warn(
                    f"WeightingTable{key}: duplicate row at {row.wavelength} nm; "
                    "the later row replaces the earlier one.",
                    stacklevel=2,
                )
            by_wavelength[row.wavelength] = row

        ordered = [by_wavelength[wl] for wl in sorted(by_wavelength)]
        wavelengths = np.array([r.wavelength for r in ordered], dtype=np.int64)
        weights = np.array([(r.x, r.y, r.z) for r in ordered], dtype=np.float64)
        wavelengths.setflags(write=False)
        weights.setflags(write=False)

        self.key: WeightingKey = key
        self.wavelengths = wavelengths
        self.weights = weights
        self.published_white_point: Optional[Tuple[float, float, float]] = next(
            (r.white_point for r in ordered if r.white_point is not None), None
        )

    def __len__(self) -> int:
        return int(self.wavelengths.shape[0])

    def rows(self) -> List[WeightingRow]:
        return [
            WeightingRow(*self.key, int(wl), *map(float, w), self.published_white_point)
            for wl, w in zip(self.wavelengths, self.weights)
        ]

    @property
    def white_point(self) -> np.ndarray:
        """Full-table white point normalised to Yn = 100."""
        sums = self.weights.sum(axis=0)
        if sums[1] <= 0.0:
            return np.full(3, np.nan)
        return sums * (100.0 / sums[1])

    def __repr__(self) -> str:
        return (
            f"WeightingTable(key={self.key}, rows={len(self)}, "
            f"range=[{int(self.wavelengths[0])}, {int(self.wavelengths[-1])}])"
        )


# =============================================================================
# 3.  Library
# =============================================================================
class WeightingLibrary:
    """
    Registry of weighting tables keyed by (illuminant, observer, table).

    A library built without rows is *pending*: ``loaded`` is False until
    :meth:`load` runs.  Loading groups rows by key; with ``replace=False``
    new rows merge into existing tables.
    """

    def __init__(self, rows: Optional[Iterable[WeightingRow]] = None) -> None:
        self._tables: Dict[WeightingKey, WeightingTable] = {}
        self._loaded: bool = False
        self._gen: int = 0
        if rows is not None:
            self.load(rows)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "WeightingLibrary":
        return cls(WeightingRow.from_record(rec) for rec in records)

    @classmethod
    def fallback(cls) -> "WeightingLibrary":
        """A loaded library holding only the embedded D50 / 2° / Table 5 rows."""
        return cls(FALLBACK_D50_2_TABLE5)

    # -- state -------------------------------------------------------------
    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def generation(self) -> int:
        return self._gen

    def load(self, rows: Iterable[WeightingRow], *, replace: bool = True) -> int:
        """
        Register *rows* and mark the library loaded.

        Returns the number of tables touched.
        """
        grouped: Dict[WeightingKey, List[WeightingRow]] = {}
        for row in rows:
            if not isinstance(row, WeightingRow):
                row = WeightingRow.from_record(row)
            grouped.setdefault(row.key, []).append(row)

        if replace:
            self._tables.clear()
        for key, group in grouped.items():
            existing = self._tables.get(key)
            if existing is not None:
                group = existing.rows() + group
            self._tables[key] = WeightingTable(group)

        self._loaded = True
        self._gen += 1
        return len(grouped)

    # -- lookup ------------------------------------------------------------
    def table_for(self, key: WeightingKey) -> Optional[WeightingTable]:
        illuminant, observer, table = key
        return self._tables.get(
            (str(illuminant).strip(), normalize_observer(observer), int(table))
        )

    def select(self, illuminant: str, observer: Any, table: int) -> List[WeightingRow]:
        """Rows for one triple, sorted by wavelength; empty if absent."""
        found = self.table_for((illuminant, observer, table))
        return found.rows() if found is not None else []

    def keys(self) -> List[WeightingKey]:
        return sorted(self._tables)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 3:
            return False
        return self.table_for(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._tables)

    def __iter__(self) -> Iterator[WeightingTable]:
        return iter(self._tables.values())

    def __repr__(self) -> str:
        state = "loaded" if self._loaded else "pending"
        return f"WeightingLibrary({state}, tables={len(self._tables)})"


# =============================================================================
# 4.  Embedded D50 / 2° / Table 5
# =============================================================================
_D50_WHITE: Final[Tuple[float, float, float]] = (96.422, 100.0, 82.521)

# (wavelength nm, x, y, z); legacy placeholder weights, see note 3
_D50_2_TABLE5: Final[Sequence[Tuple[int, float, float, float]]] = (
    (380, 0.0004, 0.0001, 0.0018),
    (390, 0.0024, 0.0006, 0.0116),
    (400, 0.0098, 0.0026, 0.0470),
    (410, 0.0291, 0.0076, 0.1398),
    (420, 0.0656, 0.0171, 0.3146),
    (430, 0.1223, 0.0318, 0.5865),
    (440, 0.1953, 0.0505, 0.9369),
    (450, 0.2835, 0.0732, 1.3561),
    (460, 0.3803, 0.0983, 1.8195),
    (470, 0.4748, 0.1231, 2.2683),
    (480, 0.5569, 0.1475, 2.6564),
    (490, 0.6190, 0.1799, 2.9538),
    (500, 0.6535, 0.2247, 3.1091),
    (510, 0.6576, 0.2896, 3.1153),
    (520, 0.6304, 0.3812, 2.9574),
    (530, 0.5704, 0.5028, 2.6287),
    (540, 0.4815, 0.6510, 2.2099),
    (550, 0.3809, 0.8118, 1.7442),
    (560, 0.2832, 0.9665, 1.2948),
    (570, 0.1944, 1.0992, 0.8886),
    (580, 0.1183, 1.1923, 0.5408),
    (590, 0.0606, 1.2330, 0.2775),
    (600, 0.0254, 1.2113, 0.1163),
    (610, 0.0086, 1.1269, 0.0394),
    (620, 0.0024, 1.0031, 0.0109),
    (630, 0.0006, 0.8575, 0.0027),
    (640, 0.0002, 0.7057, 0.0009),
    (650, 0.0001, 0.5616, 0.0004),
    (660, 0.0000, 0.4312, 0.0002),
    (670, 0.0000, 0.3196, 0.0001),
    (680, 0.0000, 0.2304, 0.0000),
    (690, 0.0000, 0.1624, 0.0000),
    (700, 0.0000, 0.1117, 0.0000),
    (710, 0.0000, 0.0761, 0.0000),
    (720, 0.0000, 0.0509, 0.0000),
    (730, 0.0000, 0.0337, 0.0000),
)

FALLBACK_D50_2_TABLE5: Final[Tuple[WeightingRow, ...]] = tuple(
    WeightingRow("D50", "2", 5, wl, x, y, z, _D50_WHITE)
    for wl, x, y, z in _D50_2_TABLE5
)
