# -*- coding: utf-8 -*-
"""
Loupe: Colorimetry and similarity search for color standards
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: loupe_search.py — Lab resolution and cached similarity search.

Every color, reference and candidate alike, goes through the same ordered
resolution chain:

    1. spectral curve of the selected measurement + matching weighting table
    2. Lab stored on that measurement
    3. Lab stored on the color itself
    4. unusable (excluded)

The engine scores resolvable candidates against the reference with the
requested Delta E formula, sorts them and splits the result into ``all`` and
``filtered`` (within threshold, capped).

Notes:
  1.  Early exit: scanning stops once ``EARLY_EXIT_FACTOR × max_results``
      candidates fall within the threshold.  Which candidates are seen
      therefore depends on corpus order; ``exhaustive=True`` scans all.
      Candidates are scored in chunks through the batch kernels and the
      chunk is cut at the exact candidate that reached the bound, so the
      outcome equals a one-by-one scan.
  2.  Results are cached per session.  The key covers every input that
      changes the scan; hits are re-filtered against the current controls.
  3.  Each call gets a run id.  ``is_current(run_id)`` is False once a newer
      call has started, letting a caller drop superseded outcomes.
  4.  While the weighting tables are not loaded the search is deferred with
      ``NotReady`` if the reference, or every candidate, has only a curve to
      offer.  One Lab-resolvable candidate is enough to proceed.  Deferred
      runs are never cached.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import (
    Dict,
    Final,
    Hashable,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

import numpy as np

from loupe_colorengine import WeightedIntegrationConverter
from loupe_errors import DataUnavailable, NotReady, ReferenceUnavailable
from loupe_metrics import delta_e_batch
from loupe_records import (
    CandidateColor,
    DeltaEMethod,
    LabColor,
    LabSource,
    MeasurementRecord,
    SearchControls,
    SimilarityResult,
)
from loupe_standards import WeightingLibrary, WeightingTable

__all__ = [
    "EARLY_EXIT_FACTOR",
    "DEFAULT_CHUNK_SIZE",
    "ResolutionContext",
    "ResolutionStep",
    "SpectralStep",
    "MeasurementLabStep",
    "StoredLabStep",
    "LabResolver",
    "CacheInfo",
    "SearchOutcome",
    "SimilaritySearchEngine",
]

logger = logging.getLogger(__name__)

EARLY_EXIT_FACTOR: Final[int] = 2
DEFAULT_CHUNK_SIZE: Final[int] = 256
FALLBACK_MODE: Final[str] = "M0"


# =============================================================================
# 1.  Resolution chain
# =============================================================================
class ResolutionContext(NamedTuple):
    """What a resolution step may consult besides the color itself."""
    mode: str
    weighting: Optional[WeightingTable]


class ResolutionStep(Protocol):
    """One link of the resolution chain."""
    source: LabSource

    def available(self, color: CandidateColor, measurement: Optional[MeasurementRecord],
                  context: ResolutionContext) -> bool:
        """Cheap check: could this step produce a Lab (no conversion run)."""
        ...

    def resolve(self, color: CandidateColor, measurement: Optional[MeasurementRecord],
                context: ResolutionContext) -> Optional[LabColor]:
        ...


class SpectralStep:
    source = LabSource.SPECTRAL

    def __init__(self, extrapolate_tails: bool = False) -> None:
        self.extrapolate_tails = extrapolate_tails

    def available(self, color, measurement, context) -> bool:
        return (
            measurement is not None
            and measurement.has_spectral
            and context.weighting is not None
        )

    def resolve(self, color, measurement, context) -> Optional[LabColor]:
        if not self.available(color, measurement, context):
            return None
        try:
            return WeightedIntegrationConverter.convert(
                measurement.spectral.normalized(),
                context.weighting,
                extrapolate_tails=self.extrapolate_tails,
            )
        except DataUnavailable as exc:
            logger.debug("Spectral conversion skipped for %r: %s", color.id, exc)
            return None


class MeasurementLabStep:
    source = LabSource.MEASUREMENT

    def available(self, color, measurement, context) -> bool:
        return measurement is not None and measurement.stored_lab is not None

    def resolve(self, color, measurement, context) -> Optional[LabColor]:
        if measurement is None or measurement.stored_lab is None:
            return None
        return measurement.stored_lab.with_source(self.source)


class StoredLabStep:
    source = LabSource.STORED

    def available(self, color, measurement, context) -> bool:
        return color.stored_lab is not None

    def resolve(self, color, measurement, context) -> Optional[LabColor]:
        lab = color.stored_lab
        return lab.with_source(self.source) if lab is not None else None


class LabResolver:
    """
    Ordered resolution chain plus measurement selection.

    Measurement selection looks for the requested mode first, preferring
    solid measurements (no tint or 100 %), then ones carrying a spectral
    curve, then ones carrying a Lab.  Without a mode match it falls back to
    an ``M0`` measurement and then to the first measurement, unless
    ``strict_mode`` is set.
    """

    def __init__(self, steps: Optional[Sequence[ResolutionStep]] = None, *,
                 strict_mode: bool = False, extrapolate_tails: bool = False) -> None:
        if steps is None:
            steps = (SpectralStep(extrapolate_tails), MeasurementLabStep(), StoredLabStep())
        self.steps: Tuple[ResolutionStep, ...] = tuple(steps)
        self.strict_mode = strict_mode

    @staticmethod
    def _rank(m: MeasurementRecord) -> Tuple[bool, bool, bool]:
        return (not m.is_solid, not m.has_spectral, m.stored_lab is None)

    def select_measurement(self, color: CandidateColor, mode: str) -> Optional[MeasurementRecord]:
        measurements = color.measurements
        if not measurements:
            return None

        matches = [m for m in measurements if m.mode == mode]
        if matches:
            return min(matches, key=self._rank)
        if self.strict_mode:
            return None

        fallback = [m for m in measurements if m.mode == FALLBACK_MODE]
        if fallback:
            return min(fallback, key=self._rank)
        return measurements[0]

    def resolve(self, color: CandidateColor, context: ResolutionContext) -> Optional[LabColor]:
        measurement = self.select_measurement(color, context.mode)
        for step in self.steps:
            lab = step.resolve(color, measurement, context)
            if lab is not None:
                return lab
        return None

    def can_resolve(self, color: CandidateColor, context: ResolutionContext) -> bool:
        measurement = self.select_measurement(color, context.mode)
        return any(step.available(color, measurement, context) for step in self.steps)

    def needs_standards(self, color: CandidateColor, context: ResolutionContext) -> bool:
        """True if the color carries a curve but no Lab source besides it."""
        measurement = self.select_measurement(color, context.mode)
        if measurement is None or not measurement.has_spectral:
            return False
        return not any(
            step.available(color, measurement, context)
            for step in self.steps
            if step.source is not LabSource.SPECTRAL
        )


# =============================================================================
# 2.  Outcomes & cache
# =============================================================================
class CacheInfo(NamedTuple):
    hits: int
    misses: int
    currsize: int


class _CacheKey(NamedTuple):
    reference_id: Hashable
    method: DeltaEMethod
    threshold: float
    mode: str
    illuminant: str
    observer: str
    table: int
    corpus_size: int
    resolvable: int
    enriched: bool
    max_results: int
    standards_ready: bool
    standards_generation: int


@dataclass(slots=True, frozen=True)
class SearchOutcome:
    """
    ``all`` is every scored candidate, ascending by delta E.  ``filtered``
    holds those within the threshold, capped at ``max_results``; when none
    qualify it falls back to the first ``max_results`` of ``all``.
    """
    run_id: int
    reference_lab: LabColor
    all: Tuple[SimilarityResult, ...]
    filtered: Tuple[SimilarityResult, ...]
    from_cache: bool = False

    def __len__(self) -> int:
        return len(self.filtered)


def _split(results: Tuple[SimilarityResult, ...], threshold: float,
           max_results: int) -> Tuple[SimilarityResult, ...]:
    within = [r for r in results if r.delta_e <= threshold][:max_results]
    if not within and results:
        return results[:max_results]
    return tuple(within)


# =============================================================================
# 3.  Engine
# =============================================================================
class SimilaritySearchEngine:
    """
    Finds the catalog colors closest to a reference.

    Parameters
    ----------
    standards : WeightingLibrary, optional
        Weighting tables for spectral conversion.  ``None`` or a library
        that has not loaded yet counts as "not ready".
    chunk_size : int
        Candidates scored per batch-kernel call.
    exhaustive : bool
        Disable early exit.
    strict_mode : bool
        No measurement-mode fallback.
    extrapolate_tails : bool
        Forwarded to spectral conversion.
    resolver : LabResolver, optional
        Replaces the default chain; ``strict_mode`` and
        ``extrapolate_tails`` are then ignored.
    """

    def __init__(self, standards: Optional[WeightingLibrary] = None, *,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 exhaustive: bool = False,
                 strict_mode: bool = False,
                 extrapolate_tails: bool = False,
                 resolver: Optional[LabResolver] = None) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.standards = standards
        self.chunk_size = int(chunk_size)
        self.exhaustive = exhaustive
        self.resolver = resolver or LabResolver(
            strict_mode=strict_mode, extrapolate_tails=extrapolate_tails
        )

        self._cache: Dict[_CacheKey, Tuple[SimilarityResult, ...]] = {}
        self._hits: int = 0
        self._misses: int = 0
        self._run_ids = itertools.count(1)
        self._latest_run: int = 0

    # -- run identity ------------------------------------------------------
    @property
    def latest_run_id(self) -> int:
        return self._latest_run

    def is_current(self, run_id: int) -> bool:
        return run_id == self._latest_run

    # -- cache -------------------------------------------------------------
    def cache_info(self) -> CacheInfo:
        return CacheInfo(self._hits, self._misses, len(self._cache))

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = self._misses = 0

    # -- helpers -----------------------------------------------------------
    @property
    def standards_ready(self) -> bool:
        return self.standards is not None and self.standards.loaded

    def _context(self, controls: SearchControls) -> ResolutionContext:
        weighting = None
        if self.standards is not None:
            weighting = self.standards.table_for(controls.weighting_key)
        return ResolutionContext(controls.mode, weighting)

    def _scan(self, reference_lab: LabColor, candidates: Sequence[CandidateColor],
              context: ResolutionContext, controls: SearchControls) -> List[SimilarityResult]:
        limit = EARLY_EXIT_FACTOR * controls.max_results
        within_count = 0
        results: List[SimilarityResult] = []

        for start in range(0, len(candidates), self.chunk_size):
            chunk: List[Tuple[CandidateColor, LabColor]] = []
            for color in candidates[start:start + self.chunk_size]:
                lab = self.resolver.resolve(color, context)
                if lab is not None:
                    chunk.append((color, lab))
            if not chunk:
                continue

            samples = np.array([lab.as_array() for _, lab in chunk], dtype=np.float64)
            deltas = delta_e_batch(reference_lab, samples, controls.method)

            stop = len(chunk)
            if not self.exhaustive:
                running = within_count + np.cumsum(deltas <= controls.threshold)
                reached = np.flatnonzero(running >= limit)
                if reached.size:
                    stop = int(reached[0]) + 1
                within_count = int(running[stop - 1])

            results.extend(
                SimilarityResult(color.id, float(d), lab, color.name)
                for (color, lab), d in zip(chunk[:stop], deltas[:stop])
            )
            if not self.exhaustive and within_count >= limit:
                logger.debug(
                    "Early exit after %d scored candidates (%d within %.2f)",
                    len(results), within_count, controls.threshold,
                )
                break

        results.sort(key=lambda r: r.delta_e)
        return results

    # -- main entry point --------------------------------------------------
    def find_similar(self, reference: CandidateColor,
                     controls: Optional[SearchControls] = None,
                     corpus: Iterable[CandidateColor] = (),
                     *, enriched: bool = False) -> SearchOutcome:
        """
        Score *corpus* against *reference*.

        Raises
        ------
        NotReady
            The weighting tables are not loaded yet and either the reference
            or every candidate can only be resolved spectrally.
        ReferenceUnavailable
            The reference has no Lab source at all.
        """
        run_id = next(self._run_ids)
        self._latest_run = run_id

        controls = controls if controls is not None else SearchControls()
        corpus = tuple(corpus)
        context = self._context(controls)

        reference_lab = self.resolver.resolve(reference, context)
        if reference_lab is None:
            if not self.standards_ready and self.resolver.needs_standards(reference, context):
                logger.debug("Run %d deferred: %r needs weighting tables", run_id, reference.id)
                raise NotReady(reference.id)
            raise ReferenceUnavailable(reference.id)
        logger.debug("Run %d: reference %r resolved from %s", run_id, reference.id,
                     reference_lab.source.value)

        candidates = [c for c in corpus if c.id != reference.id]
        resolvable = sum(1 for c in candidates if self.resolver.can_resolve(c, context))
        if (not resolvable and not self.standards_ready
                and any(self.resolver.needs_standards(c, context) for c in candidates)):
            logger.debug("Run %d deferred: no candidate for %r resolves without weighting tables",
                         run_id, reference.id)
            raise NotReady(reference.id, candidates=True)

        key = _CacheKey(
            reference.id, controls.method, controls.threshold, controls.mode,
            controls.illuminant, controls.observer, controls.table,
            len(corpus), resolvable, bool(enriched), controls.max_results,
            self.standards_ready,
            self.standards.generation if self.standards is not None else 0,
        )

        cached = self._cache.get(key)
        if cached is not None:
            self._hits += 1
            logger.debug("Run %d: cache hit for %r", run_id, reference.id)
            return SearchOutcome(
                run_id, reference_lab, cached,
                _split(cached, controls.threshold, controls.max_results),
                from_cache=True,
            )

        self._misses += 1
        logger.debug("Run %d: cache miss, scanning %d candidates (%d resolvable)",
                     run_id, len(candidates), resolvable)

        scored = tuple(self._scan(reference_lab, candidates, context, controls))
        self._cache[key] = scored
        return SearchOutcome(
            run_id, reference_lab, scored,
            _split(scored, controls.threshold, controls.max_results),
        )
