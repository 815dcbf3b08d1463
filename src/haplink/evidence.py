"""Per-read basecall evidence for candidate haplotypes.

Two interchangeable strategies build an M x N table of :class:`Basecall` values
(M reads or pseudo-reads, N variants of the haplotype):

- :class:`DirectEvidence` reads every record that spans the whole haplotype. Best for
  long reads.
- :class:`SimulatedEvidence` stitches overlapping short reads into whole-haplotype
  pseudo-reads by a maximum-likelihood chaining process. It always returns exactly
  ``iterations`` rows, so its statistical power is approximate.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import pysam

from .alignment import (
    allele_at_variant,
    as_source,
    contains_position,
    overlap_in_range,
    variant_positions_match,
)
from .basecalls import match_variant
from .models import Basecall, Haplotype

logger = logging.getLogger(__name__)

CompatibilityPredicate = Callable[[pysam.AlignedSegment, pysam.AlignedSegment, Sequence[int]], bool]


class EvidenceStrategy(Protocol):
    def extract(self, haplotype: Haplotype, source) -> np.ndarray:
        ...


class EvidenceMethod(str, enum.Enum):
    DIRECT = "direct"
    SIMULATED = "simulated"


def _empty_table(nrows: int, ncols: int) -> np.ndarray:
    return np.full((nrows, ncols), int(Basecall.OTHER), dtype=np.int8)


def read_basecalls(read: pysam.AlignedSegment, haplotype: Haplotype) -> np.ndarray:
    """Classify the basecall of ``read`` at every variant of ``haplotype``."""
    row = _empty_table(1, len(haplotype))[0]
    for j, variant in enumerate(haplotype):
        if contains_position(read, variant.position):
            row[j] = int(match_variant(allele_at_variant(read, variant), variant))
    return row


class DirectEvidence:
    """Evidence from reads that individually cover every variant position."""

    name = EvidenceMethod.DIRECT.value

    def extract(self, haplotype: Haplotype, source) -> np.ndarray:
        source = as_source(source)
        positions = haplotype.positions
        first = positions[0]

        rows: List[np.ndarray] = []
        skipped = 0
        for read in source.reads(haplotype.chromosome, first - 1, first):
            if not all(contains_position(read, p) for p in positions):
                skipped += 1
                continue
            rows.append(read_basecalls(read, haplotype))

        logger.debug(
            "%s: %d spanning reads, %d partial reads skipped", haplotype.name, len(rows), skipped
        )
        if not rows:
            return _empty_table(0, len(haplotype))
        return np.vstack(rows)

    def __repr__(self) -> str:
        return "DirectEvidence()"


def default_compatibility(*, min_overlap: int = 0, max_overlap: int = 500) -> CompatibilityPredicate:
    """Build the default read chaining rule.

    Two reads can be joined into one pseudo-read when they overlap by an amount within
    ``[min_overlap, max_overlap]`` and agree at every variant position visited so far.
    """

    def predicate(
        read1: pysam.AlignedSegment,
        read2: pysam.AlignedSegment,
        positions: Sequence[int],
    ) -> bool:
        return overlap_in_range(
            read1, read2, min_overlap=min_overlap, max_overlap=max_overlap
        ) and variant_positions_match(read1, read2, positions)

    return predicate


@dataclass
class SimulatedEvidence:
    """Evidence from pseudo-reads stitched together from overlapping partial reads.

    Each trial walks the variant positions left to right. The read in use is kept while
    it covers the next position; otherwise a new read is drawn uniformly at random from
    those covering the position that ``predicate`` accepts as a continuation of the
    current read. When no read qualifies, the rest of the trial stays ``OTHER``.

    Every trial draws from its own child of ``numpy.random.SeedSequence(seed)``, so a
    fixed seed gives reproducible tables regardless of trial order.
    """

    iterations: int = 1000
    min_overlap: int = 0
    max_overlap: int = 500
    seed: Optional[int] = None
    predicate: Optional[CompatibilityPredicate] = None

    name = EvidenceMethod.SIMULATED.value

    def __post_init__(self) -> None:
        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {self.iterations}")
        if self.min_overlap > self.max_overlap:
            raise ValueError(
                f"min_overlap ({self.min_overlap}) must not exceed max_overlap ({self.max_overlap})"
            )
        if self.predicate is None:
            self.predicate = default_compatibility(
                min_overlap=self.min_overlap, max_overlap=self.max_overlap
            )

    def extract(self, haplotype: Haplotype, source) -> np.ndarray:
        source = as_source(source)
        positions = haplotype.positions
        n = len(haplotype)

        reads = list(source.reads(haplotype.chromosome, positions[0] - 1, positions[-1]))
        covering = [
            [k for k, r in enumerate(reads) if contains_position(r, p)] for p in positions
        ]
        # calls[k, j]: classification of read k at variant j, computed once per read
        calls = _empty_table(len(reads), n)
        for j, variant in enumerate(haplotype):
            for k in covering[j]:
                calls[k, j] = int(match_variant(allele_at_variant(reads[k], variant), variant))

        table = _empty_table(self.iterations, n)
        if not covering[0]:
            logger.debug("%s: no reads cover the first variant position", haplotype.name)
            return table

        cache: Dict[Tuple[int, int, int], bool] = {}
        streams = np.random.SeedSequence(self.seed).spawn(self.iterations)
        for i, stream in enumerate(streams):
            rng = np.random.default_rng(stream)
            self._trial(rng, reads, covering, calls, positions, table[i], cache)
        return table

    def _trial(
        self,
        rng: np.random.Generator,
        reads: List[pysam.AlignedSegment],
        covering: List[List[int]],
        calls: np.ndarray,
        positions: Sequence[int],
        row: np.ndarray,
        cache: Dict[Tuple[int, int, int], bool],
    ) -> None:
        current: Optional[int] = None
        for j, pos in enumerate(positions):
            if current is None or not contains_position(reads[current], pos):
                candidates = covering[j]
                if current is not None:
                    candidates = [
                        k for k in candidates if self._compatible(reads, current, k, positions, j, cache)
                    ]
                if not candidates:
                    return
                current = candidates[int(rng.integers(len(candidates)))]
            row[j] = calls[current, j]

    def _compatible(
        self,
        reads: List[pysam.AlignedSegment],
        a: int,
        b: int,
        positions: Sequence[int],
        j: int,
        cache: Dict[Tuple[int, int, int], bool],
    ) -> bool:
        key = (a, b, j)
        if key not in cache:
            cache[key] = bool(self.predicate(reads[a], reads[b], positions[:j]))
        return cache[key]


def make_evidence_method(
    method: str | EvidenceMethod,
    *,
    iterations: int = 1000,
    min_overlap: int = 0,
    max_overlap: int = 500,
    seed: Optional[int] = None,
    predicate: Optional[CompatibilityPredicate] = None,
) -> EvidenceStrategy:
    """Build an evidence strategy from its name."""
    try:
        method = EvidenceMethod(method)
    except ValueError:
        raise ValueError(
            f"Unknown evidence method '{method}'; choose one of {[m.value for m in EvidenceMethod]}"
        ) from None
    if method is EvidenceMethod.DIRECT:
        return DirectEvidence()
    return SimulatedEvidence(
        iterations=iterations,
        min_overlap=min_overlap,
        max_overlap=max_overlap,
        seed=seed,
        predicate=predicate,
    )


def longread_genome(haplotype: Haplotype, source) -> np.ndarray:
    """Basecall table of every read in ``source`` that spans all positions of ``haplotype``."""
    return DirectEvidence().extract(haplotype, source)


def simulate_genome(
    haplotype: Haplotype,
    source,
    *,
    iterations: int = 1000,
    seed: Optional[int] = None,
    next_read_candidates: Optional[CompatibilityPredicate] = None,
) -> np.ndarray:
    """Basecall table of ``iterations`` pseudo-reads stitched from the reads in ``source``."""
    return SimulatedEvidence(
        iterations=iterations, seed=seed, predicate=next_read_candidates
    ).extract(haplotype, source)
