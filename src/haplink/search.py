from __future__ import annotations

import itertools
import logging
import math
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .alignment import as_source
from .evidence import DirectEvidence, EvidenceStrategy, make_evidence_method
from .linkage import LinkageResult, linkage, occurrence_matrix, passes_thresholds, validate_thresholds
from .models import Haplotype, Variant
from .utils import chunked

logger = logging.getLogger(__name__)

# Above this many variants on one contig, unbounded enumeration gets expensive (2^k).
_UNBOUNDED_WARN_VARIANTS = 20


@dataclass
class SearchResult:
    """Accepted haplotypes with their evidence, plus bookkeeping about the search."""

    haplotypes: Dict[Haplotype, np.ndarray] = field(default_factory=dict)
    linkage: Dict[Haplotype, LinkageResult] = field(default_factory=dict)
    candidates_total: int = 0
    candidates_evaluated: int = 0
    stopped_early: bool = False
    runtime_seconds: float = 0.0


def _by_chromosome(variants: Iterable[Variant]) -> Dict[str, List[Variant]]:
    by_chrom: Dict[str, List[Variant]] = {}
    for v in sorted(set(variants), key=lambda x: x.sort_key):
        by_chrom.setdefault(v.chromosome, []).append(v)
    return by_chrom


def count_candidates(variants: Sequence[Variant], *, max_size: Optional[int] = None) -> int:
    """Number of haplotypes :func:`candidate_haplotypes` will enumerate."""
    total = 0
    for vs in _by_chromosome(variants).values():
        upper = len(vs) if max_size is None else min(max_size, len(vs))
        total += sum(math.comb(len(vs), k) for k in range(2, upper + 1))
    return total


def candidate_haplotypes(
    variants: Sequence[Variant], *, max_size: Optional[int] = None
) -> Iterator[Haplotype]:
    """Enumerate every combination of two or more variants on the same contig.

    Combinations are yielded by contig, then by size, then in position order.
    ``max_size`` caps the number of variants per haplotype.
    """
    if max_size is not None and max_size < 2:
        raise ValueError(f"max_size must be at least 2, got {max_size}")
    for vs in _by_chromosome(variants).values():
        upper = len(vs) if max_size is None else min(max_size, len(vs))
        for size in range(2, upper + 1):
            for combo in itertools.combinations(vs, size):
                yield Haplotype(combo)


def evaluate_haplotype(
    haplotype: Haplotype,
    source,
    method: EvidenceStrategy,
) -> Tuple[np.ndarray, LinkageResult]:
    """Extract evidence for one candidate and test it for linkage."""
    table = method.extract(haplotype, source)
    counts = occurrence_matrix(table)
    result = linkage(counts)
    logger.debug(
        "%s: rows=%d depth=%d observed=%d delta=%.4f p=%.3g",
        haplotype.name,
        table.shape[0],
        result.depth,
        result.observed,
        result.disequilibrium,
        result.pvalue,
    )
    return counts, result


def search_haplotypes(
    variants: Sequence[Variant],
    source,
    min_depth: int,
    alpha: float,
    method: Optional[EvidenceStrategy | str] = None,
    *,
    max_size: Optional[int] = None,
    max_candidates: Optional[int] = None,
    deadline: Optional[float] = None,
    workers: int = 1,
    progress: bool = False,
) -> SearchResult:
    """Test every candidate haplotype and keep those the reads support.

    Parameters
    ----------
    variants:
        Called variants; combinations of two or more on the same contig are tested.
    source:
        Alignment source (``BamSource``/``ReadListSource``) or a BAM path.
    min_depth:
        Minimum number of reads (or pseudo-reads) carrying the whole haplotype.
    alpha:
        Maximum linkage p-value for a haplotype to be kept.
    method:
        Evidence strategy; an object with ``extract(haplotype, source)`` or the name
        "direct"/"simulated". Defaults to direct evidence.
    max_size:
        Largest haplotype size to enumerate (None: unbounded).
    max_candidates:
        Stop issuing candidates after this many (None: no budget).
    deadline:
        Stop issuing candidates after this many seconds. Candidates already running
        finish and contribute their result.
    workers:
        Number of worker threads; 0 uses every available core.
    progress:
        Show a tqdm progress bar.
    """
    t0 = time.monotonic()
    validate_thresholds(min_depth, alpha)
    if max_candidates is not None and max_candidates < 0:
        raise ValueError(f"max_candidates must be non-negative, got {max_candidates}")
    if workers < 0:
        raise ValueError(f"workers must be non-negative, got {workers}")
    source = as_source(source)
    if method is None:
        method = DirectEvidence()
    elif isinstance(method, str):
        method = make_evidence_method(method)
    elif not callable(getattr(method, "extract", None)):
        raise ValueError(f"Evidence method must provide extract(), got {type(method).__name__}")

    total = count_candidates(variants, max_size=max_size)
    if max_size is None and max_candidates is None and deadline is None:
        largest = max((len(vs) for vs in _by_chromosome(variants).values()), default=0)
        if largest > _UNBOUNDED_WARN_VARIANTS:
            logger.warning(
                "Unbounded haplotype enumeration over %d variants (%d candidates). "
                "Consider --max-size or --max-candidates.",
                largest,
                total,
            )
    budget = total if max_candidates is None else min(total, max_candidates)
    logger.info("Testing up to %d of %d candidate haplotypes", budget, total)

    result = SearchResult(candidates_total=total)

    def out_of_budget() -> bool:
        if max_candidates is not None and result.candidates_evaluated >= max_candidates:
            return True
        return deadline is not None and time.monotonic() - t0 >= deadline

    def collect(haplotype: Haplotype, counts: np.ndarray, res: LinkageResult) -> None:
        result.candidates_evaluated += 1
        if passes_thresholds(res, min_depth, alpha):
            result.haplotypes[haplotype] = counts
            result.linkage[haplotype] = res

    bar = tqdm(total=budget, unit="haplotype", desc="Testing haplotypes", disable=not progress)
    candidates = candidate_haplotypes(variants, max_size=max_size)

    nworkers = (os.cpu_count() or 1) if workers == 0 else workers
    try:
        if nworkers == 1:
            for haplotype in candidates:
                if out_of_budget():
                    result.stopped_early = True
                    break
                counts, res = evaluate_haplotype(haplotype, source, method)
                collect(haplotype, counts, res)
                bar.update(1)
        else:
            with ThreadPoolExecutor(max_workers=nworkers) as executor:
                for batch in chunked(candidates, nworkers * 4):
                    if out_of_budget():
                        result.stopped_early = True
                        break
                    if max_candidates is not None:
                        batch = batch[: max_candidates - result.candidates_evaluated]
                    futures = [
                        (h, executor.submit(evaluate_haplotype, h, source, method)) for h in batch
                    ]
                    for haplotype, future in futures:
                        counts, res = future.result()
                        collect(haplotype, counts, res)
                        bar.update(1)
    finally:
        bar.close()

    if result.candidates_evaluated < total and not result.stopped_early:
        result.stopped_early = True
    result.runtime_seconds = time.monotonic() - t0
    logger.info(
        "Evaluated %d candidates, %d significant haplotypes (%.1fs)",
        result.candidates_evaluated,
        len(result.haplotypes),
        result.runtime_seconds,
    )
    return result


def find_haplotypes(
    variants: Sequence[Variant],
    source,
    min_depth: int,
    alpha: float,
    method: Optional[EvidenceStrategy | str] = None,
    **kwargs,
) -> Dict[Haplotype, np.ndarray]:
    """Find all variant combinations the reads support as haplotypes.

    Returns a mapping of every significant haplotype to its occurrence matrix. See
    :func:`search_haplotypes` for the keyword arguments.
    """
    return search_haplotypes(variants, source, min_depth, alpha, method, **kwargs).haplotypes
