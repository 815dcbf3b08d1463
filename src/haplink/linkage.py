"""Occurrence matrices and the linkage disequilibrium significance test."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.stats import chi2, fisher_exact

from .calling import DEFAULT_ERROR_RATE, allele_significance
from .models import Basecall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkageResult:
    """Outcome of the linkage test for one occurrence matrix.

    disequilibrium:
        P(all reference) minus the product of the per-locus reference frequencies.
    statistic:
        Pearson chi-squared statistic against the independence model.
    pvalue:
        Probability under independence of a result at least this extreme.
    depth:
        Number of reads/pseudo-reads counted in the matrix.
    observed:
        Number of reads carrying every alternate allele (the haplotype itself).
    """

    disequilibrium: float
    statistic: float
    pvalue: float
    depth: int
    observed: int


def validate_thresholds(min_depth: int, alpha: float) -> None:
    if int(min_depth) != min_depth or min_depth < 1:
        raise ValueError(f"min_depth must be a positive integer, got {min_depth}")
    if not 0.0 < float(alpha) < 1.0:
        raise ValueError(f"alpha must be between 0 and 1 (exclusive), got {alpha}")


def occurrence_matrix(readmatches) -> np.ndarray:
    """Collapse an M x N basecall table into a 2 x 2 x ... x 2 (N times) count array.

    Index 0 along a dimension counts reference calls at that variant, index 1 alternate
    calls. A row containing any ``Basecall.OTHER`` is incomplete evidence for the
    haplotype and is not counted, so the matrix total may be less than M.

    >>> R, A, O = Basecall.REFERENCE, Basecall.ALTERNATE, Basecall.OTHER
    >>> m = occurrence_matrix([[R, R, R], [R, R, A], [R, R, A], [R, R, O]])
    >>> int(m[0, 0, 0]), int(m[0, 0, 1]), int(m.sum())
    (1, 2, 3)
    """
    table = np.asarray(readmatches)
    if table.ndim != 2 or table.shape[1] == 0:
        raise ValueError(
            f"Expected a 2-D reads x variants table with at least one column, got shape {table.shape}"
        )
    nvariants = table.shape[1]
    counts = np.zeros((2,) * nvariants, dtype=np.int64)
    if table.shape[0] == 0:
        return counts

    table = table.astype(np.int64)
    if not np.isin(table, [int(b) for b in Basecall]).all():
        raise ValueError("Basecall table contains values other than reference/alternate/other")

    complete = table[(table != int(Basecall.OTHER)).all(axis=1)]
    if len(complete):
        np.add.at(counts, tuple(complete.T), 1)
    return counts


def sum_sliced(counts: np.ndarray, dim: int, index: int = 0) -> int:
    """Sum every element of ``counts`` whose index along dimension ``dim`` equals ``index``.

    With ``index=0`` this is the number of reference calls at variant ``dim``.
    """
    return int(np.take(np.asarray(counts), index, axis=dim).sum())


def _expected_counts(total: int, p_ref: np.ndarray) -> np.ndarray:
    expected = np.asarray(float(total))
    for p in p_ref:
        expected = np.multiply.outer(expected, np.array([p, 1.0 - p]))
    return expected


def linkage(counts, *, error_rate: float = DEFAULT_ERROR_RATE) -> LinkageResult:
    """Linkage disequilibrium and its significance for an occurrence matrix.

    Expected counts come from the product of the per-locus marginal frequencies.
    Cells whose expected count is zero (a locus that is monomorphic in the evidence)
    contribute nothing to the statistic; this is an approximation that keeps the
    test defined.

    The p-value comes from the univariate allele test for a single locus, Fisher's
    exact test for two loci, and the chi-squared distribution with
    ``2**N - N - 1`` degrees of freedom for N >= 3 loci.

    For N >= 2 the p-value is unchanged when reference and alternate are swapped at
    every locus. The single-locus allele test is one-sided against the error rate,
    so it does not have that symmetry: ``[90, 10]`` and ``[10, 90]`` give different
    p-values.
    """
    counts = np.asarray(counts, dtype=np.int64)
    nloci = counts.ndim
    if nloci == 0 or any(s != 2 for s in counts.shape):
        raise ValueError(f"Occurrence matrix must have shape (2, 2, ...), got {counts.shape}")
    if (counts < 0).any():
        raise ValueError("Occurrence matrix cannot contain negative counts")

    total = int(counts.sum())
    observed = int(counts[(1,) * nloci])
    if total == 0:
        return LinkageResult(0.0, 0.0, 1.0, 0, 0)

    p_ref = np.array([sum_sliced(counts, d, 0) for d in range(nloci)], dtype=float) / total
    delta = float(counts[(0,) * nloci]) / total - float(np.prod(p_ref))

    expected = _expected_counts(total, p_ref)
    mask = expected > 0
    statistic = float((((counts - expected) ** 2)[mask] / expected[mask]).sum())

    if nloci == 1:
        pvalue = allele_significance(int(counts[1]), total, error_rate)
    elif nloci == 2:
        _, pvalue = fisher_exact(counts, alternative="two-sided")
    else:
        pvalue = chi2.sf(statistic, df=2**nloci - nloci - 1)

    return LinkageResult(
        disequilibrium=delta,
        statistic=statistic,
        pvalue=float(min(1.0, pvalue)),
        depth=total,
        observed=observed,
    )


def passes_thresholds(result: LinkageResult, min_depth: int, alpha: float) -> bool:
    """A haplotype is accepted when it was observed at least ``min_depth`` times and p <= alpha."""
    return result.observed >= min_depth and result.pvalue <= alpha
