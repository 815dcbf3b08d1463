from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_size_counts(
    *,
    size_counts: Dict[int, int],
    out_png: str | Path,
    title: str = "Significant haplotypes by size",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    sizes = sorted(size_counts)
    labels = [str(s) for s in sizes]
    values = [int(size_counts[s]) for s in sizes]

    plt.figure()
    plt.bar(labels, values)
    plt.xlabel("Variants per haplotype")
    plt.ylabel("Haplotype count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_pvalue_hist(
    *,
    pvalues: List[float],
    out_png: str | Path,
    title: str = "Linkage significance",
    nbins: int = 20,
) -> None:
    """Histogram of -log10(p) for the accepted haplotypes.

    p-values of exactly 0 are drawn at the largest finite value (300).
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    scores = [min(300.0, -math.log10(p)) if p > 0 else 300.0 for p in pvalues]

    plt.figure()
    plt.hist(scores, bins=nbins)
    plt.xlabel("-log10(p)")
    plt.ylabel("Haplotype count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_linkage_scatter(
    *,
    depths: List[int],
    disequilibria: List[float],
    out_png: str | Path,
    title: str = "Linkage disequilibrium vs. depth",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    plt.scatter(depths, disequilibria, s=12)
    plt.axhline(0.0, color="grey", linewidth=0.8)
    plt.xlabel("Reads counted")
    plt.ylabel("Linkage disequilibrium (D)")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
