from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pysam

from .models import Variant

logger = logging.getLogger(__name__)


def bam_is_indexed(bam_path: str | Path) -> bool:
    bam = Path(bam_path)
    candidates = [
        bam.with_suffix(bam.suffix + ".bai"),
        bam.with_suffix(".bai"),
        bam.with_suffix(bam.suffix + ".csi"),
        bam.with_suffix(bam.suffix + ".crai"),
    ]
    return any(c.exists() for c in candidates)


def check_bam_index(bam_path: str | Path) -> None:
    """Warn when a BAM has no index; region queries then fall back to full scans."""
    if not bam_is_indexed(bam_path):
        logger.warning(
            "BAM is not indexed; every haplotype will scan the whole file. Run: samtools index %s",
            bam_path,
        )


def ensure_fasta_index(fasta_path: str | Path) -> None:
    """Create a .fai next to the reference FASTA if it is missing."""
    fasta = Path(fasta_path)
    if not fasta.exists():
        raise ValueError(f"Reference FASTA does not exist: {fasta}")
    fai = fasta.with_suffix(fasta.suffix + ".fai")
    if not fai.exists():
        logger.info("Indexing reference FASTA %s", fasta)
        pysam.faidx(str(fasta))


def check_variant_contigs(variants: Iterable[Variant], bam_contigs: Iterable[str]) -> None:
    """Fail fast when none of the variant contigs exist in the alignment header."""
    var_contigs = {v.chromosome for v in variants}
    known = set(bam_contigs)
    if not var_contigs:
        return
    missing = sorted(var_contigs - known)
    if missing == sorted(var_contigs):
        raise ValueError(
            "Contig mismatch between BAM and VCF (e.g., chr1 vs 1): "
            f"VCF contigs {missing} are not in the BAM header."
        )
    if missing:
        logger.warning("Variants on contigs absent from the BAM will find no reads: %s", missing)
