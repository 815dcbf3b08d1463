"""Per-site variant calling from pileup statistics.

This feeds the haplotype search its variants: every observed allele is tallied with
``count_base_stats`` and the non-reference ones are filtered by depth, quality, read
position, frequency and a Fisher's exact test against the sequencing error rate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Tuple

import pysam
from scipy.stats import fisher_exact
from tqdm import tqdm

from .models import Variant
from .utils import clamp, error_prob_to_phred, phred_to_error_prob

logger = logging.getLogger(__name__)

# Q30
DEFAULT_ERROR_RATE = 1e-3


@dataclass(frozen=True)
class BaseStat:
    """Tally of one allele observed at one reference position.

    ``avg_pos_as_fraction`` is the mean distance of the allele from the nearest read
    end, scaled so 0 is a read end and 1 the read centre.
    """

    chromosome: str
    position: int  # 1-based
    refbase: str
    altbase: str
    depth: int
    count: int
    avg_mapping_quality: float
    avg_basequality: float
    avg_pos_as_fraction: float

    @property
    def frequency(self) -> float:
        return self.count / self.depth if self.depth > 0 else 0.0

    @property
    def is_reference(self) -> bool:
        return self.altbase == self.refbase


def _position_fraction(qpos: int, qlen: int) -> float:
    if qlen <= 1:
        return 1.0
    center = (qlen - 1) / 2.0
    return clamp(min(qpos, qlen - 1 - qpos) / center, 0.0, 1.0)


def iter_base_stats(
    bam_path: str | Path,
    reference_path: str | Path,
    *,
    min_baseq: int = 0,
    min_mapq: int = 0,
    max_depth: int = 1_000_000,
    progress: bool = False,
) -> Iterator[BaseStat]:
    """Yield allele tallies for every covered reference position, in pileup order.

    Substitutions are reported under the observed base. Insertions and deletions
    following a position are reported as VCF-style alleles anchored on that position.
    Reads deleted at a position do not count towards its depth.
    """
    with pysam.AlignmentFile(str(bam_path)) as bam, pysam.FastaFile(str(reference_path)) as fasta:
        contig_seq: Dict[str, str] = {}
        columns = bam.pileup(
            min_base_quality=min_baseq,
            min_mapping_quality=min_mapq,
            max_depth=max_depth,
            ignore_orphans=False,
            ignore_overlaps=False,
        )
        if progress:
            columns = tqdm(columns, unit="pos", desc="Counting basecalls")

        for column in columns:
            contig = column.reference_name
            if contig not in contig_seq:
                contig_seq.clear()
                contig_seq[contig] = fasta.fetch(contig).upper()
            refseq = contig_seq[contig]
            pos0 = column.reference_pos
            refbase = refseq[pos0] if pos0 < len(refseq) else "N"

            tallies: Dict[Tuple[str, str], List[float]] = {}
            depth = 0
            for pr in column.pileups:
                if pr.is_del or pr.is_refskip or pr.query_position is None:
                    continue
                read = pr.alignment
                seq = read.query_sequence
                if seq is None:
                    continue
                qpos = pr.query_position
                quals = read.query_qualities
                bq = int(quals[qpos]) if quals is not None else 0
                obs = [(refbase, seq[qpos].upper())]
                if pr.indel > 0:
                    obs.append((refbase, refbase + seq[qpos + 1 : qpos + 1 + pr.indel].upper()))
                elif pr.indel < 0:
                    obs.append((refseq[pos0 : pos0 + 1 - pr.indel], refbase))

                depth += 1
                frac = _position_fraction(qpos, len(seq))
                for key in obs:
                    acc = tallies.setdefault(key, [0, 0.0, 0.0, 0.0])
                    acc[0] += 1
                    acc[1] += read.mapping_quality
                    acc[2] += bq
                    acc[3] += frac

            for (ref, alt), (count, mq, bq_sum, frac_sum) in sorted(tallies.items()):
                yield BaseStat(
                    chromosome=contig,
                    position=pos0 + 1,
                    refbase=ref,
                    altbase=alt,
                    depth=depth,
                    count=int(count),
                    avg_mapping_quality=mq / count,
                    avg_basequality=bq_sum / count,
                    avg_pos_as_fraction=frac_sum / count,
                )


def count_base_stats(
    bam_path: str | Path,
    reference_path: str | Path,
    **kwargs,
) -> List[BaseStat]:
    """Count and summarize the basecalls of every alignment position (see :func:`iter_base_stats`)."""
    return list(iter_base_stats(bam_path, reference_path, **kwargs))


def allele_significance(alt_count: int, depth: int, error_rate: float = DEFAULT_ERROR_RATE) -> float:
    """One-sided Fisher's exact test of an allele count against sequencing error alone.

    Compares the observed ``[alt, ref]`` counts with those expected if every alternate
    call were an error occurring at ``error_rate``.
    """
    if depth <= 0 or alt_count <= 0:
        return 1.0
    alt_count = min(int(alt_count), int(depth))
    expected_alt = int(round(depth * clamp(error_rate, 0.0, 1.0)))
    table = [[alt_count, depth - alt_count], [expected_alt, depth - expected_alt]]
    _, p = fisher_exact(table, alternative="greater")
    return float(p)


def call_variants(
    stats: Iterable[BaseStat],
    min_depth: int,
    min_quality: float,
    min_position: float,
    min_frequency: float,
    alpha: float,
) -> List[Variant]:
    """Call variants from allele tallies.

    Parameters
    ----------
    stats:
        Output of :func:`count_base_stats`.
    min_depth:
        Minimum number of reads carrying the alternate allele.
    min_quality:
        Minimum average PHRED base quality of the alternate allele.
    min_position:
        Minimum average fractional distance from the read end (0 end, 1 centre).
    min_frequency:
        Minimum alternate allele frequency.
    alpha:
        Significance level of the Fisher's exact test against the error rate.

    Returns
    -------
    list of Variant
        Variants that passed every filter, in position order.
    """
    counts = {
        "alleles_total": 0,
        "skipped_depth": 0,
        "skipped_quality": 0,
        "skipped_position": 0,
        "skipped_frequency": 0,
        "skipped_significance": 0,
        "variants_called": 0,
    }
    variants: List[Variant] = []
    for s in stats:
        if s.is_reference or "N" in s.altbase:
            continue
        counts["alleles_total"] += 1
        if s.count < min_depth:
            counts["skipped_depth"] += 1
            continue
        if s.avg_basequality < min_quality:
            counts["skipped_quality"] += 1
            continue
        if s.avg_pos_as_fraction < min_position:
            counts["skipped_position"] += 1
            continue
        if s.frequency < min_frequency:
            counts["skipped_frequency"] += 1
            continue
        p = allele_significance(s.count, s.depth, phred_to_error_prob(s.avg_basequality))
        if p > alpha:
            counts["skipped_significance"] += 1
            continue

        variants.append(
            Variant(
                chromosome=s.chromosome,
                position=s.position,
                identifier=".",
                refbase=s.refbase,
                altbase=s.altbase,
                quality=round(error_prob_to_phred(p), 2),
                filter="PASS",
                info={"DP": s.depth, "AF": round(s.frequency, 4)},
            )
        )
    counts["variants_called"] = len(variants)
    logger.info("Variant calling: %s", counts)
    variants.sort(key=lambda v: v.sort_key)
    return variants


def variants_from_bam(
    bam_path: str | Path,
    reference_path: str | Path,
    *,
    min_depth: int = 10,
    min_quality: float = 30,
    min_position: float = 0.1,
    min_frequency: float = 0.05,
    alpha: float = 0.05,
    min_mapq: int = 0,
    progress: bool = False,
) -> List[Variant]:
    stats = iter_base_stats(bam_path, reference_path, min_mapq=min_mapq, progress=progress)
    return call_variants(stats, min_depth, min_quality, min_position, min_frequency, alpha)
