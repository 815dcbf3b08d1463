"""Aligned read access and reference/read coordinate translation.

All public positions here are 1-based reference positions (VCF convention);
pysam coordinates are 0-based half-open and are converted at this boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

import pysam

from .models import Variant

logger = logging.getLogger(__name__)

# CIGAR operations, as reported by pysam.AlignedSegment.cigartuples
_MATCH_OPS = (0, 7, 8)  # M, =, X: consume query and reference
_INS = 1
_REF_ONLY_OPS = (2, 3)  # D, N
_SOFT_CLIP = 4
_NO_CONSUME_OPS = (5, 6)  # H, P


def contains_position(read: pysam.AlignedSegment, position: int) -> bool:
    """Check whether 1-based reference ``position`` lies within the aligned span of ``read``.

    This is a membership check only: a position inside a deletion is contained even
    though it cannot be translated to a read coordinate.
    """
    if read.is_unmapped or read.reference_end is None:
        return False
    return read.reference_start + 1 <= position <= read.reference_end


def reference_to_query(read: pysam.AlignedSegment, position: int) -> Optional[int]:
    """Translate a 1-based reference position into a 1-based position in the stored read sequence.

    Hard clips are not part of the stored sequence and are skipped; soft clips and
    insertions advance the read coordinate only. Returns None when the position is
    outside the aligned span or falls in a deletion/reference skip.
    """
    if read.is_unmapped or read.cigartuples is None:
        return None

    target0 = position - 1
    ref_pos = read.reference_start
    query_pos = 0
    if target0 < ref_pos:
        return None

    for op, length in read.cigartuples:
        if op in _MATCH_OPS:
            if target0 < ref_pos + length:
                return query_pos + (target0 - ref_pos) + 1
            ref_pos += length
            query_pos += length
        elif op in (_INS, _SOFT_CLIP):
            query_pos += length
        elif op in _REF_ONLY_OPS:
            if target0 < ref_pos + length:
                return None
            ref_pos += length
        elif op in _NO_CONSUME_OPS:
            continue
        else:
            # Unknown/rare CIGAR op (e.g. B), treat conservatively
            continue
    return None


def base_at_reference_position(read: pysam.AlignedSegment, position: int) -> Optional[str]:
    """Get the base of ``read`` aligned to 1-based reference ``position``, or None."""
    qpos = reference_to_query(read, position)
    seq = read.query_sequence
    if qpos is None or seq is None or qpos > len(seq):
        return None
    return seq[qpos - 1]


def allele_at_variant(read: pysam.AlignedSegment, variant: Variant) -> Optional[str]:
    """Return the sequence ``read`` carries across the reference allele span of ``variant``.

    Deleted reference positions contribute nothing. Inserted bases following the span
    are appended only for insertion-type variants, so an unrelated insertion next to a
    SNV does not spoil its call. Returns None when the variant's anchor position cannot
    be translated.
    """
    seq = read.query_sequence
    if read.is_unmapped or read.cigartuples is None or seq is None:
        return None

    start0 = variant.position - 1
    end0 = start0 + len(variant.refbase)
    want_insertions = len(variant.altbase) > len(variant.refbase)

    pieces: List[str] = []
    anchored = False
    ref_pos = read.reference_start
    query_pos = 0

    for op, length in read.cigartuples:
        if ref_pos > end0:
            break
        if op in _MATCH_OPS:
            lo = max(ref_pos, start0)
            hi = min(ref_pos + length, end0)
            if lo < hi:
                if lo == start0:
                    anchored = True
                q0 = query_pos + (lo - ref_pos)
                pieces.append(seq[q0 : q0 + (hi - lo)])
            ref_pos += length
            query_pos += length
        elif op == _INS:
            if want_insertions and anchored and start0 < ref_pos <= end0:
                pieces.append(seq[query_pos : query_pos + length])
            query_pos += length
        elif op in _REF_ONLY_OPS:
            ref_pos += length
        elif op == _SOFT_CLIP:
            query_pos += length

    if not anchored:
        return None
    return "".join(pieces)


def overlap_length(read1: pysam.AlignedSegment, read2: pysam.AlignedSegment) -> int:
    """Number of reference bases covered by both reads (negative for a gap between them)."""
    start = max(read1.reference_start, read2.reference_start)
    end = min(read1.reference_end or 0, read2.reference_end or 0)
    return end - start


def overlap_in_range(
    read1: pysam.AlignedSegment,
    read2: pysam.AlignedSegment,
    *,
    min_overlap: int = 0,
    max_overlap: int = 500,
) -> bool:
    """Check if ``read1`` and ``read2`` overlap by an amount between ``min_overlap`` and ``max_overlap``."""
    if read1.reference_id != read2.reference_id:
        return False
    return min_overlap <= overlap_length(read1, read2) <= max_overlap


def variant_positions_match(
    read1: pysam.AlignedSegment,
    read2: pysam.AlignedSegment,
    positions: Iterable[int],
) -> bool:
    """Return True if both reads carry identical basecalls at every given position they share.

    Positions that are not covered by both reads are ignored.
    """
    for pos in positions:
        if not (contains_position(read1, pos) and contains_position(read2, pos)):
            continue
        if base_at_reference_position(read1, pos) != base_at_reference_position(read2, pos):
            return False
    return True


def _usable(read: pysam.AlignedSegment) -> bool:
    return (
        not read.is_unmapped
        and read.cigartuples is not None
        and read.query_sequence is not None
    )


class ReadListSource:
    """An in-memory alignment source over already materialized records."""

    def __init__(self, reads: Iterable[pysam.AlignedSegment]) -> None:
        self._reads: List[pysam.AlignedSegment] = [r for r in reads if _usable(r)]

    def __len__(self) -> int:
        return len(self._reads)

    def reads(
        self,
        contig: Optional[str] = None,
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> Iterator[pysam.AlignedSegment]:
        """Iterate records, optionally restricted to those overlapping a 0-based half-open region."""
        for read in self._reads:
            if _in_region(read, contig, start, stop):
                yield read


class BamSource:
    """An alignment source backed by a BAM/CRAM/SAM file.

    Every call to :meth:`reads` opens its own ``pysam.AlignmentFile`` so concurrent
    callers never share cursor state.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        skip_duplicates: bool = True,
        include_secondary: bool = False,
        include_supplementary: bool = False,
        min_mapq: int = 0,
    ) -> None:
        self.path = str(path)
        if not Path(self.path).exists():
            raise ValueError(f"Alignment file does not exist: {self.path}")
        self.skip_duplicates = skip_duplicates
        self.include_secondary = include_secondary
        self.include_supplementary = include_supplementary
        self.min_mapq = int(min_mapq)
        with pysam.AlignmentFile(self.path) as bam:
            self.has_index = bool(bam.has_index()) if bam.is_bam or bam.is_cram else False
            self.contigs: Sequence[str] = tuple(bam.references)

    def _keep(self, read: pysam.AlignedSegment) -> bool:
        if not _usable(read):
            return False
        if read.is_secondary and not self.include_secondary:
            return False
        if read.is_supplementary and not self.include_supplementary:
            return False
        if self.skip_duplicates and read.is_duplicate:
            return False
        return int(read.mapping_quality) >= self.min_mapq

    def reads(
        self,
        contig: Optional[str] = None,
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> Iterator[pysam.AlignedSegment]:
        """Iterate filtered records, optionally restricted to a 0-based half-open region.

        Uses the index when available and falls back to a sequential scan otherwise.
        An I/O error while decoding a record is logged and ends this scan: that record
        and every record after it in the file are lost for this call. Records already
        yielded stay valid.
        """
        with pysam.AlignmentFile(self.path) as bam:
            indexed = contig is not None and self.has_index
            if indexed:
                if contig not in bam.references:
                    return
                it = bam.fetch(contig, start, stop)
            else:
                it = bam.fetch(until_eof=True)

            while True:
                try:
                    read = next(it)
                except StopIteration:
                    break
                except (OSError, ValueError) as e:
                    logger.warning("Dropping unreadable alignment record in %s: %s", self.path, e)
                    break
                if not self._keep(read):
                    continue
                if not indexed and not _in_region(read, contig, start, stop):
                    continue
                yield read


def _in_region(
    read: pysam.AlignedSegment,
    contig: Optional[str],
    start: Optional[int],
    stop: Optional[int],
) -> bool:
    if contig is not None and read.reference_name != contig:
        return False
    if start is not None and (read.reference_end or 0) <= start:
        return False
    if stop is not None and read.reference_start >= stop:
        return False
    return True


def as_source(obj: object):
    """Return ``obj`` if it behaves like an alignment source; wrap paths in a BamSource."""
    if isinstance(obj, (str, Path)):
        return BamSource(obj)
    if not callable(getattr(obj, "reads", None)):
        raise ValueError(
            f"Expected an alignment source with a reads() method or a BAM path, got {type(obj).__name__}"
        )
    return obj
