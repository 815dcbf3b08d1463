from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .consensus import write_fasta
from .models import Variant
from .utils import ensure_outdir, write_json

TOY_CONTIG = "toy"
TOY_REFERENCE = ("ACGT" * 75)[:300]
# 1-based positions of the five toy variants; the first and third are always linked.
TOY_POSITIONS = (60, 90, 120, 150, 180)


# A<->G, C<->T
_TRANSITION = {"A": "G", "G": "A", "C": "T", "T": "C"}


def _mutate_base(base: str) -> str:
    return _TRANSITION.get(base.upper(), "N")


def toy_header(contig: str = TOY_CONTIG, length: int = len(TOY_REFERENCE)) -> pysam.AlignmentHeader:
    return pysam.AlignmentHeader.from_dict(
        {"HD": {"VN": "1.6", "SO": "coordinate"}, "SQ": [{"SN": contig, "LN": length}]}
    )


def make_read(
    name: str,
    seq: str,
    start0: int,
    *,
    header: Optional[pysam.AlignmentHeader] = None,
    cigar: Optional[Sequence[Tuple[int, int]]] = None,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    """Build an aligned record; defaults to a full-length match on the toy contig."""
    a = pysam.AlignedSegment(header if header is not None else toy_header())
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = list(cigar) if cigar is not None else [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def toy_variants(reference: str = TOY_REFERENCE, contig: str = TOY_CONTIG) -> List[Variant]:
    return [
        Variant(
            chromosome=contig,
            position=pos,
            identifier=f"v{i + 1}",
            refbase=reference[pos - 1],
            altbase=_mutate_base(reference[pos - 1]),
            quality=60.0,
            filter="PASS",
            info={"AF": 0.3},
        )
        for i, pos in enumerate(TOY_POSITIONS)
    ]


def linked_reads(
    *,
    linked_copies: int = 12,
    single_copies: int = 6,
    reference_copies: int = 12,
    read_length: int = 200,
    seed: int = 7,
) -> List[pysam.AlignedSegment]:
    """Reads over the toy reference where variants 1 and 3 always travel together.

    Variants 2, 4 and 5 each appear alone on their own reads; the remaining reads carry
    the reference at every site. Every read spans all five variant positions.
    """
    header = toy_header()
    variants = toy_variants()
    rng = random.Random(seed)

    groups: List[Tuple[str, Tuple[int, ...], int]] = [
        ("linked", (0, 2), linked_copies),
        ("v2", (1,), single_copies),
        ("v4", (3,), single_copies),
        ("v5", (4,), single_copies),
        ("ref", (), reference_copies),
    ]

    reads: List[pysam.AlignedSegment] = []
    for label, carried, copies in groups:
        for i in range(copies):
            start0 = 10 + rng.randrange(0, 40)
            seq = list(TOY_REFERENCE[start0 : start0 + read_length])
            for idx in carried:
                seq[variants[idx].position - 1 - start0] = variants[idx].altbase
            reads.append(make_read(f"{label}_{i}", "".join(seq), start0, header=header))

    reads.sort(key=lambda r: r.reference_start)
    return reads


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Write the linked-read toy dataset: toy_ref.fa (+ .fai), toy.bam (+ .bai) and toy.vcf.

    The five variants of :func:`toy_variants` are called in toy.vcf; in toy.bam only
    the first and third are carried by the same reads. Returns the written paths.
    """
    outdir_p = ensure_outdir(outdir)

    ref_fa = outdir_p / "toy_ref.fa"
    write_fasta(ref_fa, [(TOY_CONTIG, TOY_REFERENCE)])
    pysam.faidx(str(ref_fa))

    bam_path = outdir_p / "toy.bam"
    header = toy_header()
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in linked_reads():
            bam.write(r)
    pysam.index(str(bam_path))

    vcf_path = outdir_p / "toy.vcf"
    vheader = pysam.VariantHeader()
    vheader.add_meta("fileformat", "VCFv4.2")
    vheader.contigs.add(TOY_CONTIG, length=len(TOY_REFERENCE))
    vheader.info.add("AF", number="A", type="Float", description="Alternate Allele Frequency")

    with pysam.VariantFile(str(vcf_path), "w", header=vheader) as vcf:
        for v in toy_variants():
            rec = vcf.new_record(
                contig=v.chromosome,
                start=v.position - 1,
                stop=v.position,
                alleles=(v.refbase, v.altbase),
                id=v.identifier,
                qual=v.quality,
                filter="PASS",
            )
            rec.info["AF"] = (0.3,)
            vcf.write(rec)

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "vcf": str(vcf_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
