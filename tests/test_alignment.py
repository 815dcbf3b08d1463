import pysam
import pytest

from haplink.alignment import (
    BamSource,
    ReadListSource,
    allele_at_variant,
    as_source,
    base_at_reference_position,
    contains_position,
    overlap_in_range,
    reference_to_query,
    variant_positions_match,
)
from haplink.models import Variant
from haplink.toy_data import TOY_REFERENCE, make_read, make_toy_data, toy_header


def ref_read(name: str, start0: int, length: int, alts=None) -> pysam.AlignedSegment:
    seq = list(TOY_REFERENCE[start0 : start0 + length])
    for pos, base in (alts or {}).items():
        seq[pos - 1 - start0] = base
    return make_read(name, "".join(seq), start0)


def test_reference_to_query_with_clips_insertions_and_deletions():
    # 2S 5M 2I 3M 2D 4M starting at 0-based 100 (1-based 101)
    cigar = [(4, 2), (0, 5), (1, 2), (0, 3), (2, 2), (0, 4)]
    read = make_read("r1", "N" * 16, 100, cigar=cigar)
    assert read.reference_end == 114

    assert reference_to_query(read, 101) == 3
    assert reference_to_query(read, 105) == 7
    assert reference_to_query(read, 106) == 10  # after the insertion
    assert reference_to_query(read, 108) == 12
    assert reference_to_query(read, 109) is None  # deleted
    assert reference_to_query(read, 110) is None
    assert reference_to_query(read, 111) == 13
    assert reference_to_query(read, 114) == 16
    assert reference_to_query(read, 100) is None
    assert reference_to_query(read, 115) is None


def test_reference_to_query_hard_clip_is_not_available():
    read = make_read("r1", "ACGTA", 50, cigar=[(5, 3), (0, 5)])
    assert reference_to_query(read, 48) is None
    assert reference_to_query(read, 50) is None
    assert reference_to_query(read, 51) == 1
    assert base_at_reference_position(read, 55) == "A"


def test_contains_position_boundaries():
    read = ref_read("r1", 100, 50)
    assert not contains_position(read, 100)
    assert contains_position(read, 101)
    assert contains_position(read, 150)
    assert not contains_position(read, 151)


def test_contains_position_inside_deletion():
    read = make_read("r1", "N" * 10, 0, cigar=[(0, 5), (2, 3), (0, 5)])
    assert contains_position(read, 7)
    assert reference_to_query(read, 7) is None


def test_allele_at_variant_insertion():
    # reference positions 1-5 "ACGTA", then GG inserted, then 6-10 "CGTAC"
    read = make_read("r1", "ACGTA" + "GG" + "CGTAC", 0, cigar=[(0, 5), (1, 2), (0, 5)])
    insertion = Variant("toy", 5, ".", "A", "AGG")
    snv = Variant("toy", 5, ".", "A", "C")
    assert allele_at_variant(read, insertion) == "AGG"
    assert allele_at_variant(read, snv) == "A"


def test_allele_at_variant_deletion():
    deletion = Variant("toy", 5, ".", TOY_REFERENCE[4:7], TOY_REFERENCE[4])
    deleted = make_read("r1", TOY_REFERENCE[0:5] + TOY_REFERENCE[7:12], 0, cigar=[(0, 5), (2, 2), (0, 5)])
    intact = ref_read("r2", 0, 12)
    assert allele_at_variant(deleted, deletion) == deletion.altbase
    assert allele_at_variant(intact, deletion) == deletion.refbase


def test_allele_at_variant_unanchored():
    read = ref_read("r1", 10, 20)
    assert allele_at_variant(read, Variant("toy", 5, ".", TOY_REFERENCE[4], "T")) is None


def test_overlap_in_range():
    r1 = ref_read("r1", 0, 100)
    r2 = ref_read("r2", 60, 100)
    r3 = ref_read("r3", 150, 100)
    assert overlap_in_range(r1, r2)
    assert not overlap_in_range(r1, r2, min_overlap=50)
    assert not overlap_in_range(r1, r2, max_overlap=30)
    assert not overlap_in_range(r1, r3)


def test_variant_positions_match():
    r1 = ref_read("r1", 0, 100)
    r2 = ref_read("r2", 60, 100)
    r2_alt = ref_read("r2", 60, 100, alts={70: "N"})
    assert variant_positions_match(r1, r2, [10, 70])  # 10 is only covered by r1
    assert not variant_positions_match(r1, r2_alt, [10, 70])


def test_read_list_source_region():
    reads = [ref_read("a", 0, 50), ref_read("b", 100, 50)]
    source = ReadListSource(reads)
    assert len(source) == 2
    assert [r.query_name for r in source.reads("toy", 49, 50)] == ["a"]
    assert [r.query_name for r in source.reads("toy", 120, 121)] == ["b"]
    assert list(source.reads("other")) == []


def test_read_list_source_drops_unmapped():
    unmapped = pysam.AlignedSegment(toy_header())
    unmapped.query_name = "u"
    unmapped.query_sequence = "ACGT"
    unmapped.flag = 4
    assert len(ReadListSource([unmapped, ref_read("a", 0, 50)])) == 1


def test_bam_source(tmp_path):
    toy = make_toy_data(outdir=tmp_path)
    source = BamSource(toy["bam"])
    assert source.has_index
    assert tuple(source.contigs) == ("toy",)
    assert len(list(source.reads("toy", 59, 60))) == 42
    assert list(source.reads("missing", 0, 10)) == []


def test_bam_source_missing_file(tmp_path):
    with pytest.raises(ValueError):
        BamSource(tmp_path / "nope.bam")


def test_as_source():
    source = ReadListSource([])
    assert as_source(source) is source
    with pytest.raises(ValueError):
        as_source(object())
