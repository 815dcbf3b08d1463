import hashlib

import pysam
import pytest
import yaml

from haplink.consensus import consensus, mutate, mutate_record, write_fasta
from haplink.linkage import linkage
from haplink.models import Haplotype, Variant
from haplink.vcf import haplotypes_to_yaml, read_vcf, save_vcf, serialize_vcf, serialize_yaml


def test_serialize_vcf():
    v = Variant("toy", 60, ".", "T", "A", quality=60, info={"DP": 42, "AF": 0.5})
    assert serialize_vcf(v) == "toy\t60\t.\tT\tA\t60\tPASS\tDP=42;AF=0.5"


def test_serialize_yaml():
    v = Variant("toy", 60, "v1", "T", "A", quality=12.5)
    data = yaml.safe_load(serialize_yaml(v))
    assert data["position"] == 60
    assert data["altbase"] == "A"
    assert data["quality"] == 12.5


def test_save_and_read_vcf(tmp_path):
    ref = write_fasta(tmp_path / "ref.fa", [("toy", "ACGT" * 30)])
    pysam.faidx(str(ref))
    variants = [
        Variant("toy", 10, ".", "C", "T", quality=45.5, info={"DP": 40, "AF": 0.25}),
        Variant("toy", 3, ".", "G", "A", quality=30, info={"DP": 38, "AF": 0.5}),
    ]
    out = save_vcf(
        variants,
        tmp_path / "out" / "variants.vcf",
        reference_path=ref,
        min_depth=10,
        min_quality=30,
        min_position=0.1,
        alpha=0.05,
    )
    text = out.read_text()
    assert "##contig=<ID=toy,length=120>" in text
    assert "##FILTER=<ID=d10," in text

    back = read_vcf(out)
    assert back == sorted(variants, key=lambda v: v.sort_key)
    assert back[0].info["AF"] == pytest.approx(0.5)
    assert back[1].info["DP"] == 40


def test_read_vcf_splits_multiallelic(tmp_path):
    path = tmp_path / "multi.vcf"
    path.write_text(
        "##fileformat=VCFv4.2\n"
        "##contig=<ID=chr1,length=100>\n"
        '##FILTER=<ID=q30,Description="Low quality">\n'
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n"
        "chr1\t5\t.\tA\tC,G\t.\t.\t.\n"
        "chr1\t9\trs9\tT\tTA\t20\tq30\t.\n"
        "chr1\t12\t.\tG\t<DEL>\t20\tPASS\t.\n"
    )
    variants = read_vcf(path)
    assert [(v.position, v.altbase) for v in variants] == [(5, "C"), (5, "G"), (9, "TA")]
    assert variants[0].quality == 0.0
    assert variants[0].filter == "PASS"
    assert variants[2].filter == "q30"
    assert variants[2].identifier == "rs9"
    assert [v.position for v in read_vcf(path, require_pass=True)] == [5, 5]


def test_haplotypes_to_yaml():
    h = Haplotype([Variant("toy", 60, ".", "T", "A"), Variant("toy", 120, ".", "T", "A")])
    counts = [[30, 0], [0, 12]]
    data = yaml.safe_load(haplotypes_to_yaml({h: counts}, {h: linkage(counts)}))
    entry = data["haplotypes"][0]
    assert entry["name"] == "T60A_T120A"
    assert entry["occurrences"] == [30, 0, 0, 12]
    assert entry["observed"] == 12
    assert entry["pvalue"] < 0.05


def test_mutate():
    seq = "ACGTACGT"
    snv = Variant("x", 2, ".", "C", "T")
    deletion = Variant("x", 5, ".", "ACG", "A")
    insertion = Variant("x", 8, ".", "T", "TGG")
    assert mutate(seq, [snv, deletion, insertion]) == "ATGTATGG"
    assert mutate(seq, []) == seq


def test_mutate_rejects_bad_variants():
    seq = "ACGTACGT"
    with pytest.raises(ValueError):
        mutate(seq, [Variant("x", 2, ".", "G", "T")])
    with pytest.raises(ValueError):
        mutate(seq, [Variant("x", 5, ".", "ACG", "A"), Variant("x", 6, ".", "C", "G")])
    with pytest.raises(ValueError):
        mutate(seq, [Variant("x", 8, ".", "TA", "T")])


def test_mutate_record():
    name, description, seq = mutate_record("ref", "ACGTACGT", [Variant("x", 2, ".", "C", "T")])
    assert seq == "ATGTACGT"
    assert name == hashlib.sha1(b"ATGTACGT").hexdigest()[:8]
    assert description == "ref mutated with C2T"


def test_consensus_by_frequency():
    variants = [
        Variant("x", 2, ".", "C", "T", info={"AF": 0.7}),
        Variant("x", 4, ".", "T", "A", info={"AF": 0.3}),
        Variant("x", 6, ".", "C", "G"),
    ]
    assert consensus("ACGTACGT", variants) == "ATGTACGT"
    assert consensus("ACGTACGT", variants, freq=0.2) == "ATGAACGT"


def test_write_fasta(tmp_path):
    out = write_fasta(tmp_path / "x.fa", [("a desc", "ACGTA"), ("b", "GG")], width=2)
    assert out.read_text() == ">a desc\nAC\nGT\nA\n>b\nGG\n"


def test_read_vcf_splits_per_allele_info(tmp_path):
    path = tmp_path / "multi_info.vcf"
    path.write_text(
        "##fileformat=VCFv4.2\n"
        "##contig=<ID=x,length=100>\n"
        '##INFO=<ID=DP,Number=1,Type=Integer,Description="Depth">\n'
        '##INFO=<ID=AF,Number=A,Type=Float,Description="Allele frequency">\n'
        '##INFO=<ID=AD,Number=R,Type=Integer,Description="Allele depths">\n'
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n"
        "x\t2\t.\tC\tT,G\t50\tPASS\tDP=20;AF=0.6,0.3;AD=2,12,6\n"
    )
    to_t, to_g = read_vcf(path)
    assert to_t.info["AF"] == pytest.approx(0.6)
    assert to_g.info["AF"] == pytest.approx(0.3)
    assert to_t.info["AD"] == "2,12"
    assert to_g.info["AD"] == "2,6"
    assert to_t.info["DP"] == to_g.info["DP"] == 20

    assert consensus("ACGTACGT", [to_t, to_g]) == "ATGTACGT"


def test_save_vcf_declares_extra_annotations(tmp_path):
    ref = write_fasta(tmp_path / "ref.fa", [("toy", "ACGT" * 30)])
    pysam.faidx(str(ref))
    variants = [
        Variant("toy", 6, "rs6", "C", "G", quality=20, filter="lowcov", info={"AF": 0.1, "DB": True, "NOTE": "x"}),
    ]
    out = save_vcf(
        variants,
        tmp_path / "extra.vcf",
        reference_path=ref,
        min_depth=10,
        min_quality=30,
        min_position=0.1,
        alpha=0.05,
        min_frequency=0.05,
    )
    with pysam.VariantFile(str(out)) as vcf:
        assert "f0.05" in vcf.header.filters
        assert vcf.header.info["DB"].type == "Flag"
        rec = next(iter(vcf))
        assert rec.id == "rs6"
        assert list(rec.filter.keys()) == ["lowcov"]
        assert rec.info["NOTE"] == "x"
        assert rec.info["DB"] is True
        assert rec.info["AF"][0] == pytest.approx(0.1)

    back = read_vcf(out)
    assert back == variants
    assert back[0].info["DB"] is True
