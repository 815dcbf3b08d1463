import json
import os
import subprocess
import sys
from pathlib import Path

import pysam
import yaml

from haplink.toy_data import TOY_POSITIONS, make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    env = dict(os.environ, MPLBACKEND="Agg")
    return subprocess.run(
        [sys.executable, "-m", "haplink"] + args,
        check=False,
        capture_output=True,
        text=True,
        env=env,
    )


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "haplink", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "haplink" in cp.stdout.lower()


def test_quickstart() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "haplink haplotypes" in cp.stdout


def test_make_toy_data_dry_run(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy"), "--dry-run"])
    assert cp.returncode == 0
    assert not (tmp_path / "toy").exists()


def test_haplotypes_on_toy_data(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy")])
    assert cp.returncode == 0, cp.stderr
    toy = json.loads(cp.stdout)

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "haplotypes",
            "--bam",
            toy["bam"],
            "--vcf",
            toy["vcf"],
            "--outdir",
            str(outdir),
            "--min-depth",
            "2",
        ]
    )
    assert cp.returncode == 0, cp.stderr

    data = yaml.safe_load((outdir / "haplotypes.yaml").read_text())
    names = [h["name"] for h in data["haplotypes"]]
    assert len(names) == 1
    assert [v["position"] for v in data["haplotypes"][0]["variants"]] == [60, 120]

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["candidates_total"] == 26
    assert summary["haplotypes_found"] == 1
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "haplotype_sizes.png").exists()
    assert (outdir / "logs" / "haplotypes.log").exists()


def test_haplotypes_simulated_without_report(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "sim"
    cp = _run_cli(
        [
            "haplotypes",
            "--bam",
            toy["bam"],
            "--vcf",
            toy["vcf"],
            "--outdir",
            str(outdir),
            "--min-depth",
            "2",
            "--method",
            "simulated",
            "--iterations",
            "200",
            "--seed",
            "1",
            "--no-report",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "haplotypes.yaml").exists()
    assert not (outdir / "report.html").exists()


def test_haplotypes_bad_alpha_is_one_line_error(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "haplotypes",
            "--bam",
            toy["bam"],
            "--vcf",
            toy["vcf"],
            "--outdir",
            str(tmp_path / "out"),
            "--alpha",
            "2",
        ]
    )
    assert cp.returncode == 2
    assert "ValueError" in cp.stderr
    assert "Traceback" not in cp.stderr


def test_missing_input_path(tmp_path: Path) -> None:
    cp = _run_cli(
        [
            "haplotypes",
            "--bam",
            str(tmp_path / "missing.bam"),
            "--vcf",
            str(tmp_path / "missing.vcf"),
            "--outdir",
            str(tmp_path / "out"),
        ]
    )
    assert cp.returncode == 2
    assert "Path does not exist" in cp.stderr


def test_variants_and_consensus(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "calls"
    cp = _run_cli(
        [
            "variants",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--outdir",
            str(outdir),
            "--min-depth",
            "5",
            "--min-position",
            "0.05",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    with pysam.VariantFile(str(outdir / "variants.vcf")) as vcf:
        assert [rec.pos for rec in vcf] == list(TOY_POSITIONS)

    fasta = tmp_path / "consensus.fa"
    cp = _run_cli(
        [
            "consensus",
            "--ref",
            toy["ref_fa"],
            "--vcf",
            toy["vcf"],
            "--out",
            str(fasta),
            "--frequency",
            "0.2",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    with pysam.FastaFile(str(fasta)) as fa:
        seq = fa.fetch(fa.references[0])
    with pysam.FastaFile(toy["ref_fa"]) as fa:
        ref = fa.fetch("toy")
    assert sum(a != b for a, b in zip(seq, ref)) == len(TOY_POSITIONS)
