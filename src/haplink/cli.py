from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Optional

import pysam

from . import __version__
from .alignment import BamSource
from .calling import variants_from_bam
from .consensus import consensus, write_fasta
from .evidence import EvidenceMethod, make_evidence_method
from .linkage import validate_thresholds
from .plotting import plot_linkage_scatter, plot_pvalue_hist, plot_size_counts
from .report import render_report
from .search import search_haplotypes
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .validation import check_bam_index, check_variant_contigs, ensure_fasta_index
from .vcf import haplotype_records, haplotypes_to_yaml, read_vcf, save_vcf


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _positive_int(s: str) -> int:
    v = int(s)
    if v < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {s}")
    return v


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="haplink",
        description=(
            "HapLink: call haplotypes from linked variants in aligned reads, "
            "using read-level linkage disequilibrium."
        ),
    )
    p.add_argument("--version", action="version", version=f"haplink {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, BAM, and VCF with two linked variants.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # variants
    # -----------------
    v = sub.add_parser(
        "variants",
        help="Call variants from a BAM by depth, quality, read position, frequency and Fisher's exact test.",
    )
    v.add_argument("--bam", required=True, type=_path_exists, help="Input BAM (sorted).")
    v.add_argument("--ref", required=True, type=_path_exists, help="Reference FASTA.")
    v.add_argument("--outdir", required=True, help="Output directory.")
    v.add_argument("--min-depth", type=_positive_int, default=10, help="Minimum variant read depth.")
    v.add_argument("--min-quality", type=float, default=30, help="Minimum average PHRED base quality.")
    v.add_argument(
        "--min-position",
        type=float,
        default=0.1,
        help="Minimum average fractional read position (0 = read end, 1 = read centre).",
    )
    v.add_argument("--min-frequency", type=float, default=0.05, help="Minimum variant frequency.")
    v.add_argument("--alpha", type=float, default=0.05, help="Fisher's exact test significance level.")
    v.add_argument("--min-mapq", type=int, default=0, help="Minimum mapping quality of counted reads.")
    v.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    v.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    v.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # haplotypes
    # -----------------
    h = sub.add_parser(
        "haplotypes",
        help="Find combinations of variants that are linked on the same reads.",
    )
    h.add_argument("--bam", required=True, type=_path_exists, help="Input BAM (sorted, indexed).")
    h.add_argument("--vcf", required=True, type=_path_exists, help="Called variants (.vcf/.vcf.gz).")
    h.add_argument("--outdir", required=True, help="Output directory.")
    h.add_argument(
        "--min-depth",
        type=_positive_int,
        default=10,
        help="Minimum number of reads carrying the whole haplotype.",
    )
    h.add_argument("--alpha", type=float, default=0.05, help="Linkage significance level.")
    h.add_argument(
        "--method",
        choices=[m.value for m in EvidenceMethod],
        default=EvidenceMethod.DIRECT.value,
        help="direct: reads spanning every variant (long reads); simulated: stitched short reads.",
    )
    h.add_argument(
        "--iterations",
        type=_positive_int,
        default=1000,
        help="Pseudo-reads per haplotype for --method simulated.",
    )
    h.add_argument("--overlap-min", type=int, default=0, help="Minimum overlap of chained reads.")
    h.add_argument("--overlap-max", type=int, default=500, help="Maximum overlap of chained reads.")
    h.add_argument("--seed", type=int, default=None, help="Random seed for --method simulated.")
    h.add_argument("--max-size", type=int, default=None, help="Largest haplotype size to test.")
    h.add_argument(
        "--max-candidates",
        type=int,
        default=None,
        help="Stop after testing this many candidate haplotypes.",
    )
    h.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Stop issuing new candidates after this many seconds.",
    )
    h.add_argument("--threads", type=int, default=1, help="Worker threads (0 = all cores).")
    h.add_argument(
        "--require-pass",
        action="store_true",
        help="Only use variants with FILTER=PASS.",
    )
    h.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")
    h.add_argument("--min-mapq", type=int, default=0, help="Minimum mapping quality of used reads.")
    h.add_argument("--no-report", action="store_true", help="Skip the HTML report and plots.")
    h.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    h.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    h.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # consensus
    # -----------------
    c = sub.add_parser(
        "consensus",
        help="Apply variants at or above a frequency to the reference to build a consensus FASTA.",
    )
    c.add_argument("--ref", required=True, type=_path_exists, help="Reference FASTA.")
    c.add_argument("--vcf", required=True, type=_path_exists, help="Called variants with AF annotations.")
    c.add_argument("--out", required=True, help="Output FASTA path.")
    c.add_argument("--frequency", type=float, default=0.5, help="Minimum AF for a variant to be applied.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "HapLink quickstart (copy/paste):",
        "",
        "1) Call variants from an alignment:",
        "   haplink variants \\",
        "     --bam sample.bam \\",
        "     --ref reference.fa \\",
        "     --outdir results/",
        "   Outputs: results/variants.vcf",
        "",
        "2) Long reads (each read spans the haplotype):",
        "   haplink haplotypes \\",
        "     --bam sample.bam \\",
        "     --vcf results/variants.vcf \\",
        "     --outdir results/",
        "   Outputs: results/haplotypes.yaml, results/report.html, results/summary.json",
        "",
        "3) Short reads (stitch overlapping reads into pseudo-reads):",
        "   haplink haplotypes \\",
        "     --bam sample.bam \\",
        "     --vcf results/variants.vcf \\",
        "     --method simulated --iterations 1000 --seed 1 \\",
        "     --outdir results_sim/",
        "",
        "Tip: use --dry-run to validate inputs, and --max-size to bound the search.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_variants(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "variants.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("haplink")
    logger.info("haplink %s", __version__)

    try:
        validate_thresholds(args.min_depth, args.alpha)
        out_vcf = outdir / "variants.vcf"

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print("Planned outputs:")
            print(f"  variants.vcf -> {out_vcf}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.resume and out_vcf.exists():
            logger.info("Resume enabled: %s already exists", out_vcf)
            print(str(out_vcf))
            return 0

        ensure_fasta_index(args.ref)
        variants = variants_from_bam(
            args.bam,
            args.ref,
            min_depth=int(args.min_depth),
            min_quality=float(args.min_quality),
            min_position=float(args.min_position),
            min_frequency=float(args.min_frequency),
            alpha=float(args.alpha),
            min_mapq=int(args.min_mapq),
            progress=True,
        )
        save_vcf(
            variants,
            out_vcf,
            reference_path=args.ref,
            min_depth=int(args.min_depth),
            min_quality=float(args.min_quality),
            min_position=float(args.min_position),
            alpha=float(args.alpha),
            min_frequency=float(args.min_frequency),
        )
        logger.info("Called %d variants", len(variants))
        print(str(out_vcf))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def _write_plots(outdir: Path, records: list) -> dict:
    plots_dir = outdir / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)

    size_png = plots_dir / "haplotype_sizes.png"
    pvalue_png = plots_dir / "pvalue_hist.png"
    scatter_png = plots_dir / "linkage_scatter.png"

    plot_size_counts(size_counts=dict(Counter(int(r["size"]) for r in records)), out_png=size_png)
    plot_pvalue_hist(pvalues=[float(r["pvalue"]) for r in records], out_png=pvalue_png)
    plot_linkage_scatter(
        depths=[int(r["depth"]) for r in records],
        disequilibria=[float(r["linkage_disequilibrium"]) for r in records],
        out_png=scatter_png,
    )
    return {
        "size_counts": str(Path("plots") / size_png.name),
        "pvalue_hist": str(Path("plots") / pvalue_png.name),
        "linkage_scatter": str(Path("plots") / scatter_png.name),
    }


def cmd_haplotypes(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "haplotypes.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("haplink")
    logger.info("haplink %s", __version__)

    try:
        validate_thresholds(args.min_depth, args.alpha)
        method = make_evidence_method(
            args.method,
            iterations=int(args.iterations),
            min_overlap=int(args.overlap_min),
            max_overlap=int(args.overlap_max),
            seed=args.seed,
        )
        check_bam_index(args.bam)
        source = BamSource(
            args.bam,
            skip_duplicates=not bool(args.keep_duplicates),
            min_mapq=int(args.min_mapq),
        )
        variants = read_vcf(args.vcf, require_pass=bool(args.require_pass))
        check_variant_contigs(variants, source.contigs)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Variants: {len(variants)}")
            print(f"Evidence method: {args.method}")
            print("Planned outputs:")
            print(f"  haplotypes.yaml -> {outdir / 'haplotypes.yaml'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "haplotypes.yaml"))
            return 0

        result = search_haplotypes(
            variants,
            source,
            int(args.min_depth),
            float(args.alpha),
            method,
            max_size=args.max_size,
            max_candidates=args.max_candidates,
            deadline=args.deadline,
            workers=int(args.threads),
            progress=True,
        )

        yaml_path = outdir / "haplotypes.yaml"
        yaml_path.write_text(haplotypes_to_yaml(result.haplotypes, result.linkage), encoding="utf-8")

        run = {
            "bam_path": args.bam,
            "vcf_path": args.vcf,
            "n_variants": len(variants),
            "method": args.method,
            "iterations": int(args.iterations) if args.method == EvidenceMethod.SIMULATED.value else None,
            "seed": args.seed,
            "min_depth": int(args.min_depth),
            "alpha": float(args.alpha),
            "max_size": args.max_size,
            "max_candidates": args.max_candidates,
            "candidates_total": result.candidates_total,
            "candidates_evaluated": result.candidates_evaluated,
            "stopped_early": result.stopped_early,
            "haplotypes_found": len(result.haplotypes),
            "runtime_seconds": float(result.runtime_seconds),
        }
        write_json(outdir / "summary.json", run)

        if not args.no_report:
            records = haplotype_records(result.haplotypes, result.linkage)
            plots = _write_plots(outdir, records) if records else {}
            report_path = render_report(
                outdir=outdir,
                version=__version__,
                run=run,
                haplotypes=records,
                vcf_path=args.vcf,
                plots=plots,
            )
            logger.info("Report written: %s", report_path)

        print(str(yaml_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_consensus(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    try:
        variants = read_vcf(args.vcf)
        records = []
        with pysam.FastaFile(args.ref) as fasta:
            for contig in fasta.references:
                seq = fasta.fetch(contig).upper()
                contig_vars = [v for v in variants if v.chromosome == contig]
                records.append((f"{contig} consensus", consensus(seq, contig_vars, freq=float(args.frequency))))
        out = write_fasta(args.out, records)
        print(str(out))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "variants":
        return cmd_variants(args)
    if args.cmd == "haplotypes":
        return cmd_haplotypes(args)
    if args.cmd == "consensus":
        return cmd_consensus(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
