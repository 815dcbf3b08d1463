from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pysam
import yaml

from . import __version__
from .linkage import LinkageResult
from .models import Haplotype, Variant
from .utils import scalar_info

logger = logging.getLogger(__name__)


def _allele_info(header: pysam.VariantHeader, info: Mapping[str, object], allele: int) -> Dict[str, object]:
    """INFO values as they apply to alternate allele ``allele`` (0-based) of a record.

    ``Number=A`` fields keep the value of that allele and ``Number=R`` fields the
    reference value followed by that allele's value.
    """
    out: Dict[str, object] = {}
    for key, value in info.items():
        number = header.info[key].number if key in header.info else None
        if isinstance(value, tuple) and number == "A":
            value = value[allele] if allele < len(value) else None
            if value is None:
                continue
        elif isinstance(value, tuple) and number == "R":
            if allele + 1 >= len(value):
                continue
            value = (value[0], value[allele + 1])
        out[key] = value
    return out


def read_vcf(vcf_path: str | Path, *, require_pass: bool = False) -> List[Variant]:
    """Convert the variant calls in a VCF into Variants.

    Multi-allelic records become one Variant per alternate allele, with per-allele
    INFO fields split accordingly. Missing QUAL is read as 0 and an empty FILTER
    as PASS.
    """
    variants: List[Variant] = []
    stats = {"records_total": 0, "records_skipped_filter": 0, "records_skipped_no_alt": 0}

    with pysam.VariantFile(str(vcf_path)) as vcf:
        for rec in vcf:
            stats["records_total"] += 1
            filters = list(rec.filter.keys())
            filter_status = ";".join(filters) if filters else "PASS"
            if require_pass and filter_status != "PASS":
                stats["records_skipped_filter"] += 1
                continue

            alts = [
                (i, a)
                for i, a in enumerate(rec.alts or ())
                if a not in (".", "*") and not a.startswith("<")
            ]
            if not alts:
                stats["records_skipped_no_alt"] += 1
                continue

            info = {key: rec.info[key] for key in rec.info.keys()}
            for i, alt in alts:
                variants.append(
                    Variant(
                        chromosome=str(rec.contig),
                        position=int(rec.pos),
                        identifier=rec.id if rec.id is not None else ".",
                        refbase=rec.ref,
                        altbase=alt,
                        quality=float(rec.qual) if rec.qual is not None else 0.0,
                        filter=filter_status,
                        info=scalar_info(_allele_info(vcf.header, info, i)),
                    )
                )

    logger.info("Read %d variants from %s (%s)", len(variants), vcf_path, stats)
    return variants


def _info_field(info: Mapping[str, object]) -> str:
    if not info:
        return "."
    parts = []
    for key, value in info.items():
        if value is True:
            parts.append(key)
        elif value is False:
            continue
        else:
            parts.append(f"{key}={value}")
    return ";".join(parts) if parts else "."


def serialize_vcf(variant: Variant) -> str:
    """Create a VCF data line (without trailing newline) describing ``variant``."""
    return "\t".join(
        [
            variant.chromosome,
            str(variant.position),
            variant.identifier,
            variant.refbase,
            variant.altbase,
            f"{variant.quality:g}",
            variant.filter,
            _info_field(variant.info),
        ]
    )


def _variant_dict(variant: Variant) -> Dict[str, object]:
    return {
        "chromosome": variant.chromosome,
        "position": variant.position,
        "identifier": variant.identifier,
        "refbase": variant.refbase,
        "altbase": variant.altbase,
        "quality": float(variant.quality),
        "filter": variant.filter,
        "info": dict(variant.info),
    }


def serialize_yaml(variant: Variant) -> str:
    """Create a YAML mapping describing ``variant``."""
    return yaml.safe_dump(_variant_dict(variant), sort_keys=False)


def _declare_info(header: pysam.VariantHeader, key: str, value: object) -> None:
    if isinstance(value, bool):
        header.info.add(key, number=0, type="Flag", description=key)
    elif isinstance(value, int):
        header.info.add(key, number=1, type="Integer", description=key)
    elif isinstance(value, float):
        header.info.add(key, number=1, type="Float", description=key)
    else:
        header.info.add(key, number=1, type="String", description=key)


def save_vcf(
    variants: Iterable[Variant],
    savepath: str | Path,
    *,
    reference_path: str | Path,
    min_depth: int,
    min_quality: float,
    min_position: float,
    alpha: float,
    min_frequency: Optional[float] = None,
) -> Path:
    """Write ``variants`` to a VCF, recording the reference and calling thresholds as metadata.

    Contig lengths are taken from the reference FASTA, which must be faidx-indexed.
    FILTER tags and INFO keys carried by the variants but missing from the header
    are declared on the fly.
    """
    savepath = Path(savepath)
    savepath.parent.mkdir(parents=True, exist_ok=True)
    reference_path = Path(reference_path).resolve()
    variants = sorted(variants, key=lambda v: v.sort_key)

    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.add_meta("fileDate", _dt.date.today().strftime("%Y%m%d"))
    header.add_meta("source", f"HapLink v{__version__}")
    header.add_meta("reference", f"file://{reference_path}")

    with pysam.FastaFile(str(reference_path)) as fasta:
        for name, length in zip(fasta.references, fasta.lengths):
            header.contigs.add(name, length=length)

    header.info.add("DP", number=1, type="Integer", description="Read Depth")
    header.info.add("AF", number="A", type="Float", description="Alternate Allele Frequency")
    header.filters.add(f"d{min_depth}", None, None, f"Variant depth below {min_depth}")
    header.filters.add(f"q{min_quality:g}", None, None, f"Average basecall quality below {min_quality:g}")
    header.filters.add(
        f"x{min_position:g}", None, None, f"Average relative read position below {min_position:g}"
    )
    header.filters.add(f"a{alpha:g}", None, None, f"Fisher's exact test p-value above {alpha:g}")
    if min_frequency is not None:
        header.filters.add(
            f"f{min_frequency:g}", None, None, f"Variant frequency below {min_frequency:g}"
        )

    for v in variants:
        if v.chromosome not in header.contigs:
            header.contigs.add(v.chromosome)
        for tag in v.filter.split(";"):
            if tag not in header.filters:
                header.filters.add(tag, None, None, tag)
        for key, value in v.info.items():
            if key not in header.info:
                _declare_info(header, key, value)

    with pysam.VariantFile(str(savepath), "w", header=header) as vcf:
        for v in variants:
            rec = vcf.new_record(
                contig=v.chromosome,
                start=v.position - 1,
                stop=v.position - 1 + len(v.refbase),
                alleles=(v.refbase, v.altbase),
                id=None if v.identifier == "." else v.identifier,
                qual=v.quality,
                filter=v.filter.split(";"),
            )
            for key, value in v.info.items():
                if value is False:
                    continue
                if header.info[key].number == "A":
                    value = (value,)
                rec.info[key] = value
            vcf.write(rec)
    return savepath


def haplotype_records(
    haplotypes: Mapping[Haplotype, np.ndarray],
    linkage: Optional[Mapping[Haplotype, LinkageResult]] = None,
) -> List[Dict[str, object]]:
    """Plain-data description of each haplotype, smallest and leftmost first.

    Occurrence matrices are flattened in C order, so the first entry counts the
    all-reference reads and the last the all-alternate reads.
    """
    records = []
    for haplotype in sorted(haplotypes, key=lambda h: (len(h), [v.sort_key for v in h])):
        counts = np.asarray(haplotypes[haplotype])
        entry: Dict[str, object] = {
            "name": haplotype.name,
            "chromosome": haplotype.chromosome,
            "size": len(haplotype),
            "variants": [_variant_dict(v) for v in haplotype],
            "occurrences": [int(x) for x in counts.ravel()],
        }
        if linkage is not None and haplotype in linkage:
            res = linkage[haplotype]
            entry.update(
                {
                    "depth": res.depth,
                    "observed": res.observed,
                    "linkage_disequilibrium": float(res.disequilibrium),
                    "statistic": float(res.statistic),
                    "pvalue": float(res.pvalue),
                }
            )
        records.append(entry)
    return records


def haplotypes_to_yaml(
    haplotypes: Mapping[Haplotype, np.ndarray],
    linkage: Optional[Mapping[Haplotype, LinkageResult]] = None,
) -> str:
    """Render a haplotype -> occurrence matrix mapping as YAML."""
    return yaml.safe_dump({"haplotypes": haplotype_records(haplotypes, linkage)}, sort_keys=False)
