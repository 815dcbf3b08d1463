from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from .models import Variant

logger = logging.getLogger(__name__)


def mutate(sequence: str, variants: Iterable[Variant]) -> str:
    """Return ``sequence`` with ``variants`` applied; ``sequence`` itself is left untouched.

    Variants are applied right to left so earlier coordinates stay valid. Overlapping
    variants and reference alleles that disagree with ``sequence`` raise ValueError.
    """
    ordered = sorted(variants, key=lambda v: v.position, reverse=True)
    bases: List[str] = list(sequence)
    last_start = len(sequence) + 1
    for v in ordered:
        start0 = v.position - 1
        end0 = start0 + len(v.refbase)
        if end0 > len(sequence):
            raise ValueError(f"Variant {v.label} extends beyond the end of the sequence")
        if end0 > last_start - 1:
            raise ValueError(f"Variant {v.label} overlaps another variant being applied")
        observed = "".join(bases[start0:end0]).upper()
        if observed != v.refbase:
            raise ValueError(
                f"Reference allele of {v.label} does not match the sequence ({observed!r})"
            )
        bases[start0:end0] = list(v.altbase)
        last_start = v.position
    return "".join(bases)


def mutate_record(name: str, sequence: str, variants: Iterable[Variant]) -> Tuple[str, str, str]:
    """Mutate a FASTA record, naming the result by the SHA1 of its sequence.

    Returns ``(identifier, description, sequence)``.
    """
    variants = list(variants)
    mutated = mutate(sequence, variants)
    digest = hashlib.sha1(mutated.encode("utf-8")).hexdigest()
    description = f"{name} mutated with " + ",".join(v.label for v in sorted(variants, key=lambda v: v.position))
    return digest[:8], description, mutated


def consensus(sequence: str, variants: Iterable[Variant], *, freq: float = 0.5) -> str:
    """Consensus of ``sequence`` carrying every variant whose allele frequency (``AF`` info) is at least ``freq``."""
    kept = []
    for v in variants:
        af = v.info.get("AF")
        if af is None:
            logger.warning("Variant %s has no AF annotation; excluded from consensus", v.label)
            continue
        if float(af) >= freq:
            kept.append(v)
    return mutate(sequence, kept)


def write_fasta(path: str | Path, records: Sequence[Tuple[str, str]], *, width: int = 60) -> Path:
    """Write ``(header, sequence)`` records to a FASTA file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = []
    for header, seq in records:
        lines.append(f">{header}")
        for i in range(0, len(seq), width):
            lines.append(seq[i : i + width])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
