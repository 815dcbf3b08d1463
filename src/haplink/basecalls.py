from __future__ import annotations

from typing import FrozenSet, Mapping, Optional

from .models import Basecall, Variant

IUPAC_BASES: Mapping[str, FrozenSet[str]] = {
    "A": frozenset("A"),
    "C": frozenset("C"),
    "G": frozenset("G"),
    "T": frozenset("T"),
    "U": frozenset("T"),
    "R": frozenset("AG"),
    "Y": frozenset("CT"),
    "S": frozenset("GC"),
    "W": frozenset("AT"),
    "K": frozenset("GT"),
    "M": frozenset("AC"),
    "B": frozenset("CGT"),
    "D": frozenset("AGT"),
    "H": frozenset("ACT"),
    "V": frozenset("ACG"),
    "N": frozenset("ACGT"),
}


def _compatible(observed: str, allele: str) -> bool:
    if len(observed) != len(allele):
        return False
    for code, base in zip(observed, allele):
        if base not in IUPAC_BASES.get(code, frozenset()):
            return False
    return True


def match_variant(bases: Optional[str], variant: Variant) -> Basecall:
    """Check whether ``bases`` match the reference or alternate allele of ``variant``.

    Observations are uppercased first. An exact match wins; otherwise an ambiguity code
    counts only when it resolves to exactly one of the two alleles. Multi-base alleles
    must match at every position.
    """
    if not bases:
        return Basecall.OTHER
    observed = bases.upper()
    if observed == variant.refbase:
        return Basecall.REFERENCE
    if observed == variant.altbase:
        return Basecall.ALTERNATE

    is_ref = _compatible(observed, variant.refbase)
    is_alt = _compatible(observed, variant.altbase)
    if is_ref and not is_alt:
        return Basecall.REFERENCE
    if is_alt and not is_ref:
        return Basecall.ALTERNATE
    return Basecall.OTHER
