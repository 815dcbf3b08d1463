from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Tuple, Union

InfoValue = Union[str, int, float, bool]


class Basecall(enum.IntEnum):
    """Classification of a read's basecall at a variant position.

    The integer values double as indices into an occurrence matrix.
    """

    REFERENCE = 0
    ALTERNATE = 1
    OTHER = 2


@dataclass(frozen=True)
class Variant:
    """A single-locus, single-alternate-allele mutation.

    Coordinates are 1-based, as in VCF.

    Attributes
    ----------
    chromosome:
        Contig name as present in BAM/VCF.
    position:
        1-based reference position of the first base of ``refbase``.
    identifier:
        Semicolon-separated identifiers, or "." when there are none.
    refbase:
        Reference allele (at or before the position for indels), uppercase.
    altbase:
        The one alternate allele this variant describes, uppercase. Multi-allelic
        sites are represented by one Variant per alternate allele.
    quality:
        PHRED-scaled quality of the alternate allele assertion.
    filter:
        "PASS" if the site passed all filters, otherwise the failing filter tag(s).
    info:
        Auxiliary annotations. Values are not validated beyond being scalars.
    """

    chromosome: str
    position: int
    identifier: str
    refbase: str
    altbase: str
    quality: float = 0.0
    filter: str = "PASS"
    info: Mapping[str, InfoValue] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if self.position < 1:
            raise ValueError(f"Variant position must be 1-based and positive, got {self.position}")
        if self.quality < 0:
            raise ValueError(f"Variant quality must be non-negative, got {self.quality}")
        if not self.refbase or not self.altbase:
            raise ValueError("Variant alleles must be non-empty")
        if "," in self.altbase:
            raise ValueError(
                f"Variant at {self.chromosome}:{self.position} has several alternate alleles "
                f"({self.altbase}); split multi-allelic sites into one Variant per allele."
            )
        # Normalize alleles; frozen dataclasses need object.__setattr__.
        object.__setattr__(self, "refbase", self.refbase.upper())
        object.__setattr__(self, "altbase", self.altbase.upper())

    @property
    def sort_key(self) -> Tuple[str, int, str, str]:
        return (self.chromosome, self.position, self.refbase, self.altbase)

    @property
    def is_indel(self) -> bool:
        return len(self.refbase) != len(self.altbase)

    @property
    def label(self) -> str:
        return f"{self.refbase}{self.position}{self.altbase}"


@dataclass(frozen=True)
class Haplotype:
    """A combination of variants that are tested for (or asserted as) co-occurrence.

    Variants are deduplicated and stored in canonical (chromosome, position, allele)
    order, so equality and hashing do not depend on enumeration order.
    """

    variants: Tuple[Variant, ...]

    def __init__(self, variants: Iterable[Variant]) -> None:
        canonical = tuple(sorted(set(variants), key=lambda v: v.sort_key))
        if len(canonical) < 2:
            raise ValueError(
                f"A haplotype needs at least two distinct variants, got {len(canonical)}"
            )
        chromosomes = {v.chromosome for v in canonical}
        if len(chromosomes) > 1:
            raise ValueError(
                f"Haplotype variants must share one chromosome, got {sorted(chromosomes)}"
            )
        object.__setattr__(self, "variants", canonical)

    def __len__(self) -> int:
        return len(self.variants)

    def __iter__(self):
        return iter(self.variants)

    @property
    def chromosome(self) -> str:
        return self.variants[0].chromosome

    @property
    def positions(self) -> Tuple[int, ...]:
        return tuple(v.position for v in self.variants)

    @property
    def name(self) -> str:
        return "_".join(v.label for v in self.variants)
