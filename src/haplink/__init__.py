"""HapLink: read-level haplotype calling from linked variant evidence.

Library entry point is :func:`haplink.search.find_haplotypes`; from the shell:

    haplink haplotypes --bam ... --vcf ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
