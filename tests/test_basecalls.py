from haplink.basecalls import match_variant
from haplink.models import Basecall, Variant


def test_exact_matches():
    v = Variant("chr1", 10, ".", "A", "G")
    assert match_variant("A", v) == Basecall.REFERENCE
    assert match_variant("g", v) == Basecall.ALTERNATE
    assert match_variant("C", v) == Basecall.OTHER
    assert match_variant(None, v) == Basecall.OTHER
    assert match_variant("", v) == Basecall.OTHER


def test_ambiguity_codes():
    a_to_g = Variant("chr1", 10, ".", "A", "G")
    a_to_c = Variant("chr1", 10, ".", "A", "C")
    # R = A/G covers both alleles
    assert match_variant("R", a_to_g) == Basecall.OTHER
    assert match_variant("R", a_to_c) == Basecall.REFERENCE
    assert match_variant("K", a_to_g) == Basecall.ALTERNATE
    assert match_variant("M", a_to_c) == Basecall.OTHER
    assert match_variant("N", a_to_c) == Basecall.OTHER


def test_multibase_alleles():
    v = Variant("chr1", 10, ".", "AC", "GT")
    assert match_variant("AC", v) == Basecall.REFERENCE
    assert match_variant("GY", v) == Basecall.ALTERNATE
    assert match_variant("RY", v) == Basecall.OTHER
    assert match_variant("A", v) == Basecall.OTHER

    deletion = Variant("chr1", 10, ".", "ACG", "A")
    assert match_variant("A", deletion) == Basecall.ALTERNATE
    assert match_variant("ACG", deletion) == Basecall.REFERENCE
