import logging
import time
from pathlib import Path

import pytest

from haplink.alignment import BamSource, ReadListSource
from haplink.evidence import DirectEvidence, SimulatedEvidence
from haplink.models import Haplotype, Variant
from haplink.search import candidate_haplotypes, count_candidates, find_haplotypes, search_haplotypes
from haplink.toy_data import linked_reads, make_toy_data, toy_variants


@pytest.fixture
def toy():
    return toy_variants(), ReadListSource(linked_reads())


def test_finds_only_linked_pair(toy):
    variants, source = toy
    found = find_haplotypes(variants, source, 2, 0.05)
    assert set(found) == {Haplotype([variants[0], variants[2]])}
    counts = found[Haplotype([variants[0], variants[2]])]
    assert counts[1, 1] == 12
    assert counts[0, 1] == counts[1, 0] == 0


def test_simulated_search_finds_linked_pair(toy):
    variants, source = toy
    method = SimulatedEvidence(iterations=200, seed=11)
    found = find_haplotypes(variants, source, 2, 0.05, method)
    assert set(found) == {Haplotype([variants[0], variants[2]])}


def test_threaded_search_matches_inline(toy):
    variants, source = toy
    inline = search_haplotypes(variants, source, 2, 0.05)
    threaded = search_haplotypes(variants, source, 2, 0.05, workers=3)
    assert set(threaded.haplotypes) == set(inline.haplotypes)
    assert threaded.candidates_evaluated == inline.candidates_evaluated == 26
    assert not threaded.stopped_early


def test_candidate_budget(toy):
    variants, source = toy
    result = search_haplotypes(variants, source, 2, 0.05, max_candidates=3)
    assert result.candidates_total == 26
    assert result.candidates_evaluated == 3
    assert result.stopped_early

    threaded = search_haplotypes(variants, source, 2, 0.05, max_candidates=3, workers=2)
    assert threaded.candidates_evaluated == 3


def test_candidates_per_chromosome():
    vs = [Variant("a", p, ".", "A", "G") for p in (1, 2, 3)] + [Variant("b", 5, ".", "C", "T")]
    hs = list(candidate_haplotypes(vs))
    assert len(hs) == 4
    assert all(h.chromosome == "a" for h in hs)
    assert count_candidates(vs) == 4
    assert count_candidates(vs, max_size=2) == 3
    with pytest.raises(ValueError):
        list(candidate_haplotypes(vs, max_size=1))


def test_max_size(toy):
    variants, source = toy
    result = search_haplotypes(variants, source, 2, 0.05, max_size=2)
    assert result.candidates_total == 10
    assert len(result.haplotypes) == 1


def test_invalid_arguments(toy):
    variants, source = toy
    with pytest.raises(ValueError):
        search_haplotypes(variants, source, 0, 0.05)
    with pytest.raises(ValueError):
        search_haplotypes(variants, source, 2, 1.5)
    with pytest.raises(ValueError):
        search_haplotypes(variants, object(), 2, 0.05)
    with pytest.raises(ValueError):
        search_haplotypes(variants, source, 2, 0.05, method="bogus")


class SlowEvidence:
    def __init__(self, delay):
        self.delay = delay
        self.inner = DirectEvidence()

    def extract(self, haplotype, source):
        time.sleep(self.delay)
        return self.inner.extract(haplotype, source)


def test_zero_deadline_issues_nothing(toy):
    variants, source = toy
    result = search_haplotypes(variants, source, 2, 0.05, deadline=0)
    assert result.stopped_early
    assert result.candidates_evaluated == 0
    assert result.haplotypes == {}


def test_deadline_lets_running_batch_finish(toy):
    variants, source = toy
    # 2 workers take 8 candidates per batch; 4 rounds of 0.2s outlast the deadline
    result = search_haplotypes(
        variants, source, 2, 0.05, SlowEvidence(0.2), deadline=0.5, workers=2
    )
    assert result.stopped_early
    assert result.candidates_evaluated == 8
    assert result.candidates_evaluated < result.candidates_total


def test_truncated_bam_is_reported_and_search_completes(tmp_path, caplog):
    toy = make_toy_data(outdir=tmp_path / "toy")
    data = Path(toy["bam"]).read_bytes()
    # drop the EOF marker and the tail of the last record block; no index for the copy
    broken = tmp_path / "broken.bam"
    broken.write_bytes(data[: len(data) - 28 - 100])

    with caplog.at_level(logging.WARNING, logger="haplink.alignment"):
        result = search_haplotypes(toy_variants(), BamSource(broken), 2, 0.05)

    assert result.candidates_evaluated == 26
    assert result.haplotypes == {}
    assert "Dropping unreadable alignment record" in caplog.text
