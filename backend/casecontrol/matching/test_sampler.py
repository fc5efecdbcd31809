import numpy as np
import pandas as pd
import pytest

from casecontrol.matching.sampler import Sampler, case_generator, case_seeds


def _candidates(n):
    return pd.DataFrame({"id": list(range(100, 100 + n))})


def test_draws_requested_number_of_distinct_controls():
    draw = Sampler(3).draw(_candidates(10), np.random.default_rng(1))

    ids = draw.selected["id"].tolist()
    assert len(ids) == 3
    assert len(set(ids)) == 3
    assert draw.shortfall == 0
    assert draw.available == 10


def test_shortfall_takes_everyone_available():
    draw = Sampler(5).draw(_candidates(2), np.random.default_rng(1))

    assert draw.selected["id"].tolist() == [100, 101]
    assert draw.shortfall == 3


def test_no_candidates():
    draw = Sampler(2).draw(_candidates(0), np.random.default_rng(1))
    assert draw.selected.empty
    assert draw.shortfall == 2


def test_same_seed_same_draw():
    seeds_a = case_seeds(42, 5)
    seeds_b = case_seeds(42, 5)
    sampler = Sampler(4)

    for a, b in zip(seeds_a, seeds_b):
        first = sampler.draw(_candidates(50), case_generator(a)).selected["id"].tolist()
        second = sampler.draw(_candidates(50), case_generator(b)).selected["id"].tolist()
        assert first == second


def test_case_seed_depends_only_on_position():
    """A case's stream does not change with the number of cases in the run."""
    short_run = case_seeds(7, 3)
    long_run = case_seeds(7, 10)

    for position in range(3):
        assert np.array_equal(
            short_run[position].generate_state(4), long_run[position].generate_state(4)
        )
    assert not np.array_equal(short_run[0].generate_state(4), short_run[1].generate_state(4))


def test_every_candidate_can_be_drawn():
    sampler = Sampler(2)
    rng = np.random.default_rng(2024)
    seen = set()
    for _ in range(200):
        seen.update(sampler.draw(_candidates(5), rng).selected["id"].tolist())
    assert seen == {100, 101, 102, 103, 104}


def test_rejects_non_positive_target():
    with pytest.raises(ValueError):
        Sampler(0)
