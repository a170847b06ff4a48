import csv
import io
import random

import pytest

from alpenglow.all2all import ValidatorInfo
from alpenglow.rotor_safety import MAX_FAILURES, RotorSafetyTest


class FixedSampler:
    """Always samples the same validator for every relay."""

    def __init__(self, vid):
        self.vid = vid

    def sample(self, rng):
        return self.vid

    def sample_multiple(self, k, rng):
        return [self.vid] * k


class ListSampler:
    def __init__(self, relays):
        self.relays = list(relays)

    def sample(self, rng):
        return self.relays[0]

    def sample_multiple(self, k, rng):
        return list(self.relays[:k])


def make_validators(stakes):
    return [ValidatorInfo(id=i, stake=s) for i, s in enumerate(stakes)]


STAKES = [10, 10, 40, 40]


def make_test(sampler, tasks=2, rounds=3):
    return RotorSafetyTest(make_validators(STAKES), sampler, 2, 4, tasks, rounds)


def test_run_with_corrupted_all_fail():
    tester = make_test(FixedSampler(0))
    tests, done = tester.run_with_corrupted(5, False, [True, False, False, False])
    assert (tests, done) == (5, False)
    assert tester.failures == 5


def test_crash_versus_byzantine_threshold():
    corrupted = [True, False, False, False]
    crash = make_test(ListSampler([0, 0, 1, 1]))
    crash.run_with_corrupted(10, False, corrupted, random.Random(1))
    assert crash.failures == 0
    byz = make_test(ListSampler([0, 0, 1, 1]))
    byz.run_with_corrupted(10, True, corrupted, random.Random(1))
    assert byz.failures == 10


def test_failure_limit_ends_round():
    tester = make_test(FixedSampler(3))
    tester.failures = MAX_FAILURES
    assert tester.run_with_corrupted(100, False, [True, False, False, False]) == (1, True)


def test_small_corrupts_smallest_validators():
    assert make_test(FixedSampler(0)).run_small(0.45, 0.0) == 1.0
    assert make_test(FixedSampler(2)).run_small(0.45, 0.0) == 0.0


def test_large_corrupts_largest_that_fit():
    assert make_test(FixedSampler(2)).run_large(0.45, 0.0) == 1.0
    assert make_test(FixedSampler(0)).run_large(0.45, 0.0) == 0.0


def test_random_never_exceeds_attack_fraction():
    # with 30% budget only the two 10-stake validators can be corrupted
    assert make_test(FixedSampler(0)).run_random(0.3, 0.0) == 1.0
    assert make_test(FixedSampler(2)).run_random(0.3, 0.0) == 0.0


def test_known_better_attack_stops_early():
    tester = make_test(FixedSampler(3), tasks=2, rounds=100)
    assert tester.run_small(0.45, 0.5) == 0.0
    assert tester.tests == 2 * 1000


def test_run_without_failures_writes_minus_infinity():
    out = io.StringIO()
    tester = make_test(FixedSampler(2))
    prob = tester.run("solana-stake_weighted", 0.3, csv.writer(out))
    assert prob == 0.0
    rows = list(csv.reader(io.StringIO(out.getvalue())))
    assert rows == [["solana", "stake_weighted", "0.3", "2", "4", "-inf"]]
    assert (tester.tests, tester.failures) == (0, 0)


def test_run_with_certain_failure():
    out = io.StringIO()
    prob = make_test(FixedSampler(0)).run("solana-stake_weighted", 0.3, csv.writer(out))
    assert prob == 1.0
    rows = list(csv.reader(io.StringIO(out.getvalue())))
    assert rows[0][-1] == "0"


def test_run_rejects_bad_test_name():
    with pytest.raises(ValueError):
        make_test(FixedSampler(0)).run("solana", 0.3, csv.writer(io.StringIO()))


def test_rejects_invalid_configuration():
    with pytest.raises(ValueError):
        RotorSafetyTest(make_validators(STAKES), FixedSampler(0), 5, 4)
    with pytest.raises(ValueError):
        RotorSafetyTest(
            [ValidatorInfo(id=1, stake=1), ValidatorInfo(id=2, stake=1)],
            FixedSampler(0),
            1,
            2,
        )
    with pytest.raises(ValueError):
        RotorSafetyTest(make_validators([0, 0]), FixedSampler(0), 1, 2)