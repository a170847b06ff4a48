import csv
import io
import random

import pytest

from alpenglow.all2all import ValidatorInfo
from alpenglow.bandwidth import BandwidthTest, WorkloadTest


class FixedSampler:
    def __init__(self, leader, relays):
        self.leader = leader
        self.relays = relays

    def sample(self, rng):
        return self.leader

    def sample_multiple(self, k, rng):
        return list(self.relays[:k])


class UniformSampler:
    def __init__(self, count):
        self.count = count

    def sample(self, rng):
        return rng.randrange(self.count)

    def sample_multiple(self, k, rng):
        return [rng.randrange(self.count) for _ in range(k)]


def make_validators(count):
    return [ValidatorInfo(id=i, stake=1) for i in range(count)]


def make_bandwidth_test(count=40, num_shreds=8, bandwidth=1_000_000_000):
    sampler = UniformSampler(count)
    return BandwidthTest(
        make_validators(count),
        bandwidth,
        [bandwidth] * count,
        sampler,
        sampler,
        num_shreds,
        1000,
    )


def test_run_one_counts_leader_and_relays():
    test = WorkloadTest(make_validators(4), FixedSampler(0, []), FixedSampler(0, [1, 2]), 2)
    test.run_one(random.Random(1))
    assert test.leader_workload == 2
    assert test.workload == [2, 2, 2, 0]


def test_leader_acting_as_relay_sends_to_everyone_else():
    test = WorkloadTest(make_validators(4), FixedSampler(0, []), FixedSampler(0, [0, 0]), 2)
    test.run_one(random.Random(1))
    assert test.workload[0] == 8
    assert sum(test.workload[1:]) == 0


def test_random_workload_within_bounds():
    n, k, slices = 30, 6, 50
    sampler = UniformSampler(n)
    test = WorkloadTest(make_validators(n), sampler, sampler, k)
    test.run_multiple(slices, random.Random(3))
    assert test.leader_workload == k * slices
    relay_total = sum(test.workload) - test.leader_workload
    assert slices * k * (n - 2) <= relay_total <= slices * k * (n - 1)


def test_reset_clears_workload_only():
    sampler = UniformSampler(10)
    test = WorkloadTest(make_validators(10), sampler, sampler, 4)
    test.run_multiple(5, random.Random(2))
    leader_workload = test.leader_workload
    test.reset()
    assert test.workload == [0] * 10
    assert test.leader_workload == leader_workload


def test_mismatched_bandwidths_rejected():
    sampler = UniformSampler(3)
    with pytest.raises(ValueError):
        BandwidthTest(make_validators(3), 10, [10, 10], sampler, sampler, 4, 1000)


def test_evaluation_requires_simulation():
    test = make_bandwidth_test()
    with pytest.raises(ValueError):
        test.supported_goodput()
    with pytest.raises(ValueError):
        test.binned_usage()


def test_supported_goodput_bounded_by_leader_bandwidth():
    test = make_bandwidth_test()
    test.run_multiple(200, random.Random(5))
    goodput = test.supported_goodput()
    assert 0 < goodput <= test.leader_bandwidth / 2


def test_num_shreds_delegates_to_workload():
    test = make_bandwidth_test(num_shreds=8)
    test.num_shreds = 16
    assert test.workload_test.num_shreds == 16
    test.run_multiple(3, random.Random(1))
    assert test.workload_test.leader_workload == 48


def test_binned_usage_groups_sorted_validators():
    count = 40
    test = make_bandwidth_test(count=count)
    test.run_multiple(100, random.Random(9))
    bins = test.binned_usage()
    assert len(bins) == 99
    assert sum(c for _, _, c in bins) == count
    used = [b for b in bins if b[2] > 0]
    assert [start for _, start, _ in used] == [13 * i for i in range(len(used))]
    averages = [avg for avg, _, _ in used]
    assert averages == sorted(averages)


def test_evaluate_supported_writes_row():
    test = make_bandwidth_test()
    test.run_multiple(50, random.Random(4))
    out = io.StringIO()
    test.evaluate_supported("solana-stake_weighted", csv.writer(out))
    rows = list(csv.reader(io.StringIO(out.getvalue())))
    assert len(rows) == 1
    row = rows[0]
    assert row[:4] == ["solana", "stake_weighted", str(test.leader_bandwidth), "8"]
    assert float(row[4]) == pytest.approx(test.supported_goodput())


def test_evaluate_usage_writes_one_row_per_bin():
    test = make_bandwidth_test()
    test.run_multiple(50, random.Random(4))
    out = io.StringIO()
    test.evaluate_usage("solana-uniform", csv.writer(out))
    rows = list(csv.reader(io.StringIO(out.getvalue())))
    assert len(rows) == 99
    assert all(row[0] == "solana" and row[1] == "uniform" for row in rows)
    assert all(row[5] == "32270000" for row in rows)


def test_evaluate_rejects_test_name_without_strategy():
    test = make_bandwidth_test()
    test.run_multiple(5, random.Random(4))
    with pytest.raises(ValueError):
        test.evaluate_supported("solana", csv.writer(io.StringIO()))