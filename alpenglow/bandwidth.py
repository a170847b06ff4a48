"""Rotor workload and bandwidth simulations.

Simulates the dissemination of many slices via Rotor, tracking how many
shreds each validator sends. From that workload the bandwidth each validator
needs, and the maximum goodput a bandwidth distribution supports, follow.
"""

from __future__ import annotations

import math
import random
from typing import Any, Protocol, Sequence

from alpenglow.all2all import ValidatorInfo

USAGE_BIN_SIZE = 13
USAGE_BINS = 99
REFERENCE_BANDWIDTH = 32_270_000.0


class SamplingStrategy(Protocol):
    """Samples validator ids, e.g. a leader or a set of Rotor relays."""

    def sample(self, rng: random.Random) -> int:
        """Return one sampled validator id."""

    def sample_multiple(self, k: int, rng: random.Random) -> list[int]:
        """Return ``k`` sampled validator ids."""


def _format_float(value: float) -> str:
    if math.isfinite(value) and value.is_integer():
        return str(int(value))
    return repr(value)


def _split_test_name(test_name: str) -> tuple[str, str]:
    parts = test_name.split("-")
    if len(parts) < 2:
        raise ValueError(f"test name {test_name!r} lacks a sampling strategy")
    return parts[0], parts[1]


class WorkloadTest:
    """Tracks the number of shreds sent per validator when running Rotor."""

    def __init__(
        self,
        validators: Sequence[ValidatorInfo],
        leader_sampler: SamplingStrategy,
        rotor_sampler: SamplingStrategy,
        num_shreds: int,
    ) -> None:
        self.validators = list(validators)
        self.leader_sampler = leader_sampler
        self.rotor_sampler = rotor_sampler
        self.num_shreds = num_shreds
        self.leader_workload = 0
        self.workload = [0] * len(self.validators)

    def run_multiple(self, slices: int, rng: random.Random | None = None) -> None:
        """Simulate distributing ``slices`` slices, adding to the totals."""
        rng = rng if rng is not None else random.Random()
        for _ in range(slices):
            self.run_one(rng)

    def run_one(self, rng: random.Random) -> None:
        """Simulate distributing one slice, adding to the totals."""
        leader = self.leader_sampler.sample(rng)
        self.leader_workload += self.num_shreds
        self.workload[leader] += self.num_shreds
        num_val = len(self.validators)
        for relay in self.rotor_sampler.sample_multiple(self.num_shreds, rng):
            self.workload[relay] += num_val - 1 if relay == leader else num_val - 2

    def reset(self) -> None:
        """Clear the per-validator workload."""
        self.workload = [0] * len(self.validators)


class BandwidthTest:
    """Workload test augmented with per-validator bandwidth information."""

    def __init__(
        self,
        validators: Sequence[ValidatorInfo],
        leader_bandwidth: int,
        bandwidths: Sequence[int],
        leader_sampler: SamplingStrategy,
        rotor_sampler: SamplingStrategy,
        num_shreds: int,
        max_data_per_shred: int,
    ) -> None:
        if len(validators) != len(bandwidths):
            raise ValueError("need exactly one bandwidth per validator")
        self.leader_bandwidth = leader_bandwidth
        self.bandwidths = list(bandwidths)
        self.max_data_per_shred = max_data_per_shred
        self.workload_test = WorkloadTest(
            validators, leader_sampler, rotor_sampler, num_shreds
        )

    @property
    def num_shreds(self) -> int:
        return self.workload_test.num_shreds

    @num_shreds.setter
    def num_shreds(self, value: int) -> None:
        self.workload_test.num_shreds = value

    def run_multiple(self, slices: int, rng: random.Random | None = None) -> None:
        """Simulate distributing ``slices`` slices."""
        self.workload_test.run_multiple(slices, rng)

    def _leader_workload(self) -> int:
        leader_workload = self.workload_test.leader_workload
        if leader_workload == 0:
            raise ValueError("no slices have been simulated yet")
        return leader_workload

    def supported_goodput(self) -> float:
        """Return the maximum goodput (bits/s) the bandwidths support."""
        leader_workload = self._leader_workload()
        leader_bw = float(self.leader_bandwidth)
        seconds = 8 * self.max_data_per_shred * leader_workload / leader_bw
        min_supported = leader_bw
        for shreds, bandwidth in zip(self.workload_test.workload, self.bandwidths):
            required = self.max_data_per_shred * shreds * 8 / seconds
            ratio = required / bandwidth
            if ratio > 0 and leader_bw / ratio < min_supported:
                min_supported = leader_bw / ratio
        return min_supported / 2.0

    def binned_usage(self) -> list[tuple[float, int, int]]:
        """Return bandwidth usage grouped into bins of validators.

        Validators are sorted by bandwidth usage and grouped in bins of 13.
        Each entry holds the average usage, the rank of the bin's first
        validator and the number of validators in the bin.
        """
        leader_workload = self._leader_workload()
        usage = sorted(
            self.leader_bandwidth * (shreds / leader_workload)
            for shreds in self.workload_test.workload
        )
        if len(usage) > USAGE_BIN_SIZE * USAGE_BINS:
            raise ValueError("too many validators for the usage bins")
        bins = [(0.0, 0, 0)] * USAGE_BINS
        for rank, bandwidth in enumerate(usage):
            index = rank // USAGE_BIN_SIZE
            avg, start, count = bins[index]
            if rank % USAGE_BIN_SIZE == 0:
                start = rank
            bins[index] = ((avg * count + bandwidth) / (count + 1), start, count + 1)
        return bins

    def evaluate_supported(self, test_name: str, writer: Any) -> None:
        """Write the maximum supported goodput as one CSV row."""
        stake_distribution, sampling_strategy = _split_test_name(test_name)
        writer.writerow(
            [
                stake_distribution,
                sampling_strategy,
                str(self.leader_bandwidth),
                str(self.num_shreds),
                _format_float(self.supported_goodput()),
            ]
        )

    def evaluate_usage(self, test_name: str, writer: Any) -> None:
        """Write the binned bandwidth usage as CSV rows."""
        stake_distribution, sampling_strategy = _split_test_name(test_name)
        writer.writerows(
            [
                stake_distribution,
                sampling_strategy,
                str(self.leader_bandwidth),
                str(self.num_shreds),
                str(start),
                _format_float(REFERENCE_BANDWIDTH),
                _format_float(bandwidth),
            ]
            for bandwidth, start, _ in self.binned_usage()
        )

    def reset(self) -> None:
        """Clear the per-validator workload."""
        self.workload_test.reset()