"""Safety of Rotor block dissemination against corrupted validators.

An adversary controls a set of validators holding less than a given fraction
of stake. A slice is lost if the sampled relays include too many of them:

- crash faults: more corrupted relays than there are coding shreds;
- byzantine faults: at least as many corrupted relays as data shreds.

The simulation estimates the probability of such a failure for several
adversary strategies and reports the worst one.
"""

from __future__ import annotations

import math
import random
from typing import Any, Sequence

from alpenglow.all2all import ValidatorInfo
from alpenglow.bandwidth import SamplingStrategy

SLICES = 1
MAX_FAILURES = 10_000
ROUND_SIZE = 1000
DEFAULT_TASKS = 1000
DEFAULT_ROUNDS_PER_TASK = 100_000
BYZANTINE_ATTACK_FRAC = 0.2


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _log2(value: float) -> float:
    return math.log2(value) if value > 0 else -math.inf


class RotorSafetyTest:
    """Estimates how likely corrupted relays prevent a slice from arriving."""

    def __init__(
        self,
        validators: Sequence[ValidatorInfo],
        sampler: SamplingStrategy,
        num_data_shreds: int,
        num_shreds: int,
        tasks: int = DEFAULT_TASKS,
        rounds_per_task: int = DEFAULT_ROUNDS_PER_TASK,
    ) -> None:
        self.validators = list(validators)
        if sorted(v.id for v in self.validators) != list(range(len(self.validators))):
            raise ValueError("validator ids must be 0, 1, 2, ... without gaps")
        if not 1 <= num_data_shreds <= num_shreds:
            raise ValueError("need 1 <= num_data_shreds <= num_shreds")
        if tasks < 1 or rounds_per_task < 1:
            raise ValueError("tasks and rounds_per_task must be positive")
        self.total_stake = sum(v.stake for v in self.validators)
        if self.total_stake <= 0:
            raise ValueError("total stake must be positive")
        self.sampler = sampler
        self.num_data_shreds = num_data_shreds
        self.num_shreds = num_shreds
        self.tasks = tasks
        self.rounds_per_task = rounds_per_task
        self.max_failures = MAX_FAILURES
        self.rng = random.Random()
        self.tests = 0
        self.failures = 0

    def _reset_counters(self) -> None:
        self.tests = 0
        self.failures = 0

    def _failure_rate(self) -> float:
        if self.tests == 0:
            raise RuntimeError("no tests were run")
        return self.failures / self.tests

    def run(self, test_name: str, attack_frac: float, writer: Any) -> float:
        """Try all adversary strategies and write the worst outcome as CSV.

        The row holds the stake distribution and sampling strategy (taken
        from ``test_name``), the attack fraction, the shred counts and the
        base-2 logarithm of the highest failure probability, which is also
        returned.
        """
        parts = test_name.split("-")
        if len(parts) < 2:
            raise ValueError(f"test name {test_name!r} lacks a sampling strategy")
        stake_distribution, sampling_strategy = parts[0], parts[1]

        attack_prob = 0.0
        for strategy in (self.run_random, self.run_small, self.run_large):
            rate = strategy(attack_frac, attack_prob)
            self._reset_counters()
            attack_prob = max(attack_prob, rate)

        writer.writerow(
            [
                stake_distribution,
                sampling_strategy,
                _format_float(attack_frac),
                str(self.num_data_shreds),
                str(self.num_shreds),
                _format_float(_log2(attack_prob)),
            ]
        )
        return attack_prob

    def _corrupt_greedily(
        self,
        ordered: Sequence[ValidatorInfo],
        attack_frac: float,
        stop_at_first_miss: bool,
    ) -> list[bool]:
        corrupted = [False] * len(self.validators)
        corrupted_stake = 0.0
        for v in ordered:
            rel_stake = v.stake / self.total_stake
            if corrupted_stake + rel_stake < attack_frac:
                corrupted[v.id] = True
                corrupted_stake += rel_stake
            elif stop_at_first_miss:
                break
        return corrupted

    def _run_task(
        self, attack_frac: float, known_attack_prob: float, corrupted: Sequence[bool]
    ) -> None:
        byzantine = attack_frac == BYZANTINE_ATTACK_FRAC
        for _ in range(self.rounds_per_task):
            tests, done = self.run_with_corrupted(ROUND_SIZE, byzantine, corrupted)
            self.tests += tests
            better_attack_known = (
                known_attack_prob > 0
                and self.tests > 3.0 * self.failures / known_attack_prob
            )
            if done or better_attack_known:
                break

    def run_small(self, attack_frac: float, known_attack_prob: float) -> float:
        """Corrupt the smallest validators and return the failure rate."""
        ordered = sorted(self.validators, key=lambda v: v.stake)
        corrupted = self._corrupt_greedily(ordered, attack_frac, True)
        for _ in range(self.tasks):
            self._run_task(attack_frac, known_attack_prob, corrupted)
        return self._failure_rate()

    def run_large(self, attack_frac: float, known_attack_prob: float) -> float:
        """Corrupt the largest validators that fit and return the failure rate."""
        ordered = sorted(self.validators, key=lambda v: -v.stake)
        corrupted = self._corrupt_greedily(ordered, attack_frac, False)
        for _ in range(self.tasks):
            self._run_task(attack_frac, known_attack_prob, corrupted)
        return self._failure_rate()

    def run_random(self, attack_frac: float, known_attack_prob: float) -> float:
        """Corrupt random validators per task and return the failure rate."""
        for _ in range(self.tasks):
            ordered = list(self.validators)
            self.rng.shuffle(ordered)
            corrupted = self._corrupt_greedily(ordered, attack_frac, False)
            self._run_task(attack_frac, known_attack_prob, corrupted)
        return self._failure_rate()

    def run_with_corrupted(
        self,
        n: int,
        byzantine: bool,
        corrupted: Sequence[bool],
        rng: random.Random | None = None,
    ) -> tuple[int, bool]:
        """Sample relays ``n`` times and count failures.

        Returns the number of tests run and whether the failure limit was
        reached, which ends the round early.
        """
        rng = rng if rng is not None else self.rng
        tests = 0
        for _ in range(n):
            tests += 1
            for _ in range(SLICES):
                sampled = self.sampler.sample_multiple(self.num_shreds, rng)
                corrupted_samples = sum(1 for v in sampled if corrupted[v])
                if byzantine:
                    failed = corrupted_samples >= self.num_data_shreds
                else:
                    failed = corrupted_samples > self.num_shreds - self.num_data_shreds
                if failed:
                    self.failures += 1
                    break
                if self.failures >= self.max_failures:
                    return tests, True
        return tests, False