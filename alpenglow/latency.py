"""Simulated latency of Rotor block dissemination and Alpenglow voting.

For a given leader and set of Rotor relays, the simulation computes for each
validator when it has received enough shreds, when it sees a notarization and
when the block becomes final (fast or slow path). Latencies are aggregated as
stake-weighted percentiles averaged over many iterations.
"""

from __future__ import annotations

import enum
import math
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from alpenglow.all2all import ValidatorInfo
from alpenglow.bandwidth import SamplingStrategy

PERCENTILES = 100
SHREDS95_SHREDS = 61
NOTAR_THRESHOLD = 0.6
NOTAR65_THRESHOLD = 0.65
FAST_FINAL_THRESHOLD = 0.8
SLOW_FINAL_THRESHOLD = 0.6
MAX_STAKE_DEVIATION = 5000.0

STAT_NAMES = (
    "direct",
    "rotor",
    "shreds95",
    "notar",
    "notar65",
    "fast_final",
    "slow_final",
    "final",
)
CSV_HEADER = "percentile," + ",".join(STAT_NAMES)
DEFAULT_OUTPUT_DIR = Path("data", "output", "simulations", "latency")

PingFunction = Callable[[int, int], Optional[float]]


@dataclass(frozen=True)
class PingServer:
    """A location with measured ping times to other locations."""

    id: int
    location: str


class LatencyTestStage(enum.IntEnum):
    """The sequential stages of the latency test."""

    DIRECT = 0
    ROTOR = 1
    NOTAR = 2
    FINAL = 3


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


@dataclass
class LatencyStats:
    """Running stake-weighted percentile latencies."""

    sum_percentile_latencies: list[float] = field(
        default_factory=lambda: [0.0] * PERCENTILES
    )
    percentile_location: list[dict[str, float]] = field(
        default_factory=lambda: [{} for _ in range(PERCENTILES)]
    )
    count: int = 0

    def record_latencies(
        self,
        latencies: Sequence[tuple[float, int]],
        validators: Sequence[ValidatorInfo],
        ping_servers: Sequence[PingServer],
    ) -> None:
        """Add one iteration of per-validator ``(latency, id)`` pairs."""
        total_stake = sum(v.stake for v in validators)
        if total_stake <= 0:
            raise ValueError("total stake must be positive")
        percentile_stake = total_stake / PERCENTILES
        percentile = 1
        stake_so_far = 0.0
        for latency, vid in sorted(latencies):
            validator_stake = float(validators[vid].stake)
            location = ping_servers[vid].location
            for _ in range(PERCENTILES):
                stake_left = percentile * percentile_stake - stake_so_far
                abs_contrib = min(validator_stake, stake_left)
                rel_contrib = abs_contrib / percentile_stake
                self.sum_percentile_latencies[percentile - 1] += rel_contrib * latency
                counts = self.percentile_location[percentile - 1]
                counts[location] = counts.get(location, 0.0) + abs_contrib
                stake_so_far += abs_contrib
                validator_stake -= abs_contrib
                if (
                    percentile < PERCENTILES
                    and stake_so_far >= percentile * percentile_stake
                ):
                    percentile += 1
                else:
                    break
        if abs(stake_so_far - total_stake) >= MAX_STAKE_DEVIATION:
            raise RuntimeError("recorded stake does not match total stake")
        if percentile < PERCENTILES:
            raise RuntimeError("latencies do not cover all percentiles")
        self.count += 1

    def avg_percentile_latency(self, percentile: int) -> float:
        """Return the average latency at ``percentile`` (1 to 100).

        Returns NaN if nothing has been recorded yet.
        """
        if not 1 <= percentile <= PERCENTILES:
            raise ValueError(f"percentile must be in 1..={PERCENTILES}")
        if self.count == 0:
            return math.nan
        return self.sum_percentile_latencies[percentile - 1] / self.count

    def location_fractions(self, percentile: int) -> dict[str, float]:
        """Return the share (in %) of stake per location at ``percentile``."""
        if not 1 <= percentile <= PERCENTILES:
            raise ValueError(f"percentile must be in 1..={PERCENTILES}")
        counts = self.percentile_location[percentile - 1]
        total = sum(counts.values())
        if total <= 0:
            return {}
        return {location: count * 100.0 / total for location, count in counts.items()}


def _threshold_latency(
    votes: Sequence[tuple[float, int]],
    validators: Sequence[ValidatorInfo],
    total_stake: int,
    fraction: float,
) -> float:
    """Return the latency at which more than ``fraction`` of stake arrived."""
    stake_so_far = 0
    for latency, vid in votes:
        stake_so_far += validators[vid].stake
        if stake_so_far > total_stake * fraction:
            return latency
    raise RuntimeError(f"stake threshold {fraction} never reached")


class LatencyTest:
    """Simulated latency test over validators placed at ping servers."""

    def __init__(
        self,
        validators_with_ping_data: Sequence[tuple[ValidatorInfo, PingServer]],
        leader_sampler: SamplingStrategy,
        rotor_sampler: SamplingStrategy,
        num_data_shreds: int,
        num_shreds: int,
        get_ping: PingFunction,
    ) -> None:
        self.validators = [v for v, _ in validators_with_ping_data]
        self.ping_servers = [p for _, p in validators_with_ping_data]
        if [v.id for v in self.validators] != list(range(len(self.validators))):
            raise ValueError("validator ids must be 0, 1, 2, ... in order")
        if not 1 <= num_data_shreds <= num_shreds:
            raise ValueError("need 1 <= num_data_shreds <= num_shreds")
        if num_shreds < SHREDS95_SHREDS:
            raise ValueError(f"num_shreds must be at least {SHREDS95_SHREDS}")
        self.total_stake = sum(v.stake for v in self.validators)
        if self.total_stake <= 0:
            raise ValueError("total stake must be positive")
        self.leader_sampler = leader_sampler
        self.rotor_sampler = rotor_sampler
        self.num_data_shreds = num_data_shreds
        self.num_shreds = num_shreds
        self.get_ping = get_ping
        self.stats = {name: LatencyStats() for name in STAT_NAMES}

    def _ping(self, source: int, dest: int) -> float:
        a = self.ping_servers[source].id
        b = self.ping_servers[dest].id
        ping = self.get_ping(a, b)
        if ping is None:
            raise ValueError(f"no ping data between servers {a} and {b}")
        return ping

    def run_many(
        self,
        test_name: str,
        iterations: int,
        up_to_stage: LatencyTestStage,
        output_dir: Path | str = DEFAULT_OUTPUT_DIR,
        rng: random.Random | None = None,
    ) -> Path:
        """Run ``iterations`` iterations with random leaders and relays.

        Writes the results to ``<output_dir>/<test_name>.csv`` and returns
        that path.
        """
        rng = rng if rng is not None else random.Random()
        for _ in range(iterations):
            self.run_one(up_to_stage, rng)
        path = (Path(output_dir) / test_name).with_suffix(".csv")
        path.parent.mkdir(parents=True, exist_ok=True)
        self.write_to_csv(path)
        return path

    def run_many_with_leader(
        self,
        test_name: str,
        iterations: int,
        up_to_stage: LatencyTestStage,
        leader: ValidatorInfo,
        output_dir: Path | str = DEFAULT_OUTPUT_DIR,
        rng: random.Random | None = None,
    ) -> Path:
        """Run ``iterations`` iterations with a fixed leader and random relays.

        Writes the results to ``<output_dir>/<location>/<test_name>.csv``,
        where location is that of the leader's ping server, and returns it.
        """
        rng = rng if rng is not None else random.Random()
        for _ in range(iterations):
            relays = self.rotor_sampler.sample_multiple(self.num_shreds, rng)
            self.run_one_deterministic(up_to_stage, leader.id, relays)
        location = self.ping_servers[leader.id].location
        path = (Path(output_dir) / location / test_name).with_suffix(".csv")
        path.parent.mkdir(parents=True, exist_ok=True)
        self.write_to_csv(path)
        return path

    def run_one(self, up_to_stage: LatencyTestStage, rng: random.Random) -> None:
        """Run one iteration with a randomly sampled leader and relays."""
        leader = self.leader_sampler.sample(rng)
        relays = self.rotor_sampler.sample_multiple(self.num_shreds, rng)
        self.run_one_deterministic(up_to_stage, leader, relays)

    def run_one_deterministic(
        self,
        up_to_stage: LatencyTestStage,
        leader: int,
        relays: Sequence[int],
    ) -> None:
        """Run one iteration with the given leader and relays.

        Statistics are only recorded when the iteration runs through the
        final stage.
        """
        relays = list(relays)
        if len(relays) != self.num_shreds:
            raise ValueError(f"expected {self.num_shreds} relays, got {len(relays)}")
        ids = range(len(self.validators))

        direct = [self._ping(leader, v) for v in ids]
        relay_latencies = [direct[r] for r in relays]
        if up_to_stage == LatencyTestStage.DIRECT:
            return

        rotor: list[float] = []
        shreds95: list[float] = []
        for v in ids:
            arrivals = sorted(
                latency + self._ping(relay, v)
                for relay, latency in zip(relays, relay_latencies)
            )
            rotor.append(arrivals[self.num_data_shreds - 1])
            shreds95.append(arrivals[SHREDS95_SHREDS - 1])
        if up_to_stage == LatencyTestStage.ROTOR:
            return

        # notar vote propagation
        notar: list[float] = []
        notar65: list[float] = []
        fast_final: list[float] = []
        for v1 in ids:
            votes = sorted((rotor[v2] + self._ping(v2, v1), v2) for v2 in ids)
            notar.append(
                max(self._threshold(votes, NOTAR_THRESHOLD), rotor[v1])
            )
            notar65.append(self._threshold(votes, NOTAR65_THRESHOLD))
            fast_final.append(
                max(self._threshold(votes, FAST_FINAL_THRESHOLD), rotor[v1])
            )
        final = list(fast_final)

        # notar cert propagation
        for v1 in ids:
            cert = min(notar[v2] + self._ping(v2, v1) for v2 in ids)
            cert = max(cert, rotor[v1])
            if cert < notar[v1]:
                notar[v1] = cert

        # fast-final cert propagation
        for v1 in ids:
            cert = min(fast_final[v2] + self._ping(v2, v1) for v2 in ids)
            cert = max(cert, rotor[v1])
            if cert < fast_final[v1]:
                fast_final[v1] = cert
                final[v1] = cert
        if up_to_stage == LatencyTestStage.NOTAR:
            return

        # slow finalization votes
        slow_final: list[float] = []
        for v1 in ids:
            votes = sorted((notar[v2] + self._ping(v2, v1), v2) for v2 in ids)
            latency = max(self._threshold(votes, SLOW_FINAL_THRESHOLD), notar[v1])
            slow_final.append(latency)
            if latency < final[v1]:
                final[v1] = latency

        # slow-final cert propagation
        for v1 in ids:
            cert = min(slow_final[v2] + self._ping(v2, v1) for v2 in ids)
            cert = max(cert, notar[v1])
            if cert < slow_final[v1]:
                slow_final[v1] = cert
                if cert < final[v1]:
                    final[v1] = cert

        results = {
            "direct": direct,
            "rotor": rotor,
            "shreds95": shreds95,
            "notar": notar,
            "notar65": notar65,
            "fast_final": fast_final,
            "slow_final": slow_final,
            "final": final,
        }
        for name, values in results.items():
            self.stats[name].record_latencies(
                [(latency, vid) for vid, latency in enumerate(values)],
                self.validators,
                self.ping_servers,
            )

    def _threshold(self, votes: Sequence[tuple[float, int]], fraction: float) -> float:
        return _threshold_latency(votes, self.validators, self.total_stake, fraction)

    def write_to_csv(self, filename: Path | str) -> None:
        """Write the average latency of every stage per percentile as CSV."""
        with open(filename, "w", encoding="utf-8", newline="") as out:
            out.write(CSV_HEADER + "\n")
            for percentile in range(1, PERCENTILES + 1):
                values = (
                    _format_float(self.stats[name].avg_percentile_latency(percentile))
                    for name in STAT_NAMES
                )
                out.write(f"{percentile}," + ",".join(values) + "\n")