"""Driver for the Rotor and Alpenglow simulations.

Runs the bandwidth, latency and safety simulations for one stake
distribution and sampling strategy, writing all results as CSV files below
a common output directory.
"""

from __future__ import annotations

import csv
import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from alpenglow.all2all import ValidatorInfo
from alpenglow.bandwidth import BandwidthTest, SamplingStrategy
from alpenglow.latency import LatencyTest, LatencyTestStage, PingFunction, PingServer
from alpenglow.rotor_safety import (
    DEFAULT_ROUNDS_PER_TASK,
    DEFAULT_TASKS,
    RotorSafetyTest,
)

logger = logging.getLogger(__name__)

MAX_BANDWIDTHS = (
    100_000_000,  # 100 Mbps
    1_000_000_000,  # 1 Gbps
    10_000_000_000,  # 10 Gbps
    100_000_000_000,  # 100 Gbps
)
SHRED_COMBINATIONS = ((32, 64),)
BANDWIDTH_SHRED_COUNTS = (64, 128, 256, 512)
BANDWIDTH_INITIAL_SHREDS = 64
BANDWIDTH_SLICES = 1_000_000
LATENCY_ITERATIONS = 1000
CRASH_ATTACK_FRAC = 0.4
BYZANTINE_ATTACK_FRAC = 0.2

_LEADER_CITIES = {
    "solana": (
        "Westpoort",
        "Frankfurt",
        "London",
        "Zurich",
        "New York City",
        "Los Angeles",
        "Tokyo",
        "Singapore",
        "Cape Town",
        "Buenos Aires",
    ),
    "sui": (
        "Los Angeles",
        "Dublin",
        "London",
        "Paris",
        "Frankfurt",
        "Singapore",
        "Tokyo",
    ),
    "5hubs": (
        "San Francisco",
        "New York City",
        "London",
        "Shanghai",
        "Tokyo",
    ),
    "stock_exchanges": (
        "Toronto",
        "New York City",
        "Westpoort",
        "Taipei",
        "Pune",
        "Shanghai",
        "Hong Kong",
        "Tokyo",
    ),
}


@dataclass
class SimulationConfig:
    """Which simulations to run, with which parameters, and where to write."""

    output_dir: Path = Path("data", "output", "simulations")
    run_bandwidth_tests: bool = False
    run_latency_tests: bool = True
    run_crash_safety_tests: bool = False
    run_byzantine_safety_tests: bool = False
    max_bandwidths: Sequence[int] = MAX_BANDWIDTHS
    shred_combinations: Sequence[tuple[int, int]] = SHRED_COMBINATIONS
    bandwidth_shred_counts: Sequence[int] = BANDWIDTH_SHRED_COUNTS
    bandwidth_slices: int = BANDWIDTH_SLICES
    max_data_per_shred: int | None = None
    latency_iterations: int = LATENCY_ITERATIONS
    safety_tasks: int = DEFAULT_TASKS
    safety_rounds_per_task: int = DEFAULT_ROUNDS_PER_TASK
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)

    @property
    def bandwidth_supported_path(self) -> Path:
        return self.output_dir / "bandwidth" / "bandwidth_supported.csv"

    @property
    def bandwidth_usage_path(self) -> Path:
        return self.output_dir / "bandwidth" / "bandwidth_usage.csv"

    @property
    def safety_path(self) -> Path:
        return self.output_dir / "safety" / "safety.csv"

    @property
    def latency_dir(self) -> Path:
        return self.output_dir / "latency"

    @property
    def run_safety_tests(self) -> bool:
        return self.run_crash_safety_tests or self.run_byzantine_safety_tests


def find_leader_in_city(
    validators_with_ping_data: Sequence[tuple[ValidatorInfo, PingServer]],
    city: str,
) -> ValidatorInfo:
    """Return the first validator located in ``city``."""
    for validator, ping_server in validators_with_ping_data:
        if ping_server.location == city:
            return validator
    raise LookupError(f"leader not found in {city}")


def leader_cities(test_name: str) -> list[str]:
    """Return the cities used as fixed leader locations for ``test_name``."""
    for prefix, cities in _LEADER_CITIES.items():
        if test_name.startswith(prefix):
            return list(cities)
    raise ValueError(f"no leader cities known for test {test_name!r}")


def prepare_output_files(config: SimulationConfig) -> list[Path]:
    """Create (or truncate) the shared CSV files the enabled tests append to."""
    paths: list[Path] = []
    if config.run_bandwidth_tests:
        paths += [config.bandwidth_supported_path, config.bandwidth_usage_path]
    if config.run_safety_tests:
        paths.append(config.safety_path)
    for path in paths:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")
    return paths


def _run_bandwidth_tests(
    test_name: str,
    validators: Sequence[ValidatorInfo],
    leader_sampler: SamplingStrategy,
    rotor_sampler: SamplingStrategy,
    config: SimulationConfig,
) -> list[Path]:
    if config.max_data_per_shred is None:
        raise ValueError("bandwidth tests need max_data_per_shred")
    supported_path = config.bandwidth_supported_path
    usage_path = config.bandwidth_usage_path
    supported_path.parent.mkdir(parents=True, exist_ok=True)
    with open(supported_path, "a", encoding="utf-8", newline="") as supported_file, open(
        usage_path, "a", encoding="utf-8", newline=""
    ) as usage_file:
        supported_writer = csv.writer(supported_file, lineterminator="\n")
        usage_writer = csv.writer(usage_file, lineterminator="\n")
        for max_bandwidth in config.max_bandwidths:
            tester = BandwidthTest(
                validators,
                max_bandwidth,
                [max_bandwidth] * len(validators),
                leader_sampler,
                rotor_sampler,
                BANDWIDTH_INITIAL_SHREDS,
                config.max_data_per_shred,
            )
            for shreds in config.bandwidth_shred_counts:
                logger.info(
                    "%s bandwidth test (%.1f Gbps, %d shreds)",
                    test_name,
                    max_bandwidth / 1e9,
                    shreds,
                )
                tester.num_shreds = shreds
                tester.reset()
                tester.run_multiple(config.bandwidth_slices, config.rng)
                tester.evaluate_supported(test_name, supported_writer)
                tester.evaluate_usage(test_name, usage_writer)
    return [supported_path, usage_path]


def _run_latency_tests(
    test_name: str,
    validators_with_ping_data: Sequence[tuple[ValidatorInfo, PingServer]],
    leader_sampler: SamplingStrategy,
    rotor_sampler: SamplingStrategy,
    get_ping: PingFunction,
    config: SimulationConfig,
) -> list[Path]:
    paths: list[Path] = []
    for n, k in config.shred_combinations:
        logger.info("%s latency tests (random leaders, n=%d, k=%d)", test_name, n, k)
        tester = LatencyTest(
            validators_with_ping_data, leader_sampler, rotor_sampler, n, k, get_ping
        )
        paths.append(
            tester.run_many(
                f"{test_name}-{n}-{k}",
                config.latency_iterations,
                LatencyTestStage.FINAL,
                config.latency_dir,
                config.rng,
            )
        )

    cities = leader_cities(test_name)
    for n, k in config.shred_combinations:
        for city in cities:
            logger.info(
                "%s latency tests (fixed leader in %s, n=%d, k=%d)",
                test_name,
                city,
                n,
                k,
            )
            leader = find_leader_in_city(validators_with_ping_data, city)
            tester = LatencyTest(
                validators_with_ping_data, leader_sampler, rotor_sampler, n, k, get_ping
            )
            paths.append(
                tester.run_many_with_leader(
                    f"{test_name}-{n}-{k}",
                    config.latency_iterations,
                    LatencyTestStage.FINAL,
                    leader,
                    config.latency_dir,
                    config.rng,
                )
            )
    return paths


def _run_safety_tests(
    test_name: str,
    validators: Sequence[ValidatorInfo],
    rotor_sampler: SamplingStrategy,
    config: SimulationConfig,
) -> list[Path]:
    path = config.safety_path
    path.parent.mkdir(parents=True, exist_ok=True)
    attacks: list[tuple[str, float]] = []
    if config.run_crash_safety_tests:
        attacks.append(("crash", CRASH_ATTACK_FRAC))
    if config.run_byzantine_safety_tests:
        attacks.append(("byz", BYZANTINE_ATTACK_FRAC))
    with open(path, "a", encoding="utf-8", newline="") as out:
        writer = csv.writer(out, lineterminator="\n")
        for kind, attack_frac in attacks:
            for n, k in config.shred_combinations:
                logger.info(
                    "%s safety test (%s=%s, n=%d, k=%d)", test_name, kind, attack_frac, n, k
                )
                tester = RotorSafetyTest(
                    validators,
                    rotor_sampler,
                    n,
                    k,
                    config.safety_tasks,
                    config.safety_rounds_per_task,
                )
                tester.run(test_name, attack_frac, writer)
    return [path]


def run_tests(
    test_name: str,
    validators: Sequence[ValidatorInfo],
    validators_with_ping_data: Sequence[tuple[ValidatorInfo, PingServer]],
    leader_sampler: SamplingStrategy,
    rotor_sampler: SamplingStrategy,
    ping_leader_sampler: SamplingStrategy,
    ping_rotor_sampler: SamplingStrategy,
    get_ping: PingFunction,
    config: SimulationConfig | None = None,
) -> list[Path]:
    """Run every enabled simulation for one test and return the files written.

    ``test_name`` has the form ``<stake distribution>-<sampling strategy>``.
    The bandwidth and safety tests use ``validators`` with ``leader_sampler``
    and ``rotor_sampler``; the latency tests use the validators that have
    ping data with ``ping_leader_sampler`` and ``ping_rotor_sampler``.
    """
    config = config if config is not None else SimulationConfig()
    paths: list[Path] = []
    if config.run_bandwidth_tests:
        paths += _run_bandwidth_tests(
            test_name, validators, leader_sampler, rotor_sampler, config
        )
    if config.run_latency_tests:
        paths += _run_latency_tests(
            test_name,
            validators_with_ping_data,
            ping_leader_sampler,
            ping_rotor_sampler,
            get_ping,
            config,
        )
    if config.run_safety_tests:
        paths += _run_safety_tests(test_name, validators, rotor_sampler, config)
    return paths