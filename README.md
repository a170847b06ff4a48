# alpenglow

Building blocks and simulations for the Alpenglow consensus protocol. The
package needs nothing beyond the Python standard library.

## Contents

- `alpenglow.all2all`: all-to-all broadcast. It works over any asynchronous
  network object that offers the coroutines `send(msg, address)` and
  `receive()`.
  - `ValidatorInfo` holds a validator's id, stake, keys and addresses.
  - `TrivialAll2All` sends each message once to every validator's
    `all2all_address`.
  - `RobustAll2All` sends each message `retransmits` times (1000 by default)
    to every validator, so that it gets through heavy packet loss.
- `alpenglow.bandwidth`: `WorkloadTest` counts the shreds each validator sends
  when slices go out via Rotor. `BandwidthTest` adds a bandwidth per
  validator. From that it derives the highest supported goodput
  (`supported_goodput()`) and the bandwidth use, grouped into bins of 13
  validators (`binned_usage()`). Both results can be written as CSV rows.
- `alpenglow.latency`: `LatencyTest` estimates stake-weighted percentile
  latencies for direct delivery, Rotor, notarization and fast, slow and
  overall finalization. It works from ping times between `PingServer`
  locations. `LatencyStats` collects the per-percentile averages.
- `alpenglow.rotor_safety`: `RotorSafetyTest` estimates how likely it is
  that crashed or Byzantine validators leave a slice impossible to recover.
  It tries three adversary strategies (random, smallest and largest
  validators) and reports the worst.
- `alpenglow.simulations`: `run_tests` runs the enabled simulations for one
  test and writes their CSV files. `SimulationConfig` chooses which
  simulations run, their parameters and the output directory. The module
  also provides the helpers `prepare_output_files`, `leader_cities` and
  `find_leader_in_city`.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Broadcasting

```python
from alpenglow.all2all import TrivialAll2All, ValidatorInfo

validators = [ValidatorInfo(id=i, stake=1, all2all_address=str(i)) for i in range(4)]
all2all = TrivialAll2All(validators, network)

await all2all.broadcast(message)
incoming = await all2all.receive()
```

Errors raised by `network` reach the caller unchanged.

## Simulations

Each simulation takes samplers. A sampler is any object with two methods:

- `sample(rng)` returns one validator id.
- `sample_multiple(k, rng)` returns a list of `k` validator ids.

Validator ids have to be `0, 1, 2, ...`. Pass a seeded `random.Random` as
`rng` when you need results you can reproduce.

```python
import random
from alpenglow.bandwidth import BandwidthTest

test = BandwidthTest(
    validators,
    1_000_000_000,                      # leader bandwidth in bits/s
    [1_000_000_000] * len(validators),  # one bandwidth per validator
    leader_sampler,
    rotor_sampler,
    64,                                 # shreds per slice
    1200,                               # payload bytes per shred
)
test.run_multiple(10_000, random.Random(1))
print(test.supported_goodput())
```

`LatencyTest` also takes a `get_ping(server_a, server_b)` function. It
returns the one-way latency between two ping server ids, or `None` if there
is no data, in which case the test raises `ValueError`. `run_many` and
`run_many_with_leader` write a CSV file with one row per stake percentile
from 1 to 100 and return its path.

`run_tests` needs a test name of the form
`<stake distribution>-<sampling strategy>`. The stake distribution is
`solana`, `sui`, `5hubs` or `stock_exchanges`; it selects the leader cities
for the fixed-leader latency runs. The bandwidth tests also need
`SimulationConfig.max_data_per_shred`.

## What this package does not do

- It has no network transport. Any object with `send` and `receive`
  coroutines has to be supplied for the broadcast classes.
- It has no sampling strategies (uniform, stake-weighted and so on), no
  stake distributions and no ping measurements. All of these are passed in
  by the caller.
- It has no command-line program. Simulations are run by calling
  `run_tests` or the test classes from Python.