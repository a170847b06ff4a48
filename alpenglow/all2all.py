"""Direct all-to-all broadcast protocols.

:class:`All2All` is a small interface for broadcasting messages to every known
validator and for receiving messages from any of them. Two implementations
are provided:

- :class:`TrivialAll2All` sends each message once, best effort.
- :class:`RobustAll2All` sends every message many times to survive loss.

Which delivery guarantees hold also depends on the underlying network, since
both implementations work over any object following the :class:`Network`
protocol.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

DEFAULT_RETRANSMITS = 1000


@dataclass(frozen=True)
class ValidatorInfo:
    """Public information about a single validator."""

    id: int
    stake: int
    pubkey: Any = None
    voting_pubkey: Any = None
    all2all_address: str = ""
    disseminator_address: str = ""
    repair_address: str = ""


class Network(Protocol):
    """Transport used by the all-to-all protocols."""

    async def send(self, msg: Any, address: str) -> None:
        """Send ``msg`` to ``address``."""

    async def receive(self) -> Any:
        """Wait for and return the next incoming message."""


class All2All(abc.ABC):
    """Abstraction for a direct all-to-all communication protocol."""

    @abc.abstractmethod
    async def broadcast(self, msg: Any) -> None:
        """Broadcast ``msg`` to all known validators.

        Errors raised by the underlying network propagate to the caller.
        """

    @abc.abstractmethod
    async def receive(self) -> Any:
        """Return the next message received from any validator."""


class TrivialAll2All(All2All):
    """Stateless best-effort broadcast: every message is sent exactly once."""

    def __init__(self, validators: Sequence[ValidatorInfo], network: Network) -> None:
        self.validators = list(validators)
        self.network = network

    async def broadcast(self, msg: Any) -> None:
        for validator in self.validators:
            await self.network.send(msg, validator.all2all_address)

    async def receive(self) -> Any:
        return await self.network.receive()


class RobustAll2All(All2All):
    """Broadcast that retransmits every message to every validator.

    Each message is sent ``retransmits`` times to each recipient, so it
    survives heavy packet loss on an unreliable network.
    """

    def __init__(
        self,
        validators: Sequence[ValidatorInfo],
        network: Network,
        retransmits: int = DEFAULT_RETRANSMITS,
    ) -> None:
        if retransmits < 1:
            raise ValueError("retransmits must be at least 1")
        self.validators = list(validators)
        self.network = network
        self.retransmits = retransmits

    def handle_retransmits(self) -> int:
        """Return the number of retransmits still pending.

        All copies are sent eagerly by :meth:`broadcast`, so nothing is ever
        left pending once a broadcast has returned.
        """
        return 0

    async def broadcast(self, msg: Any) -> None:
        for validator in self.validators:
            for _ in range(self.retransmits):
                await self.network.send(msg, validator.all2all_address)

    async def receive(self) -> Any:
        return await self.network.receive()