import asyncio
import random

import pytest

from alpenglow.all2all import (
    All2All,
    RobustAll2All,
    TrivialAll2All,
    ValidatorInfo,
)


class LinkDown(Exception):
    pass


class SimulatedCore:
    def __init__(self, packet_loss: float, seed: int = 7) -> None:
        self.packet_loss = packet_loss
        self.rng = random.Random(seed)
        self.queues: dict[str, asyncio.Queue] = {}

    def join(self, address: str) -> "SimulatedNetwork":
        self.queues[address] = asyncio.Queue()
        return SimulatedNetwork(self, address)


class SimulatedNetwork:
    def __init__(self, core: SimulatedCore, address: str) -> None:
        self.core = core
        self.address = address
        self.sent = 0

    async def send(self, msg, address):
        self.sent += 1
        if self.core.rng.random() < self.core.packet_loss:
            return
        await self.core.queues[address].put(msg)

    async def receive(self):
        return await self.core.queues[self.address].get()


class FailingNetwork:
    async def send(self, msg, address):
        raise LinkDown(address)

    async def receive(self):
        raise LinkDown("receive")


def make_validators(count: int) -> list[ValidatorInfo]:
    return [
        ValidatorInfo(id=i, stake=1, all2all_address=str(i)) for i in range(count)
    ]


async def run_broadcast(factory, packet_loss: float) -> list:
    core = SimulatedCore(packet_loss)
    validators = make_validators(20)
    nets = [core.join(v.all2all_address) for v in validators]
    sender = factory(validators, nets[0])
    receivers = [factory(validators, net) for net in nets[1:]]
    await sender.broadcast("ping")
    return await asyncio.wait_for(
        asyncio.gather(*(r.receive() for r in receivers)), timeout=5
    )


@pytest.mark.asyncio
async def test_trivial_simple_broadcast():
    received = await run_broadcast(TrivialAll2All, 0.0)
    assert received == ["ping"] * 19


@pytest.mark.asyncio
@pytest.mark.parametrize("packet_loss", [0.0, 0.2, 0.9])
async def test_robust_broadcast_under_packet_loss(packet_loss):
    received = await run_broadcast(RobustAll2All, packet_loss)
    assert received == ["ping"] * 19


@pytest.mark.asyncio
async def test_trivial_sends_once_per_validator():
    core = SimulatedCore(0.0)
    validators = make_validators(5)
    nets = [core.join(v.all2all_address) for v in validators]
    sender = TrivialAll2All(validators, nets[0])
    await sender.broadcast("ping")
    assert nets[0].sent == len(validators)
    assert all(core.queues[v.all2all_address].qsize() == 1 for v in validators)


@pytest.mark.asyncio
async def test_robust_sends_configured_copies():
    core = SimulatedCore(0.0)
    validators = make_validators(4)
    nets = [core.join(v.all2all_address) for v in validators]
    sender = RobustAll2All(validators, nets[0], retransmits=3)
    await sender.broadcast("ping")
    assert nets[0].sent == 3 * len(validators)
    receiver = RobustAll2All(validators, nets[2], retransmits=3)
    copies = [await receiver.receive() for _ in range(3)]
    assert copies == ["ping"] * 3
    assert sender.handle_retransmits() == 0


def test_robust_rejects_zero_retransmits():
    with pytest.raises(ValueError):
        RobustAll2All(make_validators(1), FailingNetwork(), retransmits=0)


@pytest.mark.asyncio
@pytest.mark.parametrize("cls", [TrivialAll2All, RobustAll2All])
async def test_network_errors_propagate(cls):
    instance = cls(make_validators(2), FailingNetwork())
    with pytest.raises(LinkDown):
        await instance.broadcast("ping")
    with pytest.raises(LinkDown):
        await instance.receive()


def test_all2all_is_abstract():
    with pytest.raises(TypeError):
        All2All()