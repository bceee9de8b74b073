import socket

import pytest

from roku_simulator import RokuSimulator
from uc_intg_uniremote.client import RokuControlClient


@pytest.fixture
async def simulator():
    sim = RokuSimulator(host="127.0.0.1", port=0)
    await sim.start()
    yield sim
    await sim.stop()


@pytest.fixture
def roku_client(simulator: RokuSimulator) -> RokuControlClient:
    return RokuControlClient(port=simulator.port, timeout=1.0, power_on_timeout=1.0)


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
