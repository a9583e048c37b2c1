import pytest

from backend import ConnectionRegistry, RoomTable
from presence import PresenceNotifier
from reaper import IdleReaper
from signaling import SignalingRouter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry(clock: FakeClock) -> ConnectionRegistry:
    return ConnectionRegistry(clock=clock)


@pytest.fixture()
def rooms() -> RoomTable:
    return RoomTable(capacity=2)


@pytest.fixture()
def presence(registry: ConnectionRegistry, rooms: RoomTable) -> PresenceNotifier:
    return PresenceNotifier(registry, rooms)


@pytest.fixture()
def relay(registry: ConnectionRegistry, rooms: RoomTable, presence: PresenceNotifier) -> SignalingRouter:
    return SignalingRouter(registry, rooms, presence)


@pytest.fixture()
def reaper(registry: ConnectionRegistry, rooms: RoomTable, presence: PresenceNotifier) -> IdleReaper:
    return IdleReaper(registry, rooms, presence, interval=300, threshold=1800)