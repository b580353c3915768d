"""
Pytest Configuration and Fixtures
"""

import os
from datetime import datetime, timezone

import pytest

# 让 deps 使用内存后端
os.environ["STORAGE"] = "memory"

from application.billing_engine import BillingEngine
from application.clock import ManualClock
from application.connectivity_monitor import ConnectivityMonitor
from domain.station import MenuItem, Station, StationStatus
from infrastructure.memory_store import InMemorySessionStore, InMemoryStationRegistry


START = datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)

PS1_MAC = "AA:BB:CC:00:00:01"
PS2_MAC = "AA:BB:CC:00:00:02"
PS3_MAC = "AA:BB:CC:00:00:03"


class RecordingNotifier:
    """Collects published events; can be told to blow up."""

    def __init__(self):
        self.events = []
        self.fail = False

    def publish(self, event):
        if self.fail:
            raise RuntimeError("display offline")
        self.events.append(event)

    def types(self):
        return [event.event_type.value for event in self.events]


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def registry():
    registry = InMemoryStationRegistry()
    registry.save_station(Station("PS-1", PS1_MAC, 2000, 3500, name="PS5 Room 1", sort_order=1))
    registry.save_station(Station("PS-2", PS2_MAC, 2000, 3500, name="PS5 Room 2", sort_order=2))
    registry.save_station(Station("PS-3", PS3_MAC, 1500, None, name="PS4 Corner", sort_order=3))
    registry.save_station(
        Station("PS-9", "aa-bb-cc-00-00-09", 2000, status=StationStatus.MAINTENANCE, sort_order=9)
    )
    registry.save_menu_item(MenuItem("tea", "Tea", 1000))
    registry.save_menu_item(MenuItem("cola", "Cola", 1500))
    registry.save_menu_item(MenuItem("cake", "Cake", 2500, category="snacks", is_available=False))
    return registry


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(registry, store, clock, notifier):
    return BillingEngine(registry, store, clock=clock, notifier=notifier)


@pytest.fixture
def monitor(engine):
    return ConnectivityMonitor(engine)
