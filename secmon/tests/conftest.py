from typing import Any, Dict, List

import pytest

from secmon.clock import ManualClock
from secmon.config import MonitorConfig
from secmon.monitor import RequestMonitor


@pytest.fixture()
def clock():
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture()
def config(tmp_path):
    return MonitorConfig(data_dir=str(tmp_path / "observability"))


@pytest.fixture()
def notified() -> List[Dict[str, Any]]:
    return []


@pytest.fixture()
def monitor(config, clock, notified):
    mon = RequestMonitor(config, clock=clock, notifier=notified.append, async_notify=False)
    yield mon
    mon.close()

