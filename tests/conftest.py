from datetime import datetime

import pytest

from tests.helpers import FakeClock, FlakyStorage


@pytest.fixture
def clock():
    # 2026-10-18 is a Sunday
    return FakeClock(datetime(2026, 10, 18, 12, 0))


@pytest.fixture
def storage():
    return FlakyStorage()
