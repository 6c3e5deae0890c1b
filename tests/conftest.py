import pytest

import RomID


@pytest.fixture(autouse=True)
def normal_log_level():
    RomID.set_log_level(RomID.LOG_NORMAL)
    yield
    RomID.set_log_level(RomID.LOG_NORMAL)
