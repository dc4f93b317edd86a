import pytest

from fakes import FakeRemote, ManualTimers


@pytest.fixture()
def timers():
    return ManualTimers()


@pytest.fixture()
def remote():
    return FakeRemote()
