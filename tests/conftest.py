import asyncio
import inspect
import os
import sys
from pathlib import Path

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")

import logfire  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from main import create_app  # noqa: E402
from services.credentials import InMemoryCredentialStore  # noqa: E402
from utils.settings import Settings  # noqa: E402

logfire.configure(send_to_logfire=False, console=False)

TEST_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"
START_TIME = 1_700_000_000.0


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


class FakeClock:
    """Manually advanced clock for expiry and refill tests."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        secret_key=TEST_SECRET,
        general_rate_limit_per_second=1000,
        general_rate_limit_burst=1000,
        auth_rate_limit_per_second=100,
        auth_rate_limit_burst=100,
        storage_workers=4,
    )


@pytest.fixture
def token_clock():
    return FakeClock()


@pytest.fixture
def rate_clock():
    return FakeClock(0.0)


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def app(settings, store, token_clock, rate_clock):
    return create_app(settings, store=store, token_clock=token_clock, rate_limit_clock=rate_clock)


NATIVE = {"X-Client-Type": "native"}
