import asyncio
import inspect
import os
import sys
from pathlib import Path

os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_CACHE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sessionguard.service.auth import AuthService  # noqa: E402
from sessionguard.service.brute_force import BruteForceGuard  # noqa: E402
from sessionguard.service.runtime import reset_runtime_for_tests  # noqa: E402
from sessionguard.service.session_cache import SessionCache  # noqa: E402
from sessionguard.service.tokens import TokenService  # noqa: E402
from sessionguard.storage.memory import MemoryAccountStore, MemoryCache  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class FakeClock:
    """Manually advanced clock shared by the cache and the services."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def tokens():
    return TokenService(TEST_SECRET, issuer="sessionguard", audience="sessionguard")


@pytest.fixture
def sessions(cache, tokens):
    return SessionCache(cache, tokens)


@pytest.fixture
def accounts():
    return MemoryAccountStore()


@pytest.fixture
def guard(cache, sessions, accounts, clock):
    return BruteForceGuard(
        cache,
        sessions,
        accounts,
        max_failures=6,
        base_cooldown_seconds=30,
        cooldown_exponent_cap=5,
        failure_window_seconds=1260,
        clock=clock,
    )


@pytest.fixture
def auth_service(tokens, sessions, guard, accounts):
    return AuthService(tokens, sessions, guard, accounts)


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


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
