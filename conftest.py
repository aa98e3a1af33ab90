# Make `import chaos_proxy` work when tests run from a source checkout.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)


class ScriptedRandom:
    """Random source returning a fixed sequence from ``randrange``."""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def randrange(self, stop: int) -> int:
        value = self.values[self.calls % len(self.values)]
        self.calls += 1
        return value


@pytest.fixture
def scripted_random():
    return ScriptedRandom
