"""
Failure decisions.

All three checks use the same uniform-percentage policy: a rate ``p`` in
[0, 100] fails when a draw from ``randrange(100)`` is below ``p``. The
transfer check runs once per relayed chunk, so a body of N chunks arrives
intact with probability ``(1 - p/100) ** N``.
"""

import os
import random
from typing import Optional, Protocol, Tuple

from chaos_proxy.failures.prefix_table import PrefixFailureTable


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


def _seeded_random() -> random.Random:
    return random.Random(int.from_bytes(os.urandom(8), "big"))


class FailureDecision:
    def __init__(
        self,
        prefix_table: Optional[PrefixFailureTable] = None,
        rng: Optional[RandomSource] = None,
    ):
        self.prefix_table = prefix_table or PrefixFailureTable()
        self.rng = rng if rng is not None else _seeded_random()

    def should_fail(self, rate: int) -> bool:
        """Return True with probability ``rate / 100``."""
        if rate <= 0:
            return False
        if rate >= 100:
            return True
        return self.rng.randrange(100) < rate

    def should_fail_by_prefix(self, path: str) -> Tuple[int, bool]:
        """Return the configured status code if ``path`` hits a failing prefix."""
        if not self.prefix_table:
            return 0, False
        return self.prefix_table.match(path)

    def should_abort_transfer(self, rate: int) -> bool:
        """Per-chunk check made while relaying a response body."""
        return self.should_fail(rate)
