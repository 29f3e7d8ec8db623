from __future__ import annotations

import random
from typing import Optional

from quizlobby.core.db_services import LobbyStore
from quizlobby.core.logging import get_logger
from quizlobby.modules.lobby.errors import PinAllocationError

logger = get_logger(__name__)

PIN_MIN = 10000
PIN_MAX = 99999


class PinAllocator:
    """Picks random 5-digit PINs not held by any unfinished lobby."""

    def __init__(
        self,
        store: LobbyStore,
        *,
        max_attempts: int = 10,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.max_attempts = max(1, int(max_attempts))
        self._rng = rng or random.SystemRandom()

    def candidate(self) -> str:
        return str(self._rng.randint(PIN_MIN, PIN_MAX))

    async def allocate(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            pin = self.candidate()
            if not await self.store.pin_in_use(pin):
                return pin
            logger.debug("PIN %s taken (attempt %d)", pin, attempt)
        logger.error("PIN allocation exhausted after %d attempts", self.max_attempts)
        raise PinAllocationError(self.max_attempts)
