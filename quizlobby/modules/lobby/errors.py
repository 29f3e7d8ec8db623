from __future__ import annotations


class StoreError(Exception):
    """The store failed to read or write."""


class DuplicateKeyError(StoreError):
    """An insert hit a unique constraint."""

    def __init__(self, constraint: str | None = None) -> None:
        super().__init__(f"duplicate key: {constraint or 'unknown'}")
        self.constraint = constraint


class LobbyError(Exception):
    pass


class PinAllocationError(LobbyError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Failed to generate unique PIN after {attempts} attempts")
        self.attempts = attempts


class LobbyNotFoundError(LobbyError):
    def __init__(self, ref: object) -> None:
        super().__init__("Lobby not found. Please check the PIN and try again.")
        self.ref = ref


class PlayerNotFoundError(LobbyError):
    pass


class QuestionNotFoundError(LobbyError):
    pass


class LobbyClosedError(LobbyError):
    def __init__(self, status: str) -> None:
        super().__init__("This game has already started or finished.")
        self.status = status


class InvalidTransitionError(LobbyError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move lobby from {current} to {target}")
        self.current = current
        self.target = target


class NotEnoughPlayersError(LobbyError):
    def __init__(self, have: int, need: int) -> None:
        super().__init__(f"You need at least {need} players to start the game.")
        self.have = have
        self.need = need


class NotHostError(LobbyError):
    def __init__(self) -> None:
        super().__init__("Only the host can do that.")
