import logging
import os
from typing import Any, MutableMapping, Optional


DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "lobby=%(lobby)s player=%(player)s role=%(role)s | %(message)s"
)

CONTEXT_FIELDS = ("lobby", "player", "role")


class ContextFilter(logging.Filter):
    """Fills lobby/player/role on records that were logged without them."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


class LobbyLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with a fixed lobby context; per-call `extra` wins."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install (or replace) the quizlobby stream handler on the root logger."""
    resolved_level = getattr(logging, (level or DEFAULT_LEVEL), logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved_level)

    # Only our own handler is swapped; handlers added by the host process stay
    for h in list(root.handlers):
        if getattr(h, "_quizlobby", False):
            root.removeHandler(h)

    handler = logging.StreamHandler()
    handler._quizlobby = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.addFilter(ContextFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)


def lobby_logger(
    name: str,
    lobby: Any,
    *,
    player: Any = "-",
    role: str = "-",
) -> LobbyLoggerAdapter:
    """Logger bound to one lobby, used by per-client code that logs a lot."""
    return LobbyLoggerAdapter(get_logger(name), {"lobby": lobby, "player": player, "role": role})
