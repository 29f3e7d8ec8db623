# Import models so Base metadata is aware of them
from .lobby import LobbyRecord, PlayerRecord, QuestionRecord, AnswerRecord  # noqa: F401
