"""AI question generation for lobbies.

Provides:
- async generate_ai_questions(topics, difficulty, n) -> list[QuestionDraft]
- normalize_drafts(...): repair or drop malformed model output

Uses pydantic-ai with the provider chosen in settings.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from quizlobby.core.config import Settings, settings as default_settings
from quizlobby.modules.lobby.models import Difficulty, QuestionDraft

WRONG_ANSWER_COUNT = 3


class QuestionDraftSet(BaseModel):
    """Structured output for MCQ generation."""

    questions: list[QuestionDraft] = Field(default_factory=list)


def _build_google_model(settings: Settings):
    """Build Google Gemini model for pydantic-ai (lazy import)."""
    from pydantic_ai.models.google import GoogleModel
    from pydantic_ai.providers.google import GoogleProvider

    provider = GoogleProvider(api_key=settings.gemini_api_key)
    return GoogleModel("gemini-2.5-flash", provider=provider)


def _build_openrouter_model(settings: Settings):
    """Build OpenRouter model via OpenAI-compatible provider (lazy import)."""
    from pydantic_ai.models.openai import OpenAIChatModel
    from pydantic_ai.providers.openai import OpenAIProvider

    if not settings.openrouter_api_key:
        raise RuntimeError(
            "OpenRouter API key not configured. Set OPENROUTER_API_KEY in your environment."
        )

    provider = OpenAIProvider(
        api_key=settings.openrouter_api_key,
        base_url="https://openrouter.ai/api/v1",
    )
    return OpenAIChatModel(settings.openrouter_model, provider=provider)


def _build_model_by_settings(settings: Settings):
    provider = (settings.model_provider or "google").lower()
    if provider == "openrouter":
        return _build_openrouter_model(settings)
    return _build_google_model(settings)


SYSTEM_PROMPT = (
    "You are an expert quiz author for a fast-paced multiplayer party quiz. "
    "Return a JSON object that validates as QuestionDraftSet: {questions}. "
    "Each question has: {question_text, correct_answer, wrong_answers}. Rules: "
    "- Create exactly N questions (provided in the instruction). "
    "- wrong_answers has EXACTLY 3 plausible but incorrect answers. "
    "- All four answers are short, plain text and distinct from each other. "
    "- Avoid markdown; do not include code fences."
)

_DIFFICULTY_HINTS = {
    Difficulty.MILD: "easy, well-known facts",
    Difficulty.SPICY: "medium difficulty, needs some knowledge",
    Difficulty.EXTRA_SPICY: "hard, for enthusiasts",
}


def _build_instruction(topics: Iterable[str], difficulty: Difficulty, n: int) -> str:
    return (
        "Create N multiple-choice questions spread across the topics below. "
        "Return only the JSON object.\n\n"
        f"Topics: {', '.join(topics)}\n"
        f"Difficulty: {_DIFFICULTY_HINTS[difficulty]}\n"
        f"N: {int(n)}"
    )


def normalize_drafts(drafts: Iterable[QuestionDraft], n: int) -> list[QuestionDraft]:
    """Trim to n and keep only questions with one answer and three distinct wrong ones."""
    out: list[QuestionDraft] = []
    for d in drafts:
        text = (d.question_text or "").strip()
        correct = (d.correct_answer or "").strip()
        if not text or not correct:
            continue
        wrong: list[str] = []
        for w in d.wrong_answers or []:
            w = str(w).strip()
            if w and w != correct and w not in wrong:
                wrong.append(w)
        if len(wrong) < WRONG_ANSWER_COUNT:
            # Skip malformed
            continue
        out.append(
            QuestionDraft(
                question_text=text,
                correct_answer=correct,
                wrong_answers=wrong[:WRONG_ANSWER_COUNT],
            )
        )
        if len(out) >= n:
            break
    return out


async def generate_ai_questions(
    topics: list[str],
    difficulty: Difficulty,
    n: int = 10,
    *,
    settings: Optional[Settings] = None,
) -> list[QuestionDraft]:
    """Generate MCQs using the configured model provider."""
    model = _build_model_by_settings(settings or default_settings)
    agent: Agent[None, QuestionDraftSet] = Agent[None, QuestionDraftSet](
        model=model,
        output_type=QuestionDraftSet,
        system_prompt=SYSTEM_PROMPT,
        retries=2,
    )
    res = await agent.run(_build_instruction(topics, difficulty, n))
    return normalize_drafts(res.output.questions, n)
