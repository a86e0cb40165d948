"""
Question Bank accessor and per-session materialization.

Handles:
- Answer-key parsing (comma-joined storage format)
- Answer-key resolution against the option list, so keys name the
  semantic option rather than a position
- Reproducible shuffles of question order and option order

Shuffles never touch module-level random state: every session carries its
own seed and builds its own ``random.Random``.
"""

from __future__ import annotations

import hashlib
import random
import secrets
import string
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import TypeVar

from loguru import logger

from assessment.core.errors import NoQuestionsFound
from assessment.db.protocols import QuestionSource
from assessment.quiz.configuration import QuizConfiguration
from assessment.quiz.models import Question, QuestionType

T = TypeVar("T")

TRUE_FALSE_OPTIONS = ("True", "False")
_LETTERS = string.ascii_uppercase


def split_answer_key(raw: str | Sequence[str] | None) -> list[str]:
    """Split a stored answer key ("A, C" or ["A", "C"]) into trimmed tokens."""
    if raw is None:
        return []
    tokens = raw.split(",") if isinstance(raw, str) else list(raw)
    return [t.strip() for t in tokens if t and t.strip()]


def resolve_answer_key(tokens: Iterable[str], options: Sequence[str]) -> tuple[str, ...]:
    """
    Resolve answer-key tokens to option strings.

    A token equal to an option names that option. Otherwise a letter (A-Z)
    or a 0-based index names the option at that stored position. Anything
    else (short answers) is kept verbatim.
    """
    resolved: list[str] = []
    for token in tokens:
        value = token
        if options and token not in options:
            if len(token) == 1 and token.upper() in _LETTERS and _LETTERS.index(token.upper()) < len(options):
                value = options[_LETTERS.index(token.upper())]
            elif token.isdigit() and int(token) < len(options):
                value = options[int(token)]
        if value not in resolved:
            resolved.append(value)
    return tuple(resolved)


def build_question(
    id: str,
    quiz_id: str,
    question: str,
    question_type: str | QuestionType,
    options: Sequence[str] | None = None,
    correct_answer: str | Sequence[str] | None = None,
    points: int = 1,
    explanation: str | None = None,
    time_limit: int | None = None,
    order_index: int = 0,
    module_id: str | None = None,
    case_sensitive: bool = True,
) -> Question:
    """Build a Question from storage values, resolving its answer key."""
    qtype = QuestionType(question_type)
    opts = tuple(options or ())
    if qtype is QuestionType.TRUE_FALSE and not opts:
        opts = TRUE_FALSE_OPTIONS
    return Question(
        id=id,
        quiz_id=quiz_id,
        question=question,
        question_type=qtype,
        options=opts,
        correct_answer=resolve_answer_key(split_answer_key(correct_answer), opts),
        points=points,
        explanation=explanation,
        time_limit=time_limit,
        order_index=order_index,
        module_id=module_id,
        case_sensitive=case_sensitive,
    )


# ========================================
# Seeded shuffles
# ========================================


def create_seed(seed: str | int | None = None) -> int:
    """Create a reproducible integer seed from a string or int; fresh when None."""
    if seed is None:
        return secrets.randbits(64)
    if isinstance(seed, int):
        return seed
    hash_bytes = hashlib.sha256(str(seed).encode()).digest()
    return int.from_bytes(hash_bytes[:8], "big")


def shuffled(items: Sequence[T], rng: random.Random) -> list[T]:
    """Uniform (Fisher-Yates) shuffle of a copy of ``items``."""
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def shuffle_options(question: Question, rng: random.Random) -> Question:
    """
    Shuffle a question's options.

    The answer key holds option strings, so it still names the same options
    after the shuffle; ``option_order`` records where each displayed option
    came from.
    """
    order = shuffled(range(len(question.options)), rng)
    return replace(
        question,
        options=tuple(question.options[i] for i in order),
        option_order=tuple(order),
    )


def materialize(
    questions: Sequence[Question],
    configuration: QuizConfiguration,
    seed: int,
) -> list[Question]:
    """
    Apply the configuration's ordering rules to a quiz's questions.

    Question order and each question's option order are shuffled
    independently; the same seed always yields the same permutation.
    """
    ordered = sorted(questions, key=lambda q: q.order_index)

    if configuration.randomize_questions:
        ordered = shuffled(ordered, random.Random(seed))

    if configuration.randomize_answers:
        ordered = [
            shuffle_options(q, random.Random(f"{seed}:{q.id}"))
            if q.question_type is QuestionType.MULTIPLE_CHOICE and len(q.options) > 1
            else q
            for q in ordered
        ]

    return ordered


class QuestionBank:
    """Read-only access to a quiz's question set."""

    def __init__(self, source: QuestionSource):
        self.source = source

    async def load(self, quiz_id: str) -> list[Question]:
        """
        Load the questions of a quiz in ``order_index`` order.

        Raises:
            NoQuestionsFound: the quiz has zero questions
        """
        questions = await self.source.list_questions(quiz_id)
        if not questions:
            logger.warning("Quiz {} has no questions", quiz_id)
            raise NoQuestionsFound(quiz_id)
        return sorted(questions, key=lambda q: q.order_index)
