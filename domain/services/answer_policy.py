from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from domain.models import FormQuestion, OperatorInstruction, ReferenceData
from domain.ports import AnswerRepositoryPort, LoggerPort


_HEURISTIC_WILLINGNESS_KEYWORDS = [
    "willing to", "are you comfortable", "comfortable with", "comfortable working",
    "open to", "able to commute", "agree to relocate", "willing to relocate",
    "prepared to", "happy to", "available to travel", "able to travel",
    "work on-site", "work onsite", "work in office", "work from the office",
]


class AnswerSource(str, Enum):
    REFERENCE = "reference"
    OPERATOR_ANSWER = "operator_answer"
    INSTRUCTION = "instruction"
    WILLINGNESS_DEFAULT = "willingness_default"
    MISSING = "missing"


@dataclass(frozen=True)
class AnswerDecision:
    value: str | None
    source: AnswerSource
    ambiguous: bool = False

    @property
    def resolved(self) -> bool:
        return self.value is not None


def normalize_key(value: str) -> str:
    """``"What is your Citizenship?"`` -> ``"what_is_your_citizenship"``."""
    return "_".join(re.findall(r"[a-z0-9]+", value.casefold()))


def is_willingness_question(question: FormQuestion) -> bool:
    lower = question.label.casefold()
    return any(kw in lower for kw in _HEURISTIC_WILLINGNESS_KEYWORDS)


class AnswerResolver:
    """
    Chooses an answer for one audited question.

    Willingness questions default to yes unless an operator instruction says
    otherwise. Factual questions are answered only from reference data or an
    answer the operator already gave; otherwise the decision is unresolved
    and the caller asks the operator.
    """

    def __init__(
        self,
        *,
        logger: LoggerPort,
        answers: AnswerRepositoryPort | None = None,
    ) -> None:
        self._logger = logger
        self._answers = answers

    def resolve(self, question: FormQuestion, reference: ReferenceData) -> AnswerDecision:
        if is_willingness_question(question):
            return self._resolve_willingness(question, reference)

        fact = self._lookup_fact(question, reference)
        if fact is not None:
            return AnswerDecision(fact, AnswerSource.REFERENCE)
        if self._answers is not None:
            stored = self._answers.get_answer(question.question_id)
            if stored:
                return AnswerDecision(stored, AnswerSource.OPERATOR_ANSWER)
        return AnswerDecision(None, AnswerSource.MISSING)

    def remember(self, question_id: str, text: str) -> None:
        if self._answers is not None:
            self._answers.save_answer(question_id, text)

    # -- willingness --------------------------------------------------------

    def _resolve_willingness(
        self,
        question: FormQuestion,
        reference: ReferenceData,
    ) -> AnswerDecision:
        relevant = [
            ins
            for ins in self._instructions(reference)
            if ins.question_id is None or ins.question_id == question.question_id
        ]
        if not relevant:
            return AnswerDecision(_yes_no(True), AnswerSource.WILLINGNESS_DEFAULT)

        winner = relevant[-1]
        ambiguous = any(ins.affirmative != winner.affirmative for ins in relevant)
        if ambiguous:
            self._logger.warning(
                "conflicting_instructions",
                question_id=question.question_id,
                winner_sequence=winner.sequence,
                affirmative=winner.affirmative,
            )
        return AnswerDecision(_yes_no(winner.affirmative), AnswerSource.INSTRUCTION, ambiguous)

    def _instructions(self, reference: ReferenceData) -> list[OperatorInstruction]:
        """Oldest first. Instructions stored during a run postdate the reference file."""
        instructions = sorted(reference.instructions, key=lambda ins: ins.sequence)
        if self._answers is not None:
            instructions.extend(sorted(self._answers.list_instructions(), key=lambda ins: ins.sequence))
        return instructions

    # -- facts --------------------------------------------------------------

    @staticmethod
    def _lookup_fact(question: FormQuestion, reference: ReferenceData) -> str | None:
        facts = {normalize_key(k): v for k, v in reference.facts.items() if str(v).strip()}
        if not facts:
            return None
        for key in (normalize_key(question.question_id), normalize_key(question.label)):
            if key in facts:
                return facts[key]

        # A fact key may name the subject of a longer label, word for word.
        label = f"_{normalize_key(question.label)}_"
        contained = [k for k in facts if f"_{k}_" in label]
        if not contained:
            return None
        return facts[max(contained, key=len)]


def _yes_no(affirmative: bool) -> str:
    return "Yes" if affirmative else "No"
