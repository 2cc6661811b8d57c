from __future__ import annotations

from domain.models import FormQuestion, OperatorInstruction, ReferenceData
from domain.services import AnswerResolver, AnswerSource, is_willingness_question
from domain.services.answer_policy import normalize_key
from test.mocks import InMemoryAnswerRepository, InMemoryLogger

RELOCATE = FormQuestion("relocate", "Are you willing to relocate to Berlin?", kind="radio")
COMMUTE = FormQuestion("commute", "Are you able to commute to the office three days a week?", kind="radio")
CITIZENSHIP = FormQuestion("q_17", "What is your citizenship?", kind="text")
SALARY = FormQuestion("salary", "Expected annual salary", kind="text")


def _resolver(repo: InMemoryAnswerRepository | None = None) -> tuple[AnswerResolver, InMemoryLogger]:
    logger = InMemoryLogger()
    return AnswerResolver(logger=logger, answers=repo), logger


def test_normalize_key() -> None:
    assert normalize_key("What is your Citizenship?") == "what_is_your_citizenship"
    assert normalize_key("  Notice-period (weeks) ") == "notice_period_weeks"


def test_willingness_detection() -> None:
    assert is_willingness_question(RELOCATE)
    assert is_willingness_question(COMMUTE)
    assert not is_willingness_question(CITIZENSHIP)
    assert not is_willingness_question(SALARY)


# -- willingness ------------------------------------------------------------


def test_willingness_defaults_to_yes() -> None:
    resolver, _ = _resolver()
    decision = resolver.resolve(RELOCATE, ReferenceData())
    assert decision.value == "Yes"
    assert decision.source is AnswerSource.WILLINGNESS_DEFAULT


def test_last_explicit_instruction_wins_and_conflict_is_flagged() -> None:
    resolver, logger = _resolver()
    reference = ReferenceData(instructions=[
        OperatorInstruction(sequence=2, affirmative=False),
        OperatorInstruction(sequence=1, affirmative=True),
    ])

    decision = resolver.resolve(RELOCATE, reference)

    assert decision.value == "No"
    assert decision.source is AnswerSource.INSTRUCTION
    assert decision.ambiguous
    assert "conflicting_instructions" in logger.messages("warning")


def test_consistent_instructions_are_not_ambiguous() -> None:
    resolver, logger = _resolver()
    reference = ReferenceData(instructions=[
        OperatorInstruction(sequence=1, affirmative=False),
        OperatorInstruction(sequence=2, affirmative=False),
    ])

    decision = resolver.resolve(RELOCATE, reference)

    assert decision.value == "No"
    assert not decision.ambiguous
    assert logger.messages("warning") == []


def test_question_instruction_applies_only_to_its_question() -> None:
    resolver, _ = _resolver()
    reference = ReferenceData(instructions=[OperatorInstruction(1, False, question_id="commute")])

    assert resolver.resolve(COMMUTE, reference).value == "No"
    assert resolver.resolve(RELOCATE, reference).value == "Yes"


def test_stored_instructions_postdate_reference_file() -> None:
    repo = InMemoryAnswerRepository()
    repo.add_instruction(affirmative=True)
    resolver, _ = _resolver(repo)
    reference = ReferenceData(instructions=[OperatorInstruction(sequence=9, affirmative=False)])

    decision = resolver.resolve(RELOCATE, reference)

    assert decision.value == "Yes"
    assert decision.ambiguous


# -- facts ------------------------------------------------------------------


def test_fact_found_by_question_id() -> None:
    resolver, _ = _resolver()
    decision = resolver.resolve(CITIZENSHIP, ReferenceData(facts={"q_17": "Canadian"}))
    assert decision.value == "Canadian"
    assert decision.source is AnswerSource.REFERENCE


def test_fact_found_by_subject_inside_label() -> None:
    resolver, _ = _resolver()
    decision = resolver.resolve(CITIZENSHIP, ReferenceData(facts={"Citizenship": "Canadian"}))
    assert decision.value == "Canadian"


def test_longest_matching_fact_key_wins() -> None:
    resolver, _ = _resolver()
    question = FormQuestion("dual", "Do you hold dual citizenship?")
    facts = {"citizenship": "Canadian", "dual_citizenship": "No"}

    assert resolver.resolve(question, ReferenceData(facts=facts)).value == "No"


def test_partial_word_is_not_a_match() -> None:
    resolver, _ = _resolver()
    question = FormQuestion("city", "Which city do you live in?")
    decision = resolver.resolve(question, ReferenceData(facts={"cit": "x"}))
    assert not decision.resolved


def test_missing_fact_is_never_guessed() -> None:
    resolver, _ = _resolver()
    decision = resolver.resolve(SALARY, ReferenceData(facts={"citizenship": "Canadian"}))
    assert decision.value is None
    assert decision.source is AnswerSource.MISSING


def test_remembered_operator_answer_is_reused() -> None:
    repo = InMemoryAnswerRepository()
    resolver, _ = _resolver(repo)

    resolver.remember("salary", "120000 EUR")
    decision = resolver.resolve(SALARY, ReferenceData())

    assert decision.value == "120000 EUR"
    assert decision.source is AnswerSource.OPERATOR_ANSWER


def test_reference_fact_beats_stored_answer() -> None:
    repo = InMemoryAnswerRepository()
    repo.save_answer("q_17", "German")
    resolver, _ = _resolver(repo)

    decision = resolver.resolve(CITIZENSHIP, ReferenceData(facts={"citizenship": "Canadian"}))

    assert decision.value == "Canadian"
