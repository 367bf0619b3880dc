"""Tests for run allocation."""

import uuid

from app.models.survey import Question, QuestionMode, QuestionType, Variable
from app.schemas.payloads import ExecuteQuestionPayload
from app.services.allocation import allocate_jobs, build_thread_key, merge_variables

RUN_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
MODEL_A = uuid.UUID("00000000-0000-0000-0000-00000000000a")
MODEL_B = uuid.UUID("00000000-0000-0000-0000-00000000000b")


def _question(order, mode=QuestionMode.STATELESS, thread_key=None, prompt="Tell me about {{brand}}", **kwargs):
    return Question(
        id=uuid.uuid4(),
        order=order,
        title=f"Q{order}",
        prompt_template=prompt,
        mode=mode,
        thread_key=thread_key,
        type=kwargs.get("type", QuestionType.OPEN_ENDED),
        config=kwargs.get("config"),
    )


def test_allocation_is_deterministic():
    """Test identical inputs produce identical keys and order."""
    questions = [_question(1), _question(0), _question(2)]

    first = allocate_jobs(RUN_ID, [MODEL_A, MODEL_B], questions, {"brand": "Acme"})
    second = allocate_jobs(RUN_ID, [MODEL_A, MODEL_B], questions, {"brand": "Acme"})

    assert [j.idempotency_key for j in first] == [j.idempotency_key for j in second]
    assert [j.payload for j in first] == [j.payload for j in second]


def test_models_outer_questions_inner_by_order():
    q0, q1 = _question(0), _question(1)

    jobs = allocate_jobs(RUN_ID, [MODEL_A, MODEL_B], [q1, q0], {})

    assert [(j.model_target_id, j.question_id) for j in jobs] == [
        (MODEL_A, q0.id),
        (MODEL_A, q1.id),
        (MODEL_B, q0.id),
        (MODEL_B, q1.id),
    ]


def test_keys_unique_for_n_models_by_m_questions():
    models = [uuid.uuid4() for _ in range(3)]
    questions = [_question(i) for i in range(4)]

    jobs = allocate_jobs(RUN_ID, models, questions, {})

    assert len(jobs) == 12
    assert len({j.idempotency_key for j in jobs}) == 12


def test_stateless_questions_get_distinct_thread_keys():
    q1, q2 = _question(0), _question(1)

    assert build_thread_key(RUN_ID, MODEL_A, q1) != build_thread_key(RUN_ID, MODEL_A, q2)


def test_threaded_questions_share_thread_key_per_model():
    q1 = _question(0, mode=QuestionMode.THREADED, thread_key="brand-chat")
    q2 = _question(1, mode=QuestionMode.THREADED, thread_key="brand-chat")

    assert build_thread_key(RUN_ID, MODEL_A, q1) == build_thread_key(RUN_ID, MODEL_A, q2)
    assert build_thread_key(RUN_ID, MODEL_A, q1) != build_thread_key(RUN_ID, MODEL_B, q1)


def test_threaded_question_without_group_uses_its_own_id():
    q1 = _question(0, mode=QuestionMode.THREADED)
    q2 = _question(1, mode=QuestionMode.THREADED)

    assert build_thread_key(RUN_ID, MODEL_A, q1) != build_thread_key(RUN_ID, MODEL_A, q2)


def test_unresolved_variables_pass_through():
    question = _question(0, prompt="Compare {{brand}} with {{rival}}")

    jobs = allocate_jobs(RUN_ID, [MODEL_A], [question], {"brand": "Acme"})
    payload = ExecuteQuestionPayload.model_validate(jobs[0].payload)

    assert payload.rendered_prompt == "Compare Acme with {{rival}}"
    assert payload.unresolved_variables == ["rival"]


def test_ranked_question_carries_config():
    question = _question(
        0,
        type=QuestionType.RANKED,
        config={"scale_preset": "1-5", "scale_min": 1, "scale_max": 5, "include_reasoning": False},
    )

    jobs = allocate_jobs(RUN_ID, [MODEL_A], [question], {})
    payload = ExecuteQuestionPayload.model_validate(jobs[0].payload)

    assert payload.question_type == QuestionType.RANKED
    assert payload.ranked_config.scale_max == 5
    assert payload.ranked_config.include_reasoning is False


def test_overrides_win_over_defaults():
    variables = [
        Variable(key="brand", default_value="Acme"),
        Variable(key="region", default_value="EU"),
        Variable(key="empty", default_value=None),
    ]

    merged = merge_variables(variables, {"brand": "Globex"})

    assert merged == {"brand": "Globex", "region": "EU"}
