import pytest

from rehearsal.application.feedback import AggregateFeedback, AnalysisRecord, MatchKind, SessionSummary
from rehearsal.application.interview_session import AnalysisHint, QuestionResponse
from rehearsal.application.reconciler import AnalysisReconciler, provisional_score
from rehearsal.storage.models import AIFeedback


def response(question_id, response_id=None, confidence=None):
    return QuestionResponse(
        question_id=question_id,
        response_id=response_id,
        question_text=f"Question {question_id}",
        answer_text=f"Answer {question_id}",
        duration_seconds=45.0,
        analysis_hint=AnalysisHint(confidence=confidence),
    )


def analysis(analysis_id, question_id, response_id=None, score=75.0):
    return AnalysisRecord(
        id=analysis_id,
        question_id=question_id,
        interview_response_id=response_id,
        overall_score=score,
        strengths=[f"strength from {analysis_id}"],
    )


@pytest.fixture
def reconciler():
    return AnalysisReconciler()


def test_response_id_match_beats_other_tiers(reconciler):
    analyses = [
        analysis("by-position", question_id=9),
        analysis("by-question", question_id=1),
        analysis("by-response-id", question_id=5, response_id="r1"),
    ]

    [merged] = reconciler.reconcile([response(1, response_id="r1")], analyses)

    assert merged.analysis_id == "by-response-id"
    assert merged.match is MatchKind.RESPONSE_ID
    assert not merged.is_provisional


def test_question_id_match_ignores_arrival_order(reconciler):
    responses = [response(1), response(2), response(3)]
    analyses = [analysis("a3", 3, score=90), analysis("a1", 1, score=60), analysis("a2", 2, score=70)]

    merged = reconciler.reconcile(responses, analyses)

    assert [m.analysis_id for m in merged] == ["a1", "a2", "a3"]
    assert [m.score for m in merged] == [60, 70, 90]
    assert all(m.match is MatchKind.QUESTION_ID for m in merged)


def test_positional_match_when_ids_do_not_line_up(reconciler):
    responses = [response(1), response(2)]
    analyses = [analysis("first", 101), analysis("second", 102)]

    merged = reconciler.reconcile(responses, analyses)

    assert [m.analysis_id for m in merged] == ["first", "second"]
    assert all(m.match is MatchKind.POSITION for m in merged)


def test_positional_match_can_pair_wrongly_when_analyses_arrive_out_of_order(reconciler):
    responses = [response(1), response(2)]
    # Written for question 2 then question 1, under ids the client never saw
    analyses = [analysis("meant-for-q2", 102), analysis("meant-for-q1", 101)]

    merged = reconciler.reconcile(responses, analyses)

    assert merged[0].analysis_id == "meant-for-q2"
    assert merged[0].match is MatchKind.POSITION


def test_positional_fallback_can_be_disabled():
    reconciler = AnalysisReconciler(positional_fallback=False)
    merged = reconciler.reconcile([response(1), response(2)], [analysis("x", 101), analysis("y", 102)])
    assert all(m.is_provisional for m in merged)


def test_analyses_are_assigned_at_most_once(reconciler):
    # The response-id claim of the second response wins over the
    # question-id and position claims of the first
    responses = [response(1), response(2, response_id="r2")]
    analyses = [analysis("only", question_id=1, response_id="r2")]

    first, second = reconciler.reconcile(responses, analyses)

    assert second.analysis_id == "only"
    assert first.is_provisional


def test_duplicate_question_analyses_are_not_reused():
    reconciler = AnalysisReconciler(positional_fallback=False)
    responses = [response(1), response(2)]
    analyses = [analysis("a", 1), analysis("b", 1)]

    first, second = reconciler.reconcile(responses, analyses)

    assert first.analysis_id == "a"
    assert second.is_provisional


def test_no_analyses_keeps_provisional_data(reconciler):
    responses = [response(1, confidence=0.734), response(2)]

    merged = reconciler.reconcile(responses, [])

    assert all(m.is_provisional for m in merged)
    assert merged[0].score == 73.0
    assert merged[1].score is None
    assert merged[0].answer_text == "Answer 1"
    assert merged[0].strengths == []


def test_missing_analysis_score_falls_back_to_hint(reconciler):
    [merged] = reconciler.reconcile([response(1, confidence=0.5)], [analysis("a", 1, score=None)])
    assert merged.match is MatchKind.QUESTION_ID
    assert merged.score == 50.0


def test_reconcile_is_deterministic(reconciler):
    responses = [response(1, response_id="r1"), response(2), response(3)]
    analyses = [analysis("c", 77), analysis("b", 2), analysis("a", 1, response_id="r1")]

    assert reconciler.reconcile(responses, analyses) == reconciler.reconcile(responses, analyses)


@pytest.mark.parametrize(
    "confidence, expected",
    [(None, None), (0.0, 0.0), (0.856, 86.0), (1.4, 100.0), (-0.2, 0.0)],
)
def test_provisional_score(confidence, expected):
    assert provisional_score(AnalysisHint(confidence=confidence)) == expected


def test_remote_summary_fields_win(reconciler):
    local = AIFeedback(overall_score=55, strengths=["local strength"], improvements=["local gap"], detailed_feedback="local")
    remote = SessionSummary(
        session_id="sess-1",
        average_score=84,
        overall_strengths=["remote strength"],
        readiness_level="ready",
        next_steps=["practice system design"],
    )

    feedback = reconciler.reconcile_summary(local, remote)

    assert feedback.overall_score == 84
    assert feedback.strengths == ["remote strength"]
    assert feedback.improvements == ["local gap"]
    assert feedback.detailed_feedback == "local"
    assert feedback.readiness_level == "ready"
    assert feedback.next_steps == ["practice system design"]
    assert not feedback.is_provisional


def test_local_feedback_only_is_provisional(reconciler):
    local = AIFeedback(overall_score=66, strengths=["calm"])
    feedback = reconciler.reconcile_summary(local, None)

    assert feedback.overall_score == 66
    assert feedback.strengths == ["calm"]
    assert feedback.detailed_feedback is None
    assert feedback.is_provisional


def test_no_feedback_at_all(reconciler):
    feedback = reconciler.reconcile_summary(None, None)
    assert feedback.overall_score is None
    assert feedback.performance_badge == "Good"


@pytest.mark.parametrize(
    "score, badge",
    [(95, "Excellent"), (80, "Excellent"), (79.9, "Good"), (70, "Good"), (65, "Fair"), (59, "Needs Improvement")],
)
def test_performance_badge(score, badge):
    assert AggregateFeedback(overall_score=score).performance_badge == badge
