import pytest

from intelliform.business.problem_service import ProblemService, build_submission_text, run_problem_extraction
from intelliform.database.form_repositories import SubmissionRepository
from intelliform.model.errors import AIUnavailableError, MalformedAIOutputError, NotFoundError
from intelliform.model.form_entities import ExtractionStatus
from intelliform.model.form_schemas import ExtractedProblem, parse_form_fields

FIELDS = [
    {"id": "name", "type": "text", "label": "Name"},
    {"id": "topics", "type": "checkbox", "label": "Topics", "options": ["billing", "support"]},
    {"id": "feedback", "type": "textarea", "label": "Feedback"},
]


def test_submission_text_lists_answered_fields_in_form_order():
    text = build_submission_text(parse_form_fields(FIELDS), {
        "feedback": "Invoices arrive late",
        "name": "Ann",
        "topics": ["billing", "support"],
        "unknown": "ignored",
    })
    assert text.splitlines() == [
        "Name: Ann",
        "Topics: billing, support",
        "Feedback: Invoices arrive late",
    ]


def test_submission_text_skips_blank_answers():
    assert build_submission_text(parse_form_fields(FIELDS), {"name": "  ", "topics": []}) == ""


class TestExtractProblems:

    def test_stores_extracted_problems(self, db_session, seed, scripted_ai):
        form = seed.form(fields=FIELDS)
        submission = seed.submission(form, {"name": "Ann", "feedback": "Invoices arrive late"})
        scripted_ai.extractions.append([
            ExtractedProblem(problem="Late invoices", solutions=["Send invoices on the 1st"]),
        ])

        problems = ProblemService(db_session, scripted_ai).extract_problems(submission.submission_id)

        assert [p.problem for p in problems] == ["Late invoices"]
        assert problems[0].solutions == ["Send invoices on the 1st"]
        assert not problems[0].resolved
        assert "Feedback: Invoices arrive late" in scripted_ai.extract_calls[0]

        stored = SubmissionRepository(db_session).get_submission_by_id(submission.submission_id)
        assert stored.extraction_status == ExtractionStatus.COMPLETED
        assert [p.problem for p in stored.problems] == ["Late invoices"]

    def test_failure_persists_no_problems(self, db_session, seed, scripted_ai):
        form = seed.form(fields=FIELDS)
        submission = seed.submission(form, {"feedback": "Everything broke"})
        scripted_ai.extractions.append(AIUnavailableError("AI service unavailable"))

        with pytest.raises(AIUnavailableError):
            ProblemService(db_session, scripted_ai).extract_problems(submission.submission_id)

        stored = SubmissionRepository(db_session).get_submission_by_id(submission.submission_id)
        assert stored.problems == []
        assert stored.extraction_status == ExtractionStatus.FAILED
        assert "unavailable" in stored.extraction_error

    def test_failed_re_extraction_keeps_previous_problems(self, db_session, seed, scripted_ai):
        form = seed.form(fields=FIELDS)
        submission = seed.submission(form, {"feedback": "Invoices arrive late"}, problem_texts=["Late invoices"])
        scripted_ai.extractions.append(MalformedAIOutputError("Malformed problem extraction output from AI"))

        with pytest.raises(MalformedAIOutputError):
            ProblemService(db_session, scripted_ai).extract_problems(submission.submission_id)

        stored = SubmissionRepository(db_session).get_submission_by_id(submission.submission_id)
        assert [p.problem for p in stored.problems] == ["Late invoices"]

    def test_successful_re_extraction_replaces_problems(self, db_session, seed, scripted_ai):
        form = seed.form(fields=FIELDS)
        submission = seed.submission(form, {"feedback": "Slow support"}, problem_texts=["Old problem"])
        scripted_ai.extractions.append([ExtractedProblem(problem="Slow support replies")])

        ProblemService(db_session, scripted_ai).extract_problems(submission.submission_id)

        db_session.expire_all()
        stored = SubmissionRepository(db_session).get_submission_by_id(submission.submission_id)
        assert [p.problem for p in stored.problems] == ["Slow support replies"]

    def test_empty_submission_skips_the_ai(self, db_session, seed, scripted_ai):
        form = seed.form(fields=FIELDS)
        submission = seed.submission(form, {"name": ""})

        assert ProblemService(db_session, scripted_ai).extract_problems(submission.submission_id) == []
        assert scripted_ai.extract_calls == []

    def test_unknown_submission(self, db_session, scripted_ai):
        with pytest.raises(NotFoundError):
            ProblemService(db_session, scripted_ai).extract_problems("missing")


def test_background_job_records_failure_without_raising(db_config, db_session, seed, scripted_ai):
    form = seed.form(fields=FIELDS)
    submission = seed.submission(form, {"feedback": "Everything broke"})
    scripted_ai.extractions.append(AIUnavailableError("AI service unavailable"))

    run_problem_extraction(db_config, scripted_ai, submission.submission_id)

    db_session.expire_all()
    stored = SubmissionRepository(db_session).get_submission_by_id(submission.submission_id)
    assert stored.extraction_status == ExtractionStatus.FAILED
