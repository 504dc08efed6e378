from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intelliform.business.ai_service import AIService
from intelliform.business.field_sequencer import format_answer, is_empty_answer
from intelliform.business.form_service import problem_to_model
from intelliform.business.problem_pipeline import ProblemRankingPipeline
from intelliform.database.database_config import DatabaseConfig
from intelliform.database.form_repositories import FormRepository, SubmissionRepository
from intelliform.model.errors import AIUnavailableError, MalformedAIOutputError, NotFoundError, StorageError
from intelliform.model.form_entities import ExtractionStatus
from intelliform.model.form_schemas import FormField, ProblemGroup, ProblemModel, parse_form_fields
from intelliform.utils.logger_config import get_logger, LoggerConfig

logger = get_logger(__name__)


def build_submission_text(fields: List[FormField], data: Dict[str, Any]) -> str:
    """One "label: answer" line per answered field, in form order"""
    lines = []
    for field in fields:
        if field.id not in data or is_empty_answer(data[field.id]):
            continue
        lines.append(f"{field.label}: {format_answer(data[field.id])}")
    return "\n".join(lines)


class ProblemService:
    """Per-submission problem extraction and cross-submission problem groups"""

    def __init__(self, db_session: Session, ai_service: AIService):
        self.db = db_session
        self.ai_service = ai_service
        self.form_repo = FormRepository(db_session)
        self.submission_repo = SubmissionRepository(db_session)

    def extract_problems(self, submission_id: str) -> List[ProblemModel]:
        """Extract and store a submission's problems.

        On success the previous problems are replaced in one transaction. If
        the AI call fails or its output is malformed, existing problems are
        left untouched, the submission is marked FAILED and the error is
        re-raised.
        """
        submission = self.submission_repo.get_submission_by_id(submission_id)
        if not submission:
            raise NotFoundError("Submission not found")

        submission_text = build_submission_text(parse_form_fields(submission.form.fields), submission.data or {})
        LoggerConfig.log_business_logic(logger, "Extract problems", f"submission {submission_id}")

        try:
            extracted = self.ai_service.extract_problems(submission_text) if submission_text else []
        except (AIUnavailableError, MalformedAIOutputError) as e:
            self._mark_failed(submission_id, e.message)
            raise

        try:
            entries = self.submission_repo.replace_problems(
                submission_id, [(p.problem, p.solutions) for p in extracted]
            )
            self.submission_repo.set_extraction_status(submission_id, ExtractionStatus.COMPLETED)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            LoggerConfig.log_database_operation(logger, "UPDATE", "submission_problems", submission_id,
                                                success=False, error=str(e))
            raise StorageError("Failed to store extracted problems") from e

        LoggerConfig.log_database_operation(logger, "UPDATE", "submission_problems", submission_id)
        return [problem_to_model(entry) for entry in entries]

    def get_problem_groups(self, user_id: str, form_id: Optional[str] = None) -> List[ProblemGroup]:
        """Rank the unresolved problems of the user's forms (optionally one form)"""
        form_ids = self.form_repo.get_user_form_ids(user_id)
        if form_id is not None:
            if form_id not in form_ids:
                raise NotFoundError("Form not found")
            form_ids = [form_id]

        rows = [
            {
                "problem": problem.problem,
                "submission_id": submission.submission_id,
                "form_id": form.form_id,
                "form_name": form.title
            }
            for problem, submission, form in self.submission_repo.get_unresolved_problems(form_ids)
        ]
        if not rows:
            return []

        LoggerConfig.log_business_logic(logger, "Rank problems", f"{len(rows)} unresolved problem(s)")
        return ProblemRankingPipeline(self.ai_service).run(rows)

    def _mark_failed(self, submission_id: str, error: str):
        self.db.rollback()
        try:
            self.submission_repo.set_extraction_status(submission_id, ExtractionStatus.FAILED, error)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Could not record extraction failure for {submission_id}: {e}")
        logger.warning(f"⚠️ Problem extraction failed for submission {submission_id}: {error}")


def run_problem_extraction(db_config: DatabaseConfig, ai_service: AIService, submission_id: str):
    """Background job: extract problems for a new submission in its own session"""
    with db_config.get_session() as session:
        try:
            ProblemService(session, ai_service).extract_problems(submission_id)
        except (AIUnavailableError, MalformedAIOutputError, StorageError) as e:
            # Already recorded on the submission; nobody is waiting for this result
            logger.error(f"❌ Background problem extraction failed for {submission_id}: {e.message}")
