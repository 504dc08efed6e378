import csv
import io
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intelliform.business.field_sequencer import evaluate_condition, format_answer, is_empty_answer, validate_answer
from intelliform.database.form_repositories import (
    FormRepository, SubmissionRepository, AIConversationRepository
)
from intelliform.model.errors import NotFoundError, ResolutionPreconditionError, StorageError, ValidationError
from intelliform.model.form_entities import Form, SessionStatus, Submission
from intelliform.model.form_schemas import (
    FormCreate, FormUpdate, FormDetail, FormSummary, PublicForm, FormSettings, FormAnalytics, RecentResponse,
    SubmissionCreate, SubmissionCreated, SubmissionDetail, RecentSubmission, RecentSubmissionList,
    ProblemModel, AIConversationCreate, AIConversationDetail, ResolveGroupResult,
    parse_form_fields, dump_form_fields
)
from intelliform.utils.logger_config import get_logger, LoggerConfig

logger = get_logger(__name__)


def problem_to_model(entry) -> ProblemModel:
    return ProblemModel(
        problem_id=entry.problem_id,
        problem=entry.problem,
        solutions=entry.solutions or [],
        resolved=entry.resolved,
        resolution_comment=entry.resolution_comment,
        resolved_at=entry.resolved_at
    )


class FormService:
    """Form definitions: owner CRUD, public loading, analytics and export"""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.form_repo = FormRepository(db_session)
        self.submission_repo = SubmissionRepository(db_session)

    def create_form(self, user_id: str, payload: FormCreate) -> FormDetail:
        try:
            form = self.form_repo.create_form(
                user_id=user_id,
                title=payload.title,
                description=payload.description,
                fields=dump_form_fields(payload.fields),
                settings=payload.settings.model_dump(mode="json", by_alias=True, exclude_none=True),
                is_published=payload.is_published
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            LoggerConfig.log_database_operation(logger, "CREATE", "forms", success=False, error=str(e))
            raise StorageError("Failed to create form") from e

        LoggerConfig.log_database_operation(logger, "CREATE", "forms", form.form_id)
        return self._to_detail(form)

    def get_user_forms(self, user_id: str) -> List[FormSummary]:
        return [
            FormSummary(
                form_id=form.form_id,
                title=form.title,
                description=form.description,
                is_published=form.is_published,
                field_count=len(form.fields or []),
                submission_count=self.form_repo.count_submissions(form.form_id),
                ai_conversation_count=self.form_repo.count_ai_conversations(form.form_id),
                created_at=form.created_at,
                updated_at=form.updated_at
            )
            for form in self.form_repo.get_user_forms(user_id)
        ]

    def get_form(self, user_id: str, form_id: str) -> FormDetail:
        return self._to_detail(self.get_owned_form(user_id, form_id))

    def get_owned_form(self, user_id: str, form_id: str) -> Form:
        form = self.form_repo.get_form_by_id(form_id)
        if not form or form.user_id != user_id:
            raise NotFoundError("Form not found")
        return form

    def update_form(self, user_id: str, form_id: str, payload: FormUpdate) -> FormDetail:
        self.get_owned_form(user_id, form_id)

        update_kwargs = {}
        if payload.title is not None:
            update_kwargs['title'] = payload.title
        if 'description' in payload.model_fields_set:
            # an explicit null clears it
            update_kwargs['description'] = payload.description
        if payload.fields is not None:
            update_kwargs['fields'] = dump_form_fields(payload.fields)
        if payload.settings is not None:
            update_kwargs['settings'] = payload.settings.model_dump(mode="json", by_alias=True, exclude_none=True)
        if payload.is_published is not None:
            update_kwargs['is_published'] = payload.is_published

        try:
            form = self.form_repo.update_form(form_id, **update_kwargs)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            LoggerConfig.log_database_operation(logger, "UPDATE", "forms", form_id, success=False, error=str(e))
            raise StorageError("Failed to update form") from e

        LoggerConfig.log_database_operation(logger, "UPDATE", "forms", form_id)
        return self._to_detail(form)

    def delete_form(self, user_id: str, form_id: str):
        self.get_owned_form(user_id, form_id)
        try:
            self.form_repo.delete_form(form_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            LoggerConfig.log_database_operation(logger, "DELETE", "forms", form_id, success=False, error=str(e))
            raise StorageError("Failed to delete form") from e
        LoggerConfig.log_database_operation(logger, "DELETE", "forms", form_id)

    def load_public_form(self, form_id: str) -> PublicForm:
        """A published form for respondents; unpublished forms do not exist for them"""
        form = self.form_repo.get_published_form(form_id)
        if not form:
            raise NotFoundError("Form not found")
        return PublicForm(
            form_id=form.form_id,
            title=form.title,
            description=form.description,
            fields=parse_form_fields(form.fields),
            settings=FormSettings.model_validate(form.settings or {})
        )

    def get_form_analytics(self, user_id: str, form_id: str) -> FormAnalytics:
        self.get_owned_form(user_id, form_id)

        submissions = self.submission_repo.get_form_submissions(form_id)
        total_responses = len(submissions)

        # Conversations that were started but never submitted count against completion
        started = self.form_repo.count_sessions(form_id)
        if started:
            submitted = self.form_repo.count_sessions(form_id, SessionStatus.SUBMITTED)
            completion_rate = round(100 * submitted / started)
        else:
            completion_rate = 100 if total_responses else 0

        open_problems = sum(
            1 for submission in submissions for problem in submission.problems if not problem.resolved
        )

        return FormAnalytics(
            form_id=form_id,
            total_responses=total_responses,
            completion_rate=completion_rate,
            ai_interactions=self.form_repo.count_ai_conversations(form_id),
            average_time_seconds=round(self.submission_repo.average_time_taken(form_id)),
            open_problems=open_problems,
            recent_responses=[
                RecentResponse(
                    submission_id=submission.submission_id,
                    completed_at=submission.completed_at,
                    time_taken=submission.time_taken,
                    has_ai_interactions=bool(submission.ai_conversations)
                )
                for submission in submissions[:10]
            ]
        )

    def export_submissions_csv(self, user_id: str, form_id: str) -> str:
        """All submissions of a form as CSV, one column per field label"""
        form = self.get_owned_form(user_id, form_id)
        fields = parse_form_fields(form.fields)
        submissions = self.submission_repo.get_form_submissions(form_id)

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "Submission ID", "Completed At", "Time Taken (seconds)", "IP Address",
            "Problems", "Solutions", "Resolved", "Resolution Comments",
            *[field.label for field in fields]
        ])
        for submission in submissions:
            problems = submission.problems
            writer.writerow([
                submission.submission_id,
                submission.completed_at.isoformat() if submission.completed_at else "",
                submission.time_taken if submission.time_taken is not None else "",
                submission.ip_address or "",
                "; ".join(p.problem for p in problems),
                "; ".join(s for p in problems for s in (p.solutions or [])),
                "Yes" if problems and all(p.resolved for p in problems) else "No",
                "; ".join(p.resolution_comment for p in problems if p.resolution_comment),
                *[format_answer((submission.data or {}).get(field.id)) for field in fields]
            ])
        return output.getvalue()

    @staticmethod
    def _to_detail(form: Form) -> FormDetail:
        return FormDetail(
            form_id=form.form_id,
            user_id=form.user_id,
            title=form.title,
            description=form.description,
            fields=parse_form_fields(form.fields),
            settings=FormSettings.model_validate(form.settings or {}),
            is_published=form.is_published,
            created_at=form.created_at,
            updated_at=form.updated_at
        )


class SubmissionService:
    """Submissions, their AI conversations and problem resolution"""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.form_repo = FormRepository(db_session)
        self.submission_repo = SubmissionRepository(db_session)
        self.conversation_repo = AIConversationRepository(db_session)

    def create_submission(self, form_id: str, data: Dict[str, Any], time_taken: int = None,
                          ip_address: str = None, ai_conversations: List[Dict[str, Any]] = None) -> Submission:
        """Add a submission and its AI conversations to the session; the caller commits"""
        submission = self.submission_repo.create_submission(form_id, data, time_taken, ip_address)
        for conversation in ai_conversations or []:
            self.conversation_repo.create_conversation(
                submission.submission_id, conversation["field_id"], conversation["messages"]
            )
        LoggerConfig.log_database_operation(logger, "CREATE", "submissions", submission.submission_id)
        return submission

    def submit_public(self, form_id: str, payload: SubmissionCreate, ip_address: str = None) -> SubmissionCreated:
        """Direct (non-conversational) submission of a published form.

        Answers go through the same checks as the conversation: only fields
        whose condition holds are kept, and each is validated in order.
        """
        form = self.form_repo.get_published_form(form_id)
        if not form:
            raise NotFoundError("Form not found")

        data = {}
        for field in parse_form_fields(form.fields):
            if not evaluate_condition(field.conditional, data):
                continue
            value = validate_answer(field, payload.data.get(field.id))
            if not is_empty_answer(value):
                data[field.id] = value

        try:
            submission = self.create_submission(form_id, data, payload.time_taken, ip_address)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to store submission") from e
        return SubmissionCreated(submission_id=submission.submission_id)

    def get_submission(self, user_id: str, submission_id: str) -> SubmissionDetail:
        return self._to_detail(self._get_owned_submission(user_id, submission_id))

    def get_form_submissions(self, user_id: str, form_id: str) -> List[SubmissionDetail]:
        form = self.form_repo.get_form_by_id(form_id)
        if not form or form.user_id != user_id:
            raise NotFoundError("Form not found")
        return [self._to_detail(s) for s in self.submission_repo.get_form_submissions(form_id)]

    def get_recent_submissions(self, user_id: str, page: int = 1, page_size: int = 10) -> RecentSubmissionList:
        result = self.submission_repo.get_recent_submissions(
            self.form_repo.get_user_form_ids(user_id), page, page_size
        )
        return RecentSubmissionList(
            total=result["total"],
            page=result["page"],
            page_size=result["page_size"],
            items=[
                RecentSubmission(
                    submission_id=submission.submission_id,
                    form_id=submission.form_id,
                    form_title=form_title,
                    completed_at=submission.completed_at,
                    time_taken=submission.time_taken,
                    problem_count=len(submission.problems),
                    unresolved_problem_count=sum(1 for p in submission.problems if not p.resolved)
                )
                for submission, form_title in result["items"]
            ]
        )

    def save_ai_conversation(self, payload: AIConversationCreate) -> AIConversationDetail:
        if not self.submission_repo.get_submission_by_id(payload.submission_id):
            raise NotFoundError("Submission not found")
        try:
            conversation = self.conversation_repo.create_conversation(
                payload.submission_id, payload.field_id,
                [message.model_dump() for message in payload.messages]
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to save AI conversation") from e

        LoggerConfig.log_database_operation(logger, "CREATE", "ai_conversations", conversation.conversation_id)
        return AIConversationDetail(
            conversation_id=conversation.conversation_id,
            submission_id=conversation.submission_id,
            field_id=conversation.field_id,
            messages=conversation.messages,
            created_at=conversation.created_at
        )

    def set_problem_resolved(self, user_id: str, submission_id: str, problem_id: str,
                             resolved: bool, resolution_comment: Optional[str] = None) -> ProblemModel:
        """Resolve or reopen one problem of one submission.

        Resolving requires a non-blank comment and is rejected before any
        write. Reopening keeps the stored comment unless a new one is given.
        """
        comment = resolution_comment.strip() if resolution_comment is not None else None
        if resolved and not comment:
            raise ResolutionPreconditionError("A resolution comment is required to mark a problem as resolved")

        self._get_owned_submission(user_id, submission_id)
        try:
            entry = self.submission_repo.update_submission_problem(
                submission_id, problem_id, resolved, comment or None
            )
            if not entry:
                raise NotFoundError("Problem not found")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to update problem") from e

        LoggerConfig.log_database_operation(logger, "UPDATE", "submission_problems", problem_id)
        return problem_to_model(entry)

    def resolve_grouped_problem(self, user_id: str, problem_name: str, submission_ids: List[str],
                                resolution_comment: str) -> ResolveGroupResult:
        """Resolve a canonical problem across submissions; returns how many were updated.

        Each submission is committed on its own. Submissions without a
        matching unresolved problem, outside the user's forms, or whose
        update fails are simply not counted.
        """
        comment = (resolution_comment or "").strip()
        if not comment:
            raise ResolutionPreconditionError("A resolution comment is required to resolve a problem group")
        if not problem_name or not problem_name.strip():
            raise ValidationError("Problem name is required")

        unique_ids = list(dict.fromkeys(submission_ids))
        owned_forms = set(self.form_repo.get_user_form_ids(user_id))
        owned_ids = {
            submission_id for submission_id, form_id, _ in self.submission_repo.get_submission_forms(unique_ids)
            if form_id in owned_forms
        }

        updated_count = 0
        for submission_id in unique_ids:
            if submission_id not in owned_ids:
                logger.warning(f"⚠️ Skipping submission {submission_id}: not found for this user")
                continue
            try:
                touched = self.submission_repo.resolve_matching_problems(submission_id, problem_name, comment)
                if touched:
                    self.db.commit()
                    updated_count += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                LoggerConfig.log_database_operation(logger, "UPDATE", "submission_problems", submission_id,
                                                    success=False, error=str(e))

        LoggerConfig.log_business_logic(
            logger, "Resolve problem group", f'"{problem_name}": {updated_count}/{len(unique_ids)} submission(s)'
        )
        return ResolveGroupResult(problem=problem_name, requested=len(unique_ids), updated_count=updated_count)

    def _get_owned_submission(self, user_id: str, submission_id: str) -> Submission:
        submission = self.submission_repo.get_submission_by_id(submission_id)
        if not submission or submission.form.user_id != user_id:
            raise NotFoundError("Submission not found")
        return submission

    def _to_detail(self, submission: Submission) -> SubmissionDetail:
        return SubmissionDetail(
            submission_id=submission.submission_id,
            form_id=submission.form_id,
            data=submission.data or {},
            completed_at=submission.completed_at,
            time_taken=submission.time_taken,
            ip_address=submission.ip_address,
            extraction_status=submission.extraction_status.value,
            extraction_error=submission.extraction_error,
            problems=[problem_to_model(p) for p in submission.problems],
            ai_conversations=[
                AIConversationDetail(
                    conversation_id=c.conversation_id,
                    submission_id=c.submission_id,
                    field_id=c.field_id,
                    messages=c.messages,
                    created_at=c.created_at
                )
                for c in submission.ai_conversations
            ]
        )
