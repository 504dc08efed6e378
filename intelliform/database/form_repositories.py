from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from intelliform.model.form_entities import (
    Form, Submission, SubmissionProblem, AIConversation, ConversationSession,
    ExtractionStatus, SessionStatus
)


def normalize_problem_text(text: str) -> str:
    """Case- and whitespace-insensitive form of a problem description"""
    return " ".join((text or "").split()).casefold()


class BaseRepository:
    """Base repository class"""

    def __init__(self, db_session: Session):
        self.db = db_session


class FormRepository(BaseRepository):
    """Form repository"""

    def create_form(self, user_id: str, title: str, description: str = None,
                    fields: List[Dict[str, Any]] = None, settings: Dict[str, Any] = None,
                    is_published: bool = False) -> Form:
        form = Form(
            user_id=user_id,
            title=title,
            description=description,
            fields=fields or [],
            settings=settings or {},
            is_published=is_published
        )
        self.db.add(form)
        self.db.flush()
        return form

    def get_form_by_id(self, form_id: str) -> Optional[Form]:
        return self.db.query(Form).filter(Form.form_id == form_id).first()

    def get_published_form(self, form_id: str) -> Optional[Form]:
        return self.db.query(Form).filter(
            Form.form_id == form_id,
            Form.is_published == True
        ).first()

    def get_user_forms(self, user_id: str) -> List[Form]:
        return self.db.query(Form).filter(
            Form.user_id == user_id
        ).order_by(Form.updated_at.desc()).all()

    def get_user_form_ids(self, user_id: str) -> List[str]:
        rows = self.db.query(Form.form_id).filter(Form.user_id == user_id).all()
        return [row[0] for row in rows]

    def update_form(self, form_id: str, **kwargs) -> Optional[Form]:
        form = self.get_form_by_id(form_id)
        if not form:
            return None

        allowed_fields = ['title', 'description', 'fields', 'settings', 'is_published']
        for field, value in kwargs.items():
            if field in allowed_fields:
                setattr(form, field, value)

        form.updated_at = datetime.utcnow()
        self.db.flush()
        return form

    def delete_form(self, form_id: str) -> bool:
        form = self.get_form_by_id(form_id)
        if not form:
            return False

        self.db.delete(form)
        self.db.flush()
        return True

    def count_submissions(self, form_id: str) -> int:
        return self.db.query(func.count(Submission.submission_id)).filter(
            Submission.form_id == form_id
        ).scalar() or 0

    def count_ai_conversations(self, form_id: str) -> int:
        return self.db.query(func.count(AIConversation.conversation_id)).join(
            Submission, Submission.submission_id == AIConversation.submission_id
        ).filter(Submission.form_id == form_id).scalar() or 0

    def count_sessions(self, form_id: str, status: SessionStatus = None) -> int:
        query = self.db.query(func.count(ConversationSession.session_id)).filter(
            ConversationSession.form_id == form_id
        )
        if status is not None:
            query = query.filter(ConversationSession.status == status)
        return query.scalar() or 0


class SubmissionRepository(BaseRepository):
    """Submission and problem repository"""

    def create_submission(self, form_id: str, data: Dict[str, Any], time_taken: int = None,
                          ip_address: str = None) -> Submission:
        submission = Submission(
            form_id=form_id,
            data=data,
            time_taken=time_taken,
            ip_address=ip_address,
            extraction_status=ExtractionStatus.PENDING
        )
        self.db.add(submission)
        self.db.flush()
        return submission

    def get_submission_by_id(self, submission_id: str) -> Optional[Submission]:
        return self.db.query(Submission).filter(
            Submission.submission_id == submission_id
        ).first()

    def get_form_submissions(self, form_id: str) -> List[Submission]:
        return self.db.query(Submission).filter(
            Submission.form_id == form_id
        ).order_by(Submission.completed_at.desc()).all()

    def get_recent_submissions(self, form_ids: List[str], page: int = 1,
                               page_size: int = 10) -> Dict[str, Any]:
        """Get paginated submissions across the given forms, newest first"""
        if not form_ids:
            return {"total": 0, "page": page, "page_size": page_size, "items": []}

        query = self.db.query(Submission, Form.title).join(
            Form, Form.form_id == Submission.form_id
        ).filter(Submission.form_id.in_(form_ids))

        total = query.count()
        offset = (page - 1) * page_size
        items = query.order_by(Submission.completed_at.desc()).offset(offset).limit(page_size).all()

        return {
            "total": total,
            "page": page,
            "page_size": page_size,
            "items": items
        }

    def average_time_taken(self, form_id: str) -> float:
        return self.db.query(func.avg(Submission.time_taken)).filter(
            Submission.form_id == form_id
        ).scalar() or 0

    def replace_problems(self, submission_id: str, problems: List[Tuple[str, List[str]]]) -> List[SubmissionProblem]:
        """Swap the submission's problems for a freshly extracted set"""
        self.db.query(SubmissionProblem).filter(
            SubmissionProblem.submission_id == submission_id
        ).delete(synchronize_session="fetch")

        created = []
        for text, solutions in problems:
            entry = SubmissionProblem(
                submission_id=submission_id,
                problem=text,
                solutions=list(solutions),
                resolved=False
            )
            self.db.add(entry)
            created.append(entry)
        self.db.flush()
        return created

    def set_extraction_status(self, submission_id: str, status: ExtractionStatus,
                              error: str = None) -> Optional[Submission]:
        submission = self.get_submission_by_id(submission_id)
        if submission:
            submission.extraction_status = status
            submission.extraction_error = error
            self.db.flush()
        return submission

    def get_problem(self, submission_id: str, problem_id: str) -> Optional[SubmissionProblem]:
        return self.db.query(SubmissionProblem).filter(
            SubmissionProblem.submission_id == submission_id,
            SubmissionProblem.problem_id == problem_id
        ).first()

    def update_submission_problem(self, submission_id: str, problem_id: str, resolved: bool,
                                  resolution_comment: str = None) -> Optional[SubmissionProblem]:
        """Update one problem entry; a missing comment keeps the stored one"""
        entry = self.get_problem(submission_id, problem_id)
        if not entry:
            return None

        entry.resolved = resolved
        if resolution_comment is not None:
            entry.resolution_comment = resolution_comment
        entry.resolved_at = datetime.utcnow() if resolved else None
        entry.updated_at = datetime.utcnow()
        self.db.flush()
        return entry

    def resolve_matching_problems(self, submission_id: str, problem_name: str, comment: str) -> int:
        """Resolve this submission's unresolved entries named problem_name; returns entries touched"""
        wanted = normalize_problem_text(problem_name)
        entries = self.db.query(SubmissionProblem).filter(
            SubmissionProblem.submission_id == submission_id,
            SubmissionProblem.resolved == False
        ).all()

        touched = 0
        now = datetime.utcnow()
        for entry in entries:
            if normalize_problem_text(entry.problem) != wanted:
                continue
            entry.resolved = True
            entry.resolution_comment = comment
            entry.resolved_at = now
            entry.updated_at = now
            touched += 1
        if touched:
            self.db.flush()
        return touched

    def get_unresolved_problems(self, form_ids: List[str]) -> List[Tuple[SubmissionProblem, Submission, Form]]:
        """Unresolved problems of the given forms with their submission and form"""
        if not form_ids:
            return []
        return self.db.query(SubmissionProblem, Submission, Form).join(
            Submission, Submission.submission_id == SubmissionProblem.submission_id
        ).join(
            Form, Form.form_id == Submission.form_id
        ).filter(
            Submission.form_id.in_(form_ids),
            SubmissionProblem.resolved == False
        ).order_by(SubmissionProblem.created_at).all()

    def get_submission_forms(self, submission_ids: List[str]) -> List[Tuple[str, str, str]]:
        """(submission_id, form_id, form title) for each submission"""
        if not submission_ids:
            return []
        return self.db.query(Submission.submission_id, Form.form_id, Form.title).join(
            Form, Form.form_id == Submission.form_id
        ).filter(Submission.submission_id.in_(submission_ids)).all()


class AIConversationRepository(BaseRepository):
    """AI conversation repository"""

    def create_conversation(self, submission_id: str, field_id: str,
                            messages: List[Dict[str, Any]]) -> AIConversation:
        conversation = AIConversation(
            submission_id=submission_id,
            field_id=field_id,
            messages=messages
        )
        self.db.add(conversation)
        self.db.flush()
        return conversation


class ConversationSessionRepository(BaseRepository):
    """Conversation session repository"""

    def create_session(self, form_id: str, state: Dict[str, Any], ip_address: str = None) -> ConversationSession:
        session = ConversationSession(
            form_id=form_id,
            state=state,
            ip_address=ip_address,
            status=SessionStatus.ACTIVE
        )
        self.db.add(session)
        self.db.flush()
        return session

    def get_session_by_id(self, session_id: str) -> Optional[ConversationSession]:
        return self.db.query(ConversationSession).filter(
            ConversationSession.session_id == session_id
        ).first()

    def save_state(self, session_id: str, state: Dict[str, Any], status: SessionStatus = None,
                   submission_id: str = None, expected_version: int = None) -> bool:
        """Store a new state and bump the version.

        With expected_version the row is only written while its version still
        matches; returns False when no row was written.
        """
        query = self.db.query(ConversationSession).filter(ConversationSession.session_id == session_id)
        if expected_version is not None:
            query = query.filter(ConversationSession.version == expected_version)

        values = {
            ConversationSession.state: dict(state),
            ConversationSession.version: ConversationSession.version + 1,
            ConversationSession.updated_at: datetime.utcnow(),
        }
        if status is not None:
            values[ConversationSession.status] = status
        if submission_id:
            values[ConversationSession.submission_id] = submission_id

        return query.update(values, synchronize_session=False) == 1
