from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intelliform.business.ai_service import AIService
from intelliform.business.field_sequencer import FieldSequencer
from intelliform.business.form_service import SubmissionService
from intelliform.database.form_repositories import FormRepository, ConversationSessionRepository
from intelliform.model.errors import (
    AIUnavailableError, AlreadySubmittedError, MalformedAIOutputError, NotFoundError, SequencerStateError,
    StorageError, IntelliFormError
)
from intelliform.model.form_entities import ConversationSession, SessionStatus
from intelliform.model.form_schemas import ConversationView, AnswerRequest, parse_form_fields
from intelliform.utils.logger_config import get_logger, LoggerConfig
from intelliform.utils.settings import AISettings

logger = get_logger(__name__)


class ConversationService:
    """Hosts respondents' Field Sequencers as persisted conversation sessions.

    Each call loads the session's sequencer, performs one step and stores the
    new state. ``on_submitted`` is called with the submission id once a
    conversation has been committed as a submission.
    """

    def __init__(self, db_session: Session, ai_service: AIService, ai_settings: AISettings,
                 on_submitted: Optional[Callable[[str], None]] = None):
        self.db = db_session
        self.ai_service = ai_service
        self.ai_settings = ai_settings
        self.on_submitted = on_submitted
        self.form_repo = FormRepository(db_session)
        self.session_repo = ConversationSessionRepository(db_session)
        self.submission_service = SubmissionService(db_session)

    def start_conversation(self, form_id: str, ip_address: str = None) -> ConversationView:
        form = self.form_repo.get_published_form(form_id)
        if not form:
            raise NotFoundError("Form not found")

        try:
            record = self.session_repo.create_session(form_id, {}, ip_address)
            sequencer = self._build_sequencer(record)
            sequencer.start()
            self.session_repo.save_state(record.session_id, sequencer.to_state())
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to start conversation") from e

        LoggerConfig.log_business_logic(logger, "Start conversation", f"form {form_id}, session {record.session_id}")
        return self._to_view(record, sequencer)

    def get_conversation(self, session_id: str) -> ConversationView:
        record = self._get_session(session_id)
        return self._to_view(record, self._build_sequencer(record, record.state))

    def submit_answer(self, session_id: str, payload: AnswerRequest) -> ConversationView:
        return self._run_step(session_id, lambda sequencer: sequencer.submit_answer(payload.field_id, payload.value))

    def send_message(self, session_id: str, message: str) -> ConversationView:
        return self._run_step(session_id, lambda sequencer: sequencer.send_message(message))

    def finalize(self, session_id: str) -> ConversationView:
        return self._run_step(session_id, lambda sequencer: sequencer.finalize())

    def _run_step(self, session_id: str, step) -> ConversationView:
        record = self._get_session(session_id)
        version = record.version
        sequencer = self._build_sequencer(record, record.state)
        was_submitted = sequencer.is_submitted

        try:
            step(sequencer)
        except (AIUnavailableError, MalformedAIOutputError):
            # Keep the rolled-back log so the respondent can retry from there
            self.db.rollback()
            self._save(record, sequencer, version)
            raise
        except IntelliFormError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to store submission") from e

        self._save(record, sequencer, version)
        if sequencer.is_submitted and not was_submitted and self.on_submitted:
            self.on_submitted(sequencer.submission_id)
        return self._to_view(record, sequencer)

    def _save(self, record: ConversationSession, sequencer: FieldSequencer, expected_version: int):
        session_id = record.session_id
        status = SessionStatus.SUBMITTED if sequencer.is_submitted else SessionStatus.ACTIVE
        try:
            saved = self.session_repo.save_state(session_id, sequencer.to_state(), status,
                                                 sequencer.submission_id, expected_version=expected_version)
            if saved:
                self.db.commit()
            else:
                # Another request stored this conversation first; drop everything this step wrote
                self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            LoggerConfig.log_database_operation(logger, "UPDATE", "conversation_sessions", session_id,
                                                success=False, error=str(e))
            raise StorageError("Failed to save conversation") from e

        if not saved:
            logger.warning(f"⚠️ Conversation {session_id} changed since version {expected_version}, step discarded")
            if record.status == SessionStatus.SUBMITTED:
                raise AlreadySubmittedError("This conversation has already been submitted")
            raise SequencerStateError("The conversation was updated by another request, please reload it")

    def _get_session(self, session_id: str) -> ConversationSession:
        record = self.session_repo.get_session_by_id(session_id)
        if not record:
            raise NotFoundError("Conversation not found")
        return record

    def _build_sequencer(self, record: ConversationSession, state: dict = None) -> FieldSequencer:
        form = record.form
        kwargs = dict(
            title=form.title,
            description=form.description,
            max_chat_turns=self.ai_settings.max_chat_turns,
            history_window=self.ai_settings.history_window,
        )
        fields = parse_form_fields(form.fields)
        finalizer = self._make_finalizer(record)
        if state:
            return FieldSequencer.from_state(state, fields, self.ai_service, finalizer, **kwargs)
        return FieldSequencer(fields, self.ai_service, finalizer, **kwargs)

    def _make_finalizer(self, record: ConversationSession):
        def finalizer(answers, ai_conversations) -> str:
            started = record.created_at or datetime.utcnow()
            submission = self.submission_service.create_submission(
                record.form_id,
                answers,
                time_taken=int((datetime.utcnow() - started).total_seconds()),
                ip_address=record.ip_address,
                ai_conversations=ai_conversations
            )
            return submission.submission_id
        return finalizer

    @staticmethod
    def _to_view(record: ConversationSession, sequencer: FieldSequencer) -> ConversationView:
        return ConversationView(
            session_id=record.session_id,
            form_id=record.form_id,
            status=SessionStatus.SUBMITTED.value if sequencer.is_submitted else SessionStatus.ACTIVE.value,
            mode=sequencer.mode.value,
            active_field=sequencer.active_field,
            log=sequencer.log,
            answers=sequencer.answers,
            submission_id=sequencer.submission_id,
            ai_turns=sequencer.ai_turns
        )
