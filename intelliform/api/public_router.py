from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from intelliform.api.dependencies import (
    get_ai_service, get_client_ip, get_form_service, get_settings, get_submission_service
)
from intelliform.business.ai_service import AIService
from intelliform.business.conversation_service import ConversationService
from intelliform.business.form_service import FormService, SubmissionService
from intelliform.business.problem_service import run_problem_extraction
from intelliform.database.database_config import get_db_session
from intelliform.model.form_schemas import (
    PublicForm, SubmissionCreate, SubmissionCreated, ConversationView, AnswerRequest, MessageRequest
)
from intelliform.utils.logger_config import get_logger
from intelliform.utils.settings import AppSettings

logger = get_logger(__name__)

# Create router
public_router = APIRouter(prefix="/public", tags=["public"])


def schedule_problem_extraction(request: Request, background_tasks: BackgroundTasks, submission_id: str):
    """Queue problem extraction for a new submission when enabled"""
    settings: AppSettings = request.app.state.settings
    if not settings.auto_extract_problems:
        return
    background_tasks.add_task(
        run_problem_extraction,
        request.app.state.db_config,
        request.app.state.ai_service,
        submission_id
    )
    logger.info(f"📋 Problem extraction queued for submission {submission_id}")


def get_conversation_service(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db_session),
    ai_service: AIService = Depends(get_ai_service),
    settings: AppSettings = Depends(get_settings)
) -> ConversationService:
    """Get conversation service instance"""
    return ConversationService(
        db, ai_service, settings.ai,
        on_submitted=lambda submission_id: schedule_problem_extraction(request, background_tasks, submission_id)
    )


@public_router.get("/forms/{form_id}", response_model=PublicForm)
async def load_form(
    form_id: str,
    service: FormService = Depends(get_form_service)
):
    """Load a published form for a respondent (404 "Form not found" otherwise)"""
    return service.load_public_form(form_id)


@public_router.post("/forms/{form_id}/submit", response_model=SubmissionCreated,
                    status_code=status.HTTP_201_CREATED)
async def submit_form(
    form_id: str,
    payload: SubmissionCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    service: SubmissionService = Depends(get_submission_service)
):
    """Submit all answers of a published form at once

    Answers are validated with the same rules as the conversation; the first
    failing rule's message is returned with status 422.
    """
    created = service.submit_public(form_id, payload, get_client_ip(request))
    schedule_problem_extraction(request, background_tasks, created.submission_id)
    return created


@public_router.post("/forms/{form_id}/conversations", response_model=ConversationView,
                    status_code=status.HTTP_201_CREATED)
def start_conversation(
    form_id: str,
    request: Request,
    service: ConversationService = Depends(get_conversation_service)
):
    """Start a conversational session on a published form

    The response carries the greeting and the first active field.
    """
    return service.start_conversation(form_id, get_client_ip(request))


@public_router.get("/conversations/{session_id}", response_model=ConversationView)
def get_conversation(
    session_id: str,
    service: ConversationService = Depends(get_conversation_service)
):
    """Current state of a conversation"""
    return service.get_conversation(session_id)


@public_router.post("/conversations/{session_id}/answer", response_model=ConversationView)
def submit_answer(
    session_id: str,
    payload: AnswerRequest,
    service: ConversationService = Depends(get_conversation_service)
):
    """Answer the active field

    Invalid answers return 422 with the rule's message and leave the field
    active. Answering the last field submits the conversation.
    """
    return service.submit_answer(session_id, payload)


@public_router.post("/conversations/{session_id}/messages", response_model=ConversationView)
def send_message(
    session_id: str,
    payload: MessageRequest,
    service: ConversationService = Depends(get_conversation_service)
):
    """Send a message in the AI conversation of the active field

    When the assistant ends the conversation it is summarized into the
    field's answer. If the AI fails (503/502) the exchange is discarded and
    the respondent can start it again by sending another message.
    """
    return service.send_message(session_id, payload.message)


@public_router.post("/conversations/{session_id}/finalize", response_model=ConversationView)
def finalize_conversation(
    session_id: str,
    service: ConversationService = Depends(get_conversation_service)
):
    """Submit the conversation now with the answers given so far (409 if already submitted)"""
    return service.finalize(session_id)
