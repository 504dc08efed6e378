from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from intelliform.api.dependencies import (
    get_ai_service, get_current_user_id, get_problem_service, get_submission_service
)
from intelliform.business.ai_service import AIService
from intelliform.business.form_service import SubmissionService
from intelliform.business.problem_service import ProblemService
from intelliform.model.form_schemas import (
    ChatRequest, ChatReply, SummarizeRequest, SummarizeResponse, AIConversationCreate, AIConversationDetail,
    ProblemGroup, ResolveGroupRequest, ResolveGroupResult
)

# Create router
ai_router = APIRouter(prefix="/ai", tags=["ai"])


@ai_router.post("/chat", response_model=ChatReply)
def chat(
    payload: ChatRequest,
    ai_service: AIService = Depends(get_ai_service)
):
    """One assistant turn; ``conversation_finished`` tells the client to summarize"""
    return ai_service.chat(payload.message, [turn.model_dump() for turn in payload.history])


@ai_router.post("/summarize", response_model=SummarizeResponse)
def summarize(
    payload: SummarizeRequest,
    ai_service: AIService = Depends(get_ai_service)
):
    """Summarize a conversation transcript into one sentence"""
    return SummarizeResponse(summary=ai_service.summarize(payload.conversation))


@ai_router.post("/conversations", response_model=AIConversationDetail, status_code=status.HTTP_201_CREATED)
async def save_ai_conversation(
    payload: AIConversationCreate,
    service: SubmissionService = Depends(get_submission_service)
):
    """Store a finished AI conversation for a submission's field"""
    return service.save_ai_conversation(payload)


@ai_router.get("/problem-groups", response_model=List[ProblemGroup])
def get_problem_groups(
    form_id: Optional[str] = Query(None, description="Restrict to one form"),
    user_id: str = Depends(get_current_user_id),
    service: ProblemService = Depends(get_problem_service)
):
    """Unresolved problems of the user's forms grouped into canonical issues

    Sorted by the number of submissions reporting each issue.
    """
    return service.get_problem_groups(user_id, form_id)


@ai_router.post("/problem-groups/resolve", response_model=ResolveGroupResult)
async def resolve_problem_group(
    payload: ResolveGroupRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service)
):
    """Resolve a canonical problem in every listed submission

    A comment is always required. ``updated_count`` counts the submissions
    that still had a matching unresolved problem.
    """
    return service.resolve_grouped_problem(
        user_id, payload.problem, payload.submission_ids, payload.resolution_comment
    )
