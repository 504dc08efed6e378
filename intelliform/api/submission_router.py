from typing import List

from fastapi import APIRouter, Depends, Query

from intelliform.api.dependencies import (
    get_current_user_id, get_submission_service, get_problem_service
)
from intelliform.business.form_service import SubmissionService
from intelliform.business.problem_service import ProblemService
from intelliform.model.form_schemas import (
    SubmissionDetail, RecentSubmissionList, ProblemModel, ProblemResolutionUpdate
)

# Create router
submission_router = APIRouter(prefix="/submissions", tags=["submissions"])


@submission_router.get("/recent", response_model=RecentSubmissionList)
async def get_recent_submissions(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service)
):
    """Paginated submissions across all of the user's forms, newest first"""
    return service.get_recent_submissions(user_id, page, page_size)


@submission_router.get("/{submission_id}", response_model=SubmissionDetail)
async def get_submission(
    submission_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service)
):
    """One submission with its answers, problems and AI conversations"""
    return service.get_submission(user_id, submission_id)


@submission_router.put("/{submission_id}/problems/{problem_id}", response_model=ProblemModel)
async def update_submission_problem(
    submission_id: str,
    problem_id: str,
    payload: ProblemResolutionUpdate,
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service)
):
    """Resolve or reopen one problem of one submission

    Resolving requires a non-empty resolution comment (400 otherwise).
    """
    return service.set_problem_resolved(
        user_id, submission_id, problem_id, payload.resolved, payload.resolution_comment
    )


@submission_router.post("/{submission_id}/extract-problems", response_model=List[ProblemModel])
def extract_submission_problems(
    submission_id: str,
    user_id: str = Depends(get_current_user_id),
    submission_service: SubmissionService = Depends(get_submission_service),
    problem_service: ProblemService = Depends(get_problem_service)
):
    """Run AI problem extraction for a submission now

    Replaces the submission's problems on success; on failure the existing
    problems stay and the error is returned.
    """
    submission_service.get_submission(user_id, submission_id)
    return problem_service.extract_problems(submission_id)
