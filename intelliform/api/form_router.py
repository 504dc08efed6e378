from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Response, status

from intelliform.api.dependencies import get_current_user_id, get_form_service, get_submission_service
from intelliform.business.form_service import FormService, SubmissionService
from intelliform.model.form_schemas import (
    FormCreate, FormUpdate, FormDetail, FormSummary, FormAnalytics, SubmissionDetail
)

# Create router
form_router = APIRouter(prefix="/forms", tags=["forms"])


@form_router.post("", response_model=FormDetail, status_code=status.HTTP_201_CREATED)
async def create_form(
    payload: FormCreate,
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """Create a new form owned by the calling user"""
    return service.create_form(user_id, payload)


@form_router.get("", response_model=List[FormSummary])
async def list_forms(
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """List the user's forms, most recently edited first, with response counts"""
    return service.get_user_forms(user_id)


@form_router.get("/{form_id}", response_model=FormDetail)
async def get_form(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """Get one form definition"""
    return service.get_form(user_id, form_id)


@form_router.put("/{form_id}", response_model=FormDetail)
async def update_form(
    form_id: str,
    payload: FormUpdate,
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """Update a form's title, description, fields, settings or published flag

    Only the provided attributes change.
    """
    return service.update_form(user_id, form_id, payload)


@form_router.delete("/{form_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_form(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """Delete a form together with its submissions, problems and conversations"""
    service.delete_form(user_id, form_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@form_router.get("/{form_id}/submissions", response_model=List[SubmissionDetail])
async def get_form_submissions(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SubmissionService = Depends(get_submission_service)
):
    """All submissions of a form, newest first, with their problems"""
    return service.get_form_submissions(user_id, form_id)


@form_router.get("/{form_id}/analytics", response_model=FormAnalytics)
async def get_form_analytics(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """Response statistics for a form

    Total responses, completion rate of conversations, AI interactions,
    average completion time, open problems and the latest responses.
    """
    return service.get_form_analytics(user_id, form_id)


@form_router.get("/{form_id}/export")
async def export_form_submissions(
    form_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FormService = Depends(get_form_service)
):
    """Download the form's submissions as CSV"""
    content = service.export_submissions_csv(user_id, form_id)
    filename = f"{form_id}_submissions_{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
