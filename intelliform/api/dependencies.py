from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from intelliform.business.ai_service import AIService
from intelliform.business.form_service import FormService, SubmissionService
from intelliform.business.problem_service import ProblemService
from intelliform.database.database_config import get_db_session
from intelliform.utils.settings import AppSettings


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """The authenticated user's id, set by the auth proxy in front of the service"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user id"
        )
    return x_user_id.strip()


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_form_service(db: Session = Depends(get_db_session)) -> FormService:
    """Get form service instance"""
    return FormService(db)


def get_submission_service(db: Session = Depends(get_db_session)) -> SubmissionService:
    """Get submission service instance"""
    return SubmissionService(db)


def get_problem_service(db: Session = Depends(get_db_session),
                        ai_service: AIService = Depends(get_ai_service)) -> ProblemService:
    """Get problem service instance"""
    return ProblemService(db, ai_service)
