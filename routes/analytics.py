from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Any
import logging

from database import get_db
from routes.forms import form_fields, get_form_or_404
from routes.submissions import get_repository
from services.access_service import ANALYTICS_VIEW
from services.analytics_service import analyze, generate_insights
from services.auth_service import permission_required
from services.date_service import TIME_RANGE_DAYS
from services.submission_repository import PersistenceError, SubmissionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

@router.get("/forms/{form_id}")
async def get_form_analytics(
    form_id: str,
    time_range: str = Query("30d", pattern="^(7d|30d|90d|1y|all)$"),
    db: AsyncSession = Depends(get_db),
    repository: SubmissionRepository = Depends(get_repository),
    current_user: dict = Depends(permission_required(ANALYTICS_VIEW))
) -> Dict[str, Any]:
    """Get the analytics snapshot and insights for a specific form"""
    try:
        form = await get_form_or_404(db, form_id)

        # Every submission is loaded so trends can compare against the previous period
        submissions = await repository.get_submissions(
            form_id,
            role=current_user["role"],
            user_id=current_user["user_id"]
        )

        snapshot = analyze(submissions, form_fields(form), time_range)

        return {
            "form_id": form_id,
            "form_title": form.title,
            "analytics": snapshot,
            "insights": generate_insights(snapshot),
            "available_time_ranges": list(TIME_RANGE_DAYS) + ["all"]
        }

    except HTTPException:
        raise
    except PersistenceError as e:
        logger.error(f"Error getting form analytics for {form_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get form analytics"
        )
