from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import ValidationError
from typing import Dict, Any, List, Optional
import json
import logging
from slowapi.util import get_remote_address

from database import get_db
from models.form import FormStatus
from routes.forms import form_fields, get_form_or_404
from schemas.filters import DateRange, FilterCriteria
from schemas.submission import SubmissionCreate, SubmissionStatusUpdate
from services.access_service import (
    PermissionDeniedError,
    SUBMISSIONS_DELETE,
    SUBMISSIONS_EXPORT,
    SUBMISSIONS_REVIEW,
)
from services.auth_service import get_current_user, get_optional_user, permission_required
from services.export_service import export_filename, export_submissions_csv, export_submissions_json
from services.rate_limit_service import SUBMISSION_RATE_LIMIT, limiter, rate_limit_service
from services.submission_repository import PersistenceError, SubmissionRepository
from services.submission_service import (
    filter_submissions,
    get_page_numbers,
    paginate_submissions,
    sort_submissions,
)
from services.validation_service import validate_submission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/submissions", tags=["submissions"])

def get_repository(db: AsyncSession = Depends(get_db)) -> SubmissionRepository:
    return SubmissionRepository(db)

def build_criteria(
    search: str = "",
    status_filter: Optional[List[str]] = None,
    date_range: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    field_filters: Optional[str] = None
) -> FilterCriteria:
    """Assemble FilterCriteria from query parameters, rejecting malformed input with 400"""
    try:
        range_spec = None
        if start_date or end_date:
            range_spec = DateRange(type="custom", start=start_date, end=end_date)
        elif date_range and date_range != "all":
            range_spec = DateRange(type=date_range)

        return FilterCriteria(
            search_term=search,
            status=status_filter or "all",
            date_range=range_spec,
            field_filters=json.loads(field_filters) if field_filters else {}
        )
    except (ValidationError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid filter: {str(e)}"
        )

@router.post("/{form_id}")
@limiter.limit(SUBMISSION_RATE_LIMIT)
async def submit_form(
    form_id: str,
    submission: SubmissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    repository: SubmissionRepository = Depends(get_repository),
    current_user: Optional[dict] = Depends(get_optional_user)
) -> Dict[str, Any]:
    """Validate and store a submission to a published form"""
    try:
        client_ip = get_remote_address(request)

        rate_limit_result = await rate_limit_service.is_rate_limited(
            key=client_ip,
            limit_type="form_submission",
            identifier=form_id
        )
        if not rate_limit_result['allowed']:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=rate_limit_result['error']
            )

        form = await get_form_or_404(db, form_id)
        if form.status != FormStatus.PUBLISHED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Form is not accepting submissions"
            )

        validation = validate_submission(submission.data, form_fields(form))
        if not validation['valid']:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"errors": validation['errors'], "warnings": validation['warnings']}
            )

        saved = await repository.save_submission(
            form_id=form_id,
            data=submission.data,
            submitted_by=current_user["user_id"] if current_user else None,
            user_agent=request.headers.get("user-agent", ""),
            ip_address=client_ip
        )

        return {
            "status": "success",
            "message": "Form submitted successfully",
            "submission_id": saved.id,
            "form_id": form_id,
            "warnings": validation['warnings']
        }

    except HTTPException:
        raise
    except PersistenceError as e:
        logger.error(f"Error saving submission for form {form_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process submission"
        )

@router.get("/{form_id}")
async def list_submissions(
    form_id: str,
    search: str = "",
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    date_range: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    field_filters: Optional[str] = None,
    sort_by: str = "submitted_at",
    sort_order: str = "desc",
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    repository: SubmissionRepository = Depends(get_repository),
    current_user: dict = Depends(get_current_user)
) -> Dict[str, Any]:
    """List a form's submissions with search, filters, sorting and pagination"""
    criteria = build_criteria(search, status_filter, date_range, start_date, end_date, field_filters)
    if sort_order not in ("asc", "desc"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="sort_order must be 'asc' or 'desc'"
        )

    try:
        submissions = await repository.get_submissions(
            form_id,
            role=current_user["role"],
            user_id=current_user["user_id"]
        )
    except PersistenceError as e:
        logger.error(f"Error listing submissions for form {form_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get form submissions"
        )

    filtered = filter_submissions(submissions, criteria)
    ordered = sort_submissions(filtered, sort_by, sort_order)
    result = paginate_submissions(ordered, page, page_size)

    return {
        "items": [item.model_dump(mode="json") for item in result["items"]],
        "pagination": result["pagination"],
        "page_numbers": get_page_numbers(page, result["pagination"]["total_pages"]),
        "total_unfiltered": len(submissions)
    }

@router.get("/{form_id}/export")
async def export_submissions(
    form_id: str,
    export_format: str = Query("csv", alias="format"),
    search: str = "",
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    date_range: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    field_filters: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    repository: SubmissionRepository = Depends(get_repository),
    current_user: dict = Depends(permission_required(SUBMISSIONS_EXPORT))
) -> Response:
    """Download the filtered submissions of a form as CSV or JSON"""
    if export_format not in ("csv", "json"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="format must be 'csv' or 'json'"
        )

    rate_limit_result = await rate_limit_service.is_rate_limited(
        key=current_user["user_id"],
        limit_type="export"
    )
    if not rate_limit_result['allowed']:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=rate_limit_result['error']
        )

    criteria = build_criteria(search, status_filter, date_range, start_date, end_date, field_filters)
    form = await get_form_or_404(db, form_id)

    try:
        submissions = await repository.get_submissions(form_id, role=current_user["role"], user_id=current_user["user_id"])
    except PersistenceError as e:
        logger.error(f"Error exporting submissions for form {form_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to export submissions"
        )

    filtered = filter_submissions(submissions, criteria)

    if export_format == "csv":
        content = export_submissions_csv(filtered, form_fields(form))
        media_type = "text/csv"
    else:
        content = export_submissions_json(filtered, form_title=form.title)
        media_type = "application/json"

    filename = export_filename(form.title, export_format)
    logger.info(f"Exported {len(filtered)} submissions of form {form_id} as {export_format}")
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )

@router.get("/detail/{submission_id}")
async def get_submission(
    submission_id: str,
    repository: SubmissionRepository = Depends(get_repository),
    current_user: dict = Depends(get_current_user)
) -> Dict[str, Any]:
    try:
        submission = await repository.get_submission(
            submission_id,
            role=current_user["role"],
            user_id=current_user["user_id"]
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Error getting submission {submission_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get submission"
        )

    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    return submission.model_dump(mode="json")

@router.patch("/detail/{submission_id}/status")
async def update_submission_status(
    submission_id: str,
    update: SubmissionStatusUpdate,
    repository: SubmissionRepository = Depends(get_repository),
    current_user: dict = Depends(permission_required(SUBMISSIONS_REVIEW))
) -> Dict[str, Any]:
    try:
        submission = await repository.update_status(submission_id, update.status.value)
    except PersistenceError as e:
        logger.error(f"Error updating submission {submission_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update submission"
        )

    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    return submission.model_dump(mode="json")

@router.delete("/detail/{submission_id}")
async def delete_submission(
    submission_id: str,
    repository: SubmissionRepository = Depends(get_repository),
    current_user: dict = Depends(permission_required(SUBMISSIONS_DELETE))
) -> Dict[str, Any]:
    try:
        deleted = await repository.delete_submission(submission_id)
    except PersistenceError as e:
        logger.error(f"Error deleting submission {submission_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete submission"
        )

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    return {"message": "Submission deleted successfully"}
