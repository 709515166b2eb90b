from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from typing import List, Dict, Any, Optional
import logging

from database import get_db
from models.form import Form, FormStatus
from schemas.form import FieldDefinition, FormCreate, FormUpdate, FormResponse
from services.access_service import FORMS_CREATE, FORMS_DELETE, FORMS_EDIT, FORMS_VIEW
from services.auth_service import permission_required

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/forms", tags=["forms"])

async def get_form_or_404(db: AsyncSession, form_id: str) -> Form:
    form = await db.get(Form, form_id)
    if not form:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Form not found"
        )
    return form

def form_fields(form: Form) -> List[FieldDefinition]:
    """Field definitions of a stored form, in schema order"""
    return [FieldDefinition.model_validate(field) for field in (form.fields or [])]

@router.post("/", response_model=FormResponse)
async def create_form(
    form_data: FormCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(permission_required(FORMS_CREATE))
):
    """Create a new form endpoint"""
    try:
        field_ids = [field.id for field in form_data.fields]
        if len(field_ids) != len(set(field_ids)):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Field ids must be unique within a form"
            )

        db_form = Form(
            title=form_data.title,
            description=form_data.description,
            fields=[field.model_dump(mode="json") for field in form_data.fields],
            status=form_data.status,
            created_by=current_user["user_id"]
        )

        db.add(db_form)
        await db.commit()
        await db.refresh(db_form)

        logger.info(f"Created new form: {db_form.id}")

        return FormResponse.model_validate(db_form)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating form: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create form"
        )

@router.get("/", response_model=List[FormResponse])
async def list_forms(
    skip: int = 0,
    limit: int = 100,
    form_status: Optional[FormStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(permission_required(FORMS_VIEW))
):
    """List all forms"""
    try:
        query = select(Form)

        if form_status:
            query = query.where(Form.status == form_status)

        query = query.order_by(desc(Form.created_at)).offset(skip).limit(limit)

        result = await db.execute(query)
        forms = result.scalars().all()

        return [FormResponse.model_validate(form) for form in forms]

    except Exception as e:
        logger.error(f"Error listing forms: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list forms"
        )

@router.get("/{form_id}", response_model=FormResponse)
async def get_form(
    form_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(permission_required(FORMS_VIEW))
):
    """Get form details"""
    try:
        form = await get_form_or_404(db, form_id)
        return FormResponse.model_validate(form)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting form {form_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get form"
        )

@router.put("/{form_id}", response_model=FormResponse)
async def update_form(
    form_id: str,
    form_update: FormUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(permission_required(FORMS_EDIT))
):
    """Update form details"""
    try:
        form = await get_form_or_404(db, form_id)

        update_data = form_update.model_dump(exclude_unset=True)
        if form_update.fields is not None:
            update_data["fields"] = [field.model_dump(mode="json") for field in form_update.fields]
        for field, value in update_data.items():
            setattr(form, field, value)

        await db.commit()
        await db.refresh(form)

        logger.info(f"Updated form: {form.id}")

        return FormResponse.model_validate(form)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating form {form_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update form"
        )

@router.delete("/{form_id}")
async def delete_form(
    form_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(permission_required(FORMS_DELETE))
) -> Dict[str, Any]:
    """Delete a form; its submissions are kept"""
    try:
        form = await get_form_or_404(db, form_id)

        await db.delete(form)
        await db.commit()

        logger.info(f"Deleted form: {form_id}")

        return {"message": "Form deleted successfully"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting form {form_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete form"
        )
