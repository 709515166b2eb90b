import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.form import DEFAULT_SUBMISSION_STATUS, FormSubmission
from schemas.submission import Submission
from services.access_service import PermissionDeniedError, SUBMISSIONS_VIEW, can_view_all_submissions
from services.date_service import to_utc
from services.submission_service import submitter_of

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    'submitted_at': FormSubmission.submitted_at,
    'status': FormSubmission.status,
    'submitted_by': FormSubmission.submitted_by,
}

class PersistenceError(Exception):
    """Raised when the submission store fails to read or write"""
    pass

Listener = Callable[[Submission], None]

class SubmissionBroadcaster:
    """Fan saved submissions out to in-process listeners, keyed by form id"""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, form_id: str, callback: Listener) -> Callable[[], None]:
        """
        Register a callback for new submissions to a form.

        Returns:
            Function that removes the callback again
        """
        self._listeners.setdefault(form_id, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(form_id, [])
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._listeners.pop(form_id, None)

        return unsubscribe

    def publish(self, submission: Submission) -> None:
        for callback in list(self._listeners.get(submission.form_id, [])):
            try:
                callback(submission)
            except Exception as e:
                logger.error(f"Submission listener failed for form {submission.form_id}: {str(e)}")

    def listener_count(self, form_id: str) -> int:
        return len(self._listeners.get(form_id, []))

# Global broadcaster instance
submission_broadcaster = SubmissionBroadcaster()

class SubmissionRepository:
    def __init__(self, session: AsyncSession, broadcaster: Optional[SubmissionBroadcaster] = None):
        self.session = session
        self.broadcaster = broadcaster or submission_broadcaster

    async def save_submission(
        self,
        form_id: str,
        data: Dict[str, Any],
        submitted_by: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> Submission:
        """Store a new submission and notify listeners of its form"""
        try:
            db_submission = FormSubmission(
                form_id=form_id,
                data=data,
                status=DEFAULT_SUBMISSION_STATUS,
                flags=[],
                submitted_by=submitted_by,
                user_agent=user_agent,
                ip_address=ip_address
            )
            self.session.add(db_submission)
            await self.session.commit()
            await self.session.refresh(db_submission)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save submission: {str(e)}") from e

        submission = Submission.model_validate(db_submission)
        logger.info(f"Saved submission {submission.id} for form {form_id}")
        self.broadcaster.publish(submission)
        return submission

    async def get_submissions(
        self,
        form_id: Optional[str],
        role: Optional[str] = None,
        user_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> List[Submission]:
        """
        Fetch submissions of a form, newest first by default.

        Callers without full access only get the submissions they made.

        Args:
            form_id: Form to read; None reads every form
            role: Caller's role
            user_id: Caller's id, used for ownership when not an admin
            options: Optional 'status', 'start_date', 'end_date', 'order_by',
                'order_direction', 'limit' and 'offset'
        """
        options = options or {}
        query = select(FormSubmission)

        if form_id:
            query = query.where(FormSubmission.form_id == form_id)

        if role and not can_view_all_submissions(role):
            query = query.where(FormSubmission.submitted_by == (user_id or role))

        if options.get('status'):
            query = query.where(FormSubmission.status == options['status'])

        start_date = to_utc(options.get('start_date'))
        if start_date:
            query = query.where(FormSubmission.submitted_at >= start_date)

        end_date = to_utc(options.get('end_date'))
        if end_date:
            query = query.where(FormSubmission.submitted_at <= end_date)

        column = SORTABLE_COLUMNS.get(options.get('order_by') or 'submitted_at', FormSubmission.submitted_at)
        direction = options.get('order_direction') or 'desc'
        query = query.order_by(column.asc() if direction == 'asc' else column.desc())

        if options.get('limit'):
            query = query.limit(options['limit'])
        if options.get('offset'):
            query = query.offset(options['offset'])

        try:
            result = await self.session.execute(query)
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch submissions: {str(e)}") from e

        logger.info(f"Fetched {len(rows)} submissions for form {form_id}")
        return [Submission.model_validate(row) for row in rows]

    async def _get_row(self, submission_id: str) -> Optional[FormSubmission]:
        try:
            result = await self.session.execute(
                select(FormSubmission).where(FormSubmission.id == submission_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch submission: {str(e)}") from e

    async def get_submission(
        self,
        submission_id: str,
        role: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Optional[Submission]:
        row = await self._get_row(submission_id)
        if row is None:
            return None

        submission = Submission.model_validate(row)
        if role and not can_view_all_submissions(role) and submitter_of(submission) != (user_id or role):
            raise PermissionDeniedError(role, SUBMISSIONS_VIEW)
        return submission

    async def update_status(self, submission_id: str, status: str) -> Optional[Submission]:
        row = await self._get_row(submission_id)
        if row is None:
            return None

        try:
            row.status = status
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update submission: {str(e)}") from e

        logger.info(f"Submission {submission_id} status set to {status}")
        return Submission.model_validate(row)

    async def delete_submission(self, submission_id: str) -> bool:
        row = await self._get_row(submission_id)
        if row is None:
            return False

        try:
            await self.session.delete(row)
            await self.session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete submission: {str(e)}") from e

        logger.info(f"Deleted submission {submission_id}")
        return True
