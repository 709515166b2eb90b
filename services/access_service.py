import logging
from typing import Dict, Iterable, List, Optional, Sequence

from schemas.submission import Submission
from services.submission_service import submitter_of

logger = logging.getLogger(__name__)

ROLE_HIERARCHY: Dict[str, int] = {
    'super_admin': 100,
    'admin': 80,
    'manager': 60,
    'moderator': 40,
    'user': 20,
    'guest': 10,
}

ADMIN_ROLES = ('admin', 'super_admin', 'manager')
# Roles that may read every submission rather than only their own
FULL_ACCESS_ROLES = ('admin', 'super_admin')
FALLBACK_ROLE = 'user'

FORMS_CREATE = 'forms.create'
FORMS_EDIT = 'forms.edit'
FORMS_DELETE = 'forms.delete'
FORMS_VIEW = 'forms.view'
FORMS_PUBLISH = 'forms.publish'
SUBMISSIONS_VIEW = 'submissions.view'
SUBMISSIONS_EXPORT = 'submissions.export'
SUBMISSIONS_DELETE = 'submissions.delete'
SUBMISSIONS_REVIEW = 'submissions.review'
ANALYTICS_VIEW = 'analytics.view'
ANALYTICS_EXPORT = 'analytics.export'

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    'admin': [
        FORMS_CREATE, FORMS_EDIT, FORMS_DELETE, FORMS_VIEW, FORMS_PUBLISH,
        SUBMISSIONS_VIEW, SUBMISSIONS_EXPORT, SUBMISSIONS_DELETE, SUBMISSIONS_REVIEW,
        ANALYTICS_VIEW, ANALYTICS_EXPORT,
    ],
    'manager': [
        FORMS_CREATE, FORMS_EDIT, FORMS_VIEW, FORMS_PUBLISH,
        SUBMISSIONS_VIEW, SUBMISSIONS_REVIEW, ANALYTICS_VIEW,
    ],
    'user': [FORMS_VIEW],
    'guest': [FORMS_VIEW],
}
ROLE_PERMISSIONS['super_admin'] = ROLE_PERMISSIONS['admin']

class PermissionDeniedError(Exception):
    """Raised when a role lacks the permission an operation needs"""

    def __init__(self, role: Optional[str], permission: str):
        self.role = role
        self.permission = permission
        super().__init__(f"Permission denied: role '{role}' lacks '{permission}'")

def normalize_role(role: Optional[str]) -> str:
    role = (role or '').strip().lower()
    return role if role in ROLE_HIERARCHY else FALLBACK_ROLE

def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(role or '', 0)

def has_higher_role(role: Optional[str], required_role: str) -> bool:
    return role_level(role) >= role_level(required_role)

def is_admin_role(role: Optional[str]) -> bool:
    return role in ADMIN_ROLES

def has_permission(role: Optional[str], permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role or '', [])

def require_permission(role: Optional[str], permission: str) -> None:
    """
    Raise PermissionDeniedError unless the role grants the permission.

    Args:
        role: Caller's role
        permission: Permission name, e.g. 'submissions.export'
    """
    if not has_permission(role, permission):
        logger.warning(f"Denied '{permission}' to role '{role}'")
        raise PermissionDeniedError(role, permission)

def can_view_all_submissions(role: Optional[str]) -> bool:
    return role in FULL_ACCESS_ROLES

def filter_by_role(
    submissions: Iterable[Submission],
    role: Optional[str],
    user_id: Optional[str] = None
) -> List[Submission]:
    """Admins see everything; anyone else sees only what they submitted"""
    if can_view_all_submissions(role):
        return list(submissions)

    owner = user_id or role
    return [submission for submission in submissions if submitter_of(submission) == owner]

def permissions_for(role: Optional[str]) -> Sequence[str]:
    return tuple(ROLE_PERMISSIONS.get(role or '', []))
