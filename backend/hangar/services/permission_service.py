# Overview: Service-layer operations for permission; administrator checks for manual operations.

"""
Administrator checks

WHY: Manual review, flight edits/deletion, cancellation and overhaul
registration bypass the OCR safeguards and rewrite ledger history. Only
accounts holding the ADMIN role may run them.

DESIGN PRINCIPLES:
- Fail closed: unknown or inactive users are denied
- Authentication happens upstream; this module only checks the role
"""

from flask import current_app

from ..extensions import db
from ..models import User
from ..models.accounts import ROLE_ADMIN
from ..validation import AuthorizationError


def get_active_user(user_id: int | None) -> User | None:
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def require_admin(user_id: int | None, action: str = "this operation") -> User:
    """
    Return the acting administrator or raise AuthorizationError.

    Denials are logged with the attempted action for the audit trail.
    """
    user = get_active_user(user_id)
    if user is None or user.role != ROLE_ADMIN:
        current_app.logger.warning("Denied %s for user %s: administrator role required", action, user_id)
        raise AuthorizationError(f"Administrator role required for {action}")
    return user
