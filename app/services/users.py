from sqlalchemy.orm import Session

from app.models.user import User, UserRole
from app.services.common import get_or_404
from app.services.errors import PermissionDenied


def get_user(db: Session, user_id) -> User:
    return get_or_404(db, User, user_id, detail="User not found")


def require_admin(db: Session, user_id) -> User:
    user = get_user(db, user_id)
    if user.role != UserRole.admin or not user.is_active:
        raise PermissionDenied("Admin role required")
    return user
