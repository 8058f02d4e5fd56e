# deps/admin.py
from fastapi import Depends

from app.directory.repository import ADMIN_ROLE
from app.errors import Forbidden
from deps.auth import get_current_user, CurrentUser

def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != ADMIN_ROLE:
        raise Forbidden("ADMIN_REQUIRED", "Admin access required")
    return user
