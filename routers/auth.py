"""
Auth router
Current-user lookup for platform users holding a Bearer token.
"""

from fastapi import APIRouter, Depends

from auth.security import get_current_user, is_premium
from database import schemas
from database.models import User

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("/me")
def me(current: User = Depends(get_current_user)):
    return {
        "user": schemas.UserOut.model_validate(current).model_dump(),
        "is_premium": is_premium(current),
    }
