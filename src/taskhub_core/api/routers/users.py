"""User API endpoints."""
from fastapi import APIRouter, Depends

from taskhub_core import models, schemas
from taskhub_core.api.dependencies import get_current_user

router = APIRouter(tags=["users"])


@router.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: models.User = Depends(get_current_user)):
    """
    Get the authenticated user.
    """
    return current_user
