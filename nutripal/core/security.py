from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from supabase_auth.errors import AuthApiError
from supabase_auth.types import UserResponse

from nutripal.services.supabase_client import get_supabase

# Tokens are issued by Supabase auth; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token", auto_error=True)


def get_current_user(token: str = Depends(oauth2_scheme)) -> UserResponse:
    """
    FastAPI dependency: resolves ``Authorization: Bearer <token>`` to the
    Supabase user, or answers 401.
    """
    try:
        response = get_supabase().auth.get_user(token)
    except AuthApiError:
        response = None
    if response is None or response.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return response


def current_user_id(current_user: UserResponse = Depends(get_current_user)) -> str:
    return str(current_user.user.id)
