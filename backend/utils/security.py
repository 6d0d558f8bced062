from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from database import get_db
from models.user import Role
from utils.jwt import decode_token

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db=Depends(get_db),
):
    """
    Resolve the bearer token to a user document.
    The role always comes from the stored user, never from the token.
    """
    if not credentials:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        raise _unauthorized("Invalid token payload")

    user = await db.users.find_one({"_id": oid})
    if not user:
        raise _unauthorized("User not found")

    return user


def require_role(*roles: Role):
    allowed = {r.value if isinstance(r, Role) else r for r in roles}

    async def checker(user=Depends(get_current_user)):
        if user.get("role") not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker
