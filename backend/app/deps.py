"""
FastAPI dependencies - get_current_user, get_teacher_user.
"""

from fastapi import Request, HTTPException, Depends
from datetime import datetime, timezone

from .database import db
from .models.user import User


def _session_token(request: Request):
    session_token = request.cookies.get("session_token")
    if not session_token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session_token = auth_header.split(" ")[1]
    return session_token


async def get_current_user(request: Request) -> User:
    """Get current user from the session token (cookie or Bearer header)"""
    session_token = _session_token(request)
    if not session_token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = await db.user_sessions.find_one(
        {"session_token": session_token},
        {"_id": 0}
    )
    if not session:
        raise HTTPException(status_code=401, detail="Invalid session")

    expires_at = session.get("expires_at")
    if expires_at:
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            raise HTTPException(status_code=401, detail="Session expired")

    user = await db.users.find_one(
        {"user_id": session["user_id"]},
        {"_id": 0}
    )
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return User(**user)


async def get_teacher_user(user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is a teacher"""
    if user.role != "teacher":
        raise HTTPException(status_code=403, detail="Teacher access required")
    return user
