"""Rating routes - student rating card and leaderboard."""

from fastapi import APIRouter, Depends, HTTPException

from app.deps import get_current_user, get_teacher_user
from app.models.user import User
from app.services.ratings import compute_student_rating, compute_all_ratings

router = APIRouter(tags=["ratings"])


@router.get("/ratings/student/{user_id}")
async def get_student_rating(user_id: str, user: User = Depends(get_current_user)):
    """Rating of one student. Students may only view their own."""
    if user.role == "student" and user.user_id != user_id:
        raise HTTPException(status_code=403, detail="Students can only view their own rating")
    return await compute_student_rating(user_id)


@router.get("/ratings/all")
async def get_all_ratings(user: User = Depends(get_teacher_user)):
    """Leaderboard of all students"""
    return await compute_all_ratings()
