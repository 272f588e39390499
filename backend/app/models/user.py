"""User and group Pydantic models"""

from pydantic import BaseModel, ConfigDict
from typing import Optional, List


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    role: str = "student"  # student or teacher
    grade: Optional[str] = None  # school class, e.g. "9"
    created_at: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Group(BaseModel):
    model_config = ConfigDict(extra="ignore")
    group_id: str
    name: str = ""
    teacher_id: str
    students: List[str] = []

    def is_teacher(self, user: User) -> bool:
        return self.teacher_id == user.user_id

    def is_student(self, user: User) -> bool:
        return user.user_id in self.students
