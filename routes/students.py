# routes/students.py
from models.student import STUDENT, Student
from .entities import build_entity_router

router = build_entity_router(STUDENT, Student, prefix="/api/students")
