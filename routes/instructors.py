# routes/instructors.py
from models.instructor import INSTRUCTOR, Instructor
from .entities import build_entity_router

router = build_entity_router(INSTRUCTOR, Instructor, prefix="/api/instructors")
