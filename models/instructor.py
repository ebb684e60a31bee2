# models/instructor.py
from models.entity import Entity, EntityKind

INSTRUCTOR = EntityKind(name="instructor", collection="instructors", label="Instructor")


class Instructor(Entity):
    pass
