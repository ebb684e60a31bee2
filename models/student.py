# models/student.py
from models.entity import Entity, EntityKind

STUDENT = EntityKind(name="student", collection="students", label="Student")


class Student(Entity):
    pass
