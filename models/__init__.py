# models/__init__.py
from models.base import Base
from models.job import Job
from models.event import Event

__all__ = [
    "Base",
    "Job",
    "Event",
]
