"""Database package for studycore.

Only StudyDatabase is exported as the public API.
"""

from .database import StudyDatabase

__all__ = ["StudyDatabase"]
