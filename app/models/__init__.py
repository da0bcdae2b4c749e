"""SQLAlchemy database models."""
from app.models.base import Base
from app.models.topic import TopicMessage, TopicRecord

__all__ = [
    "Base",
    "TopicMessage",
    "TopicRecord",
]
