import enum

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON
from sqlalchemy.sql import func
from ..database import Base


class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisLog(Base):
    """Audit row for one webhook analysis request."""

    __tablename__ = "analysis_logs"

    id = Column(String, primary_key=True)
    request_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)

    # Request details
    keywords = Column(JSON, nullable=False)
    country = Column(String)
    page = Column(Integer)

    # Outcome
    status = Column(String, default=AnalysisStatus.PENDING.value, nullable=False)
    results = Column(JSON)
    api_keys_used = Column(JSON)
    error_message = Column(Text)
    processing_time = Column(Integer)  # milliseconds

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<AnalysisLog(request_id='{self.request_id}', status='{self.status}')>"
