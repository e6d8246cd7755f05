from sqlalchemy import Column, String, Integer, Float, DateTime, Text
from sqlalchemy.sql import func
from ..database import Base


class SerpResult(Base):
    """One merged SERP entry (URL + authority metrics) of a completed analysis."""

    __tablename__ = "serp_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_log_id = Column(String, nullable=False, index=True)
    keyword = Column(String, nullable=False)

    position = Column(Integer)
    url = Column(Text)
    title = Column(Text)
    description = Column(Text)

    domain_authority = Column(Float, default=0.0)
    page_authority = Column(Float, default=0.0)
    spam_score = Column(Float, default=0.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<SerpResult(keyword='{self.keyword}', position={self.position})>"

    def to_dict(self):
        return {
            "keyword": self.keyword,
            "position": self.position,
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "domain_authority": self.domain_authority,
            "page_authority": self.page_authority,
            "spam_score": self.spam_score,
        }
