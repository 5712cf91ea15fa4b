from sqlalchemy import Column, Integer, String, DateTime, JSON, Text
from datetime import datetime
from threat_inspector.database import Base

class AnalysisRecord(Base):
    __tablename__ = "analysis_history"

    id = Column(Integer, primary_key=True, index=True)

    sender = Column(String(255), index=True)
    sender_domain = Column(String(255), index=True)
    subject = Column(Text)

    threat_score = Column(Integer, default=0)
    threat_level = Column(String(20), index=True)
    reasons = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class AnalysisCache(Base):
    __tablename__ = "analysis_cache"

    id = Column(Integer, primary_key=True, index=True)
    cache_key = Column(String(1024), unique=True, index=True)
    cache_type = Column(String(50), index=True)

    payload = Column(JSON)

    expires_at = Column(DateTime, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
