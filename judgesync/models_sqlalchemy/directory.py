from sqlalchemy import Column, String, Boolean, DateTime, Date, Integer, ForeignKey, Text
from sqlalchemy.sql import func

from judgesync.models_sqlalchemy import Base, JSONType


class Court(Base):
    __tablename__ = "courts"

    id = Column(String(36), primary_key=True)
    courtlistener_id = Column(String(64), nullable=True, unique=True, index=True)
    name = Column(String(255), nullable=False)
    full_name = Column(String(500), nullable=True)
    jurisdiction = Column(String(16), nullable=True, index=True)
    court_type = Column(String(64), nullable=True)
    website = Column(String(500), nullable=True)
    in_use = Column(Boolean, nullable=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Judge(Base):
    __tablename__ = "judges"

    id = Column(String(36), primary_key=True)
    courtlistener_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    court_id = Column(String(36), ForeignKey("courts.id"), nullable=True)
    court_name = Column(String(255), nullable=True)
    jurisdiction = Column(String(16), nullable=True, index=True)
    appointed_date = Column(Date, nullable=True)
    education = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    courtlistener_data = Column(JSONType, nullable=True)
    total_cases = Column(Integer, nullable=False, server_default="0")
    # Last time the decision sync pulled opinions/dockets for this judge.
    decisions_synced_at = Column(DateTime(timezone=True), nullable=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Case(Base):
    """A decided opinion or docket attributed to a judge."""

    __tablename__ = "cases"

    id = Column(String(36), primary_key=True)
    judge_id = Column(String(36), ForeignKey("judges.id"), nullable=True, index=True)
    case_name = Column(String(500), nullable=False)
    case_number = Column(String(100), nullable=True)
    case_type = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)  # decided, pending
    outcome = Column(String(128), nullable=True)
    jurisdiction = Column(String(16), nullable=True)
    filing_date = Column(Date, nullable=True)
    decision_date = Column(Date, nullable=True, index=True)
    summary = Column(Text, nullable=True)
    source_url = Column(String(500), nullable=True)

    # opinion_<id>, cluster_<id> or docket_<id>
    courtlistener_id = Column(String(64), nullable=True, unique=True, index=True)
    docket_hash = Column(String(40), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
