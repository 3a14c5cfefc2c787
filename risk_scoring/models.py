"""
Risk Scoring Engine - Persistence Layer.

============================================================
PURPOSE
============================================================
ORM model for persisted candidate risk assessments.

Enables:
- Historical tracking of candidate risk
- Level distribution analytics
- Audit trail of which factors drove an escalation

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Float, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from database.engine import Base


class CandidateRiskAssessmentRecord(Base):
    """
    One persisted RiskAssessment.

    ============================================================
    WHAT IT STORES
    ============================================================
    - Probability and level
    - Ranked factors and the full feature vector (JSON)
    - Journey stage at assessment time
    - Scorer name and engine version

    ============================================================
    """

    __tablename__ = "candidate_risk_assessments"

    # Primary key (matches RiskAssessment.assessment_id)
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    candidate_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="External candidate identifier",
    )

    probability: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Drop-off probability (0-1)",
    )

    risk_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Risk level: minimal, low, medium, high",
    )

    journey_state: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
    )

    scorer_name: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default="",
    )

    factors: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    features: Mapped[Dict[str, float]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    assessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Reference time of the assessment",
    )

    engine_version: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="1.0.0",
    )

    # Audit fields
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_candidate_risk_assessments_candidate", "candidate_id", "assessed_at"),
        Index("ix_candidate_risk_assessments_level", "risk_level"),
        Index("ix_candidate_risk_assessments_assessed_at", "assessed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"CandidateRiskAssessmentRecord("
            f"candidate={self.candidate_id}, "
            f"level={self.risk_level}, "
            f"probability={self.probability:.3f}, "
            f"at={self.assessed_at})"
        )
