"""
Risk Scoring Engine - Repository.

============================================================
PURPOSE
============================================================
Repository pattern implementation for assessment persistence.

Provides clean interface for:
- Saving assessments
- Retrieving the latest assessment per candidate
- Querying a candidate's history
- Level distribution analytics
- Retention cleanup

============================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.engine import transaction_scope

from .models import CandidateRiskAssessmentRecord
from .types import RiskAssessment


logger = logging.getLogger(__name__)


class RiskAssessmentRepository:
    """
    Repository for assessment persistence operations.

    ============================================================
    METHODS
    ============================================================
    - save_assessment: Persist one RiskAssessment
    - get_latest_for_candidate: Most recent record for a candidate
    - get_history: A candidate's records, newest first
    - get_level_distribution: Count per level over a period
    - delete_older_than: Retention cleanup

    ============================================================
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self._session = session

    # --------------------------------------------------------
    # WRITE OPERATIONS
    # --------------------------------------------------------

    async def save_assessment(
        self,
        assessment: RiskAssessment,
        engine_version: str = "1.0.0",
    ) -> CandidateRiskAssessmentRecord:
        """
        Save a risk assessment.

        Args:
            assessment: The RiskAssessment to persist
            engine_version: Version tag stored with the row

        Returns:
            Created record (flushed, not committed)
        """
        record = CandidateRiskAssessmentRecord(
            id=assessment.assessment_id,
            candidate_id=assessment.candidate_id,
            probability=assessment.probability,
            risk_level=assessment.risk_level.value,
            journey_state=assessment.journey_state,
            scorer_name=assessment.scorer_name,
            factors=[factor.to_dict() for factor in assessment.factors],
            features=dict(assessment.features),
            assessed_at=assessment.assessed_at,
            engine_version=engine_version,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def delete_older_than(self, cutoff: datetime) -> int:
        """
        Delete records assessed before cutoff.

        Returns:
            Number of rows deleted
        """
        stmt = delete(CandidateRiskAssessmentRecord).where(
            CandidateRiskAssessmentRecord.assessed_at < cutoff
        )
        result = await self._session.execute(stmt)
        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} risk assessments older than {cutoff.isoformat()}")
        return deleted

    # --------------------------------------------------------
    # READ OPERATIONS
    # --------------------------------------------------------

    async def get_latest_for_candidate(
        self,
        candidate_id: str,
    ) -> Optional[CandidateRiskAssessmentRecord]:
        """
        Get the most recent assessment for a candidate.

        Returns:
            Latest record or None if the candidate was never assessed
        """
        stmt = (
            select(CandidateRiskAssessmentRecord)
            .where(CandidateRiskAssessmentRecord.candidate_id == candidate_id)
            .order_by(desc(CandidateRiskAssessmentRecord.assessed_at))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_history(
        self,
        candidate_id: str,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[CandidateRiskAssessmentRecord]:
        """
        Get a candidate's assessments, newest first.

        Args:
            candidate_id: Candidate to query
            since: Only records assessed at or after this time
            limit: Maximum number of records
        """
        conditions = [CandidateRiskAssessmentRecord.candidate_id == candidate_id]
        if since:
            conditions.append(CandidateRiskAssessmentRecord.assessed_at >= since)

        stmt = (
            select(CandidateRiskAssessmentRecord)
            .where(*conditions)
            .order_by(desc(CandidateRiskAssessmentRecord.assessed_at))
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # --------------------------------------------------------
    # ANALYTICS
    # --------------------------------------------------------

    async def get_level_distribution(
        self,
        hours: int = 24,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Get distribution of risk levels over a time period.

        Args:
            hours: Number of hours to look back
            now: End of the period (defaults to current UTC time)

        Returns:
            Dict mapping level value to count
        """
        since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)

        stmt = (
            select(
                CandidateRiskAssessmentRecord.risk_level,
                func.count(CandidateRiskAssessmentRecord.id),
            )
            .where(CandidateRiskAssessmentRecord.assessed_at >= since)
            .group_by(CandidateRiskAssessmentRecord.risk_level)
        )
        result = await self._session.execute(stmt)

        return {row[0]: row[1] for row in result.all()}


# ============================================================
# FEED SINK
# ============================================================


class AssessmentRepositorySink:
    """
    Feed subscriber that persists every published assessment.

    Each assessment is written in its own transaction so a
    failed write never affects other candidates.
    """

    def __init__(self, session_factory: async_sessionmaker, engine_version: str = "1.0.0"):
        self._session_factory = session_factory
        self._engine_version = engine_version
        self.saved_count = 0

    async def on_assessment(self, assessment: RiskAssessment) -> None:
        async with transaction_scope(self._session_factory) as session:
            await RiskAssessmentRepository(session).save_assessment(
                assessment, engine_version=self._engine_version
            )
        self.saved_count += 1
