"""Durable spot records with compare-and-set writes.

Every state change goes through ``conditional_update``: an UPDATE whose
WHERE clause pins the expected status and version. The database decides
which of several racing writers wins; a rejected write returns ``None``.
Each operation runs in its own short session so no transaction or lock is
held across the caller's own awaits.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func as sa_func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spot_handoff.domain.enums import SpotActor, SpotEventType, SpotStatus
from spot_handoff.domain.models import Conversation, Spot, SpotEvent
from spot_handoff.domain.schemas import SpotPredicate, SpotRecord
from spot_handoff.services.change_feed import ChangeFeed, SpotChange

logger = logging.getLogger(__name__)


def predicate_clauses(predicate: SpotPredicate) -> list:
    """Translate a subscription predicate into SQL filter clauses."""
    clauses = []
    if predicate.status is not None:
        clauses.append(Spot.status == predicate.status.value)
    if predicate.city is not None:
        clauses.append(sa_func.lower(Spot.city) == predicate.city.lower())
    if predicate.category is not None:
        clauses.append(Spot.category == predicate.category.value)
    if predicate.owner_id is not None:
        clauses.append(Spot.owner_id == predicate.owner_id)
    if predicate.reserved_by is not None:
        clauses.append(Spot.reserved_by == predicate.reserved_by)
    if predicate.max_price is not None:
        clauses.append(Spot.price <= predicate.max_price)
    return clauses


def _stamp(at: Optional[datetime]) -> dict:
    """created_at override for audit rows; omitted so the column default applies."""
    return {"created_at": at} if at is not None else {}


class SpotStore:
    """Storage collaborator for spots; publishes every commit to the feed."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[ChangeFeed] = None,
    ):
        self._session_factory = session_factory
        self.feed = feed

    def _publish(self, old: Optional[SpotRecord], new: SpotRecord) -> None:
        if self.feed is not None:
            self.feed.publish(SpotChange(old=old, new=new))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, values: dict, actor_id: str) -> SpotRecord:
        """Store a new spot and its ``created`` audit event atomically."""
        async with self._session_factory() as session:
            async with session.begin():
                spot = Spot(**values)
                session.add(spot)
                await session.flush()
                session.add(SpotEvent(
                    spot_id=spot.id,
                    event_type=SpotEventType.CREATED.value,
                    actor=SpotActor.OWNER.value,
                    actor_id=actor_id,
                    from_status=None,
                    to_status=spot.status,
                    **_stamp(values.get("created_at")),
                ))
            record = SpotRecord.model_validate(spot)

        self._publish(None, record)
        return record

    async def conditional_update(
        self,
        expected: SpotRecord,
        values: dict,
        event_type: SpotEventType,
        actor: SpotActor,
        actor_id: str,
        event_data: Optional[dict] = None,
        open_conversation: bool = False,
    ) -> Optional[SpotRecord]:
        """Apply ``values`` only if the row still has ``expected``'s status and version.

        Returns the updated record, or None if another writer got there
        first (or the row is gone). The audit event, and the conversation
        thread when requested, commit in the same transaction as the write.
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Spot)
                    .where(
                        Spot.id == expected.id,
                        Spot.status == expected.status.value,
                        Spot.version == expected.version,
                    )
                    .values(**values, version=Spot.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.info(
                        "Conditional write rejected: spot=%s expected status=%s v%d",
                        expected.id, expected.status.value, expected.version,
                    )
                    return None

                new_status = values.get("status", expected.status)
                session.add(SpotEvent(
                    spot_id=expected.id,
                    event_type=event_type.value,
                    actor=actor.value,
                    actor_id=actor_id,
                    from_status=expected.status.value,
                    to_status=new_status.value if isinstance(new_status, SpotStatus) else new_status,
                    data=event_data,
                    **_stamp(values.get("updated_at")),
                ))
                if open_conversation:
                    session.add(Conversation(
                        spot_id=expected.id,
                        owner_id=expected.owner_id,
                        reserver_id=values["reserved_by"],
                        **_stamp(values.get("updated_at")),
                    ))

                spot = await session.get(Spot, expected.id, populate_existing=True)
                record = SpotRecord.model_validate(spot)

        self._publish(expected, record)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, spot_id: str) -> Optional[SpotRecord]:
        async with self._session_factory() as session:
            spot = await session.get(Spot, spot_id)
            return SpotRecord.model_validate(spot) if spot else None

    async def list_spots(
        self,
        predicate: Optional[SpotPredicate] = None,
        *extra_clauses,
        order_by=None,
        limit: Optional[int] = None,
    ) -> list[SpotRecord]:
        """Return spots matching ``predicate``, filtered in the database."""
        stmt = select(Spot).where(*predicate_clauses(predicate or SpotPredicate()), *extra_clauses)
        stmt = stmt.order_by(order_by if order_by is not None else Spot.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [SpotRecord.model_validate(s) for s in result.scalars().all()]

    async def find_expired(self, now: datetime, limit: int = 500) -> list[SpotRecord]:
        """Available spots whose ``expires_at`` has passed."""
        return await self.list_spots(
            SpotPredicate(status=SpotStatus.AVAILABLE),
            Spot.expires_at <= now,
            order_by=Spot.expires_at.asc(),
            limit=limit,
        )

    async def find_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        predicate: Optional[SpotPredicate] = None,
        *extra_clauses,
    ) -> list[SpotRecord]:
        """Spots inside a lat/lng bounding box (coarse pre-filter for radius search)."""
        return await self.list_spots(
            predicate,
            Spot.lat.between(min_lat, max_lat),
            Spot.lng.between(min_lng, max_lng),
            *extra_clauses,
        )

    async def count_by_status(self, owner_id: str) -> dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Spot.status, sa_func.count(Spot.id))
                .where(Spot.owner_id == owner_id)
                .group_by(Spot.status)
            )
            return {status: count for status, count in result.all()}

    async def events_for(self, spot_id: str) -> list[SpotEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SpotEvent)
                .where(SpotEvent.spot_id == spot_id)
                .order_by(SpotEvent.created_at.asc())
            )
            return list(result.scalars().all())

    async def conversation_for(self, spot_id: str) -> Optional[Conversation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Conversation).where(Conversation.spot_id == spot_id)
            )
            return result.scalar_one_or_none()
