"""Incident persistence and the owner-or-admin policy around it.

Creation and deletion run inside ``Database.transaction()`` so the incident
row and its media rows are written or removed together. After a write the
incident is read back in a fresh session and that stored view is returned.
"""
import asyncio
import logging
from typing import Any, Awaitable, Iterable, List, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ireporter.core.database import Database
from ireporter.core.events import (
    INCIDENT_CREATED,
    INCIDENT_DELETED,
    INCIDENT_UPDATED,
    IncidentEventPublisher,
    incident_event,
)
from ireporter.core.exceptions import (
    Forbidden,
    NotFound,
    StoreError,
    StoreTimeout,
    ValidationFailed,
)
from ireporter.core.security import Caller
from ireporter.models.common import new_id, utcnow
from ireporter.models.incident import Incident, MediaFile
from ireporter.models.user import User
from ireporter.schemas.incident import (
    IncidentCreate,
    IncidentOut,
    IncidentStatus,
    IncidentType,
    IncidentUpdate,
    Location,
    MediaIn,
    MediaOut,
    UserSummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DRAFT_ONLY = "draft_only"
OWNER_ANY_STATUS = "owner_any_status"


def accepted_media(entries: Optional[Iterable[Any]]) -> List[MediaIn]:
    """Validate media entries one at a time, dropping the malformed ones."""
    accepted = []
    for index, entry in enumerate(entries or []):
        try:
            accepted.append(MediaIn.model_validate(entry))
        except ValidationError as e:
            logger.warning("Skipping invalid media entry %d: %s", index, e.errors(include_url=False))
    return accepted


async def _insert_media(session: AsyncSession, incident_id: str, media: List[MediaIn]) -> None:
    for item in media:
        session.add(
            MediaFile(
                incident_id=incident_id,
                type=item.type.value,
                url=item.url,
                thumbnail=item.thumbnail,
            )
        )
        await session.flush()


def _incident_query():
    return (
        select(Incident, User.name, User.email)
        .outerjoin(User, Incident.user_id == User.id)
        .options(selectinload(Incident.media))
    )


def _to_view(incident: Incident, user_name: Optional[str], user_email: Optional[str]) -> IncidentOut:
    owner = None
    if user_name is not None or user_email is not None:
        owner = UserSummary(id=incident.user_id, name=user_name, email=user_email)
    return IncidentOut(
        id=incident.id,
        type=incident.type,
        title=incident.title,
        description=incident.description,
        location=Location(
            lat=incident.location_lat,
            lng=incident.location_lng,
            address=incident.location_address,
        ),
        media=[MediaOut.model_validate(m) for m in incident.media],
        status=incident.status,
        admin_comment=incident.admin_comment,
        user_id=incident.user_id,
        user=owner,
        created_at=incident.created_at,
        updated_at=incident.updated_at,
    )


def can_modify(caller: Caller, incident: Incident) -> bool:
    return caller.is_admin or caller.id == incident.user_id


class IncidentService:
    def __init__(
        self,
        db: Database,
        publisher: Optional[IncidentEventPublisher] = None,
        delete_policy: str = DRAFT_ONLY,
        timeout: float = 10.0,
    ):
        self.db = db
        self.publisher = publisher
        self.delete_policy = delete_policy
        self.timeout = timeout

    async def _bounded(self, operation: Awaitable[T], action: str) -> T:
        try:
            return await asyncio.wait_for(operation, self.timeout)
        except asyncio.TimeoutError:
            logger.error("Timed out after %.1fs: %s", self.timeout, action)
            raise StoreTimeout()
        except SQLAlchemyError as e:
            logger.exception("Store failure during %s", action)
            raise StoreError(f"Failed to {action}") from e

    async def _notify(self, event_type: str, incident_id: str, user_id: str, status: Optional[str]):
        if self.publisher is not None:
            await self.publisher.publish(incident_event(event_type, incident_id, user_id, status))

    # Write path

    async def create_incident(self, caller: Caller, payload: IncidentCreate) -> IncidentOut:
        media = accepted_media(payload.media)
        incident_id = await self._bounded(self._insert_incident(caller, payload, media), "create incident")

        try:
            incident = await self._bounded(self._fetch(incident_id), "load incident")
        except StoreError:
            # the row is committed, so this must not look like a retryable timeout
            logger.error("Incident %s was stored but could not be read back", incident_id)
            raise StoreError(f"Incident {incident_id} was created but could not be loaded")
        if incident is None:
            raise StoreError("Failed to retrieve created incident")

        logger.info("Incident %s created by %s with %d media file(s)", incident_id, caller.id, len(incident.media))
        await self._notify(INCIDENT_CREATED, incident.id, incident.user_id, incident.status.value)
        return incident

    async def _insert_incident(self, caller: Caller, payload: IncidentCreate, media: List[MediaIn]) -> str:
        now = utcnow()
        async with self.db.transaction() as session:
            incident = Incident(
                id=new_id(),
                user_id=caller.id,
                type=payload.type.value,
                title=payload.title,
                description=payload.description,
                location_lat=payload.location.lat,
                location_lng=payload.location.lng,
                location_address=payload.location.address,
                status=payload.status.value,
                created_at=now,
                updated_at=now,
            )
            session.add(incident)
            # the parent row must exist before any media row references it
            await session.flush()
            await _insert_media(session, incident.id, media)
        return incident.id

    # Read path

    async def _fetch(self, incident_id: str) -> Optional[IncidentOut]:
        async with self.db.session() as session:
            result = await session.execute(_incident_query().where(Incident.id == incident_id))
            row = result.first()
        if row is None:
            return None
        return _to_view(*row)

    async def _fetch_many(self, *criteria) -> List[IncidentOut]:
        query = _incident_query().order_by(Incident.created_at.desc(), Incident.id.desc())
        for criterion in criteria:
            query = query.where(criterion)
        async with self.db.session() as session:
            result = await session.execute(query)
            rows = result.all()
        return [_to_view(*row) for row in rows]

    async def get_incident(self, incident_id: str) -> IncidentOut:
        incident = await self._bounded(self._fetch(incident_id), "load incident")
        if incident is None:
            raise NotFound("Incident not found")
        return incident

    async def list_incidents(
        self,
        status: Optional[IncidentStatus] = None,
        incident_type: Optional[IncidentType] = None,
    ) -> List[IncidentOut]:
        criteria = []
        if status is not None:
            criteria.append(Incident.status == status.value)
        if incident_type is not None:
            criteria.append(Incident.type == incident_type.value)
        return await self._bounded(self._fetch_many(*criteria), "list incidents")

    async def list_incidents_for_user(self, caller: Caller, user_id: str) -> List[IncidentOut]:
        if not caller.is_admin and caller.id != user_id:
            raise Forbidden()
        return await self._bounded(self._fetch_many(Incident.user_id == user_id), "list user incidents")

    async def list_media(self, incident_id: str) -> List[MediaOut]:
        async def _load():
            async with self.db.session() as session:
                result = await session.execute(
                    select(MediaFile)
                    .where(MediaFile.incident_id == incident_id)
                    .order_by(MediaFile.created_at, MediaFile.id)
                )
                return [MediaOut.model_validate(m) for m in result.scalars().all()]

        return await self._bounded(_load(), "list media")

    # Mutations

    async def update_incident(self, caller: Caller, incident_id: str, payload: IncidentUpdate) -> IncidentOut:
        changes = payload.changes()

        async def _apply():
            async with self.db.transaction() as session:
                incident = await session.get(Incident, incident_id)
                if incident is None:
                    raise NotFound("Incident not found")
                if not can_modify(caller, incident):
                    raise Forbidden()
                if not changes:
                    raise ValidationFailed("No fields to update")
                if "admin_comment" in changes and not caller.is_admin:
                    raise Forbidden("Only admins can set an admin comment")

                for name, value in changes.items():
                    if name == "location":
                        incident.location_lat = value.lat
                        incident.location_lng = value.lng
                        incident.location_address = value.address
                    elif isinstance(value, (IncidentType, IncidentStatus)):
                        setattr(incident, name, value.value)
                    else:
                        setattr(incident, name, value)
                incident.updated_at = utcnow()
                return incident.user_id

        owner_id = await self._bounded(_apply(), "update incident")
        logger.info("Incident %s updated by %s: %s", incident_id, caller.id, sorted(changes))
        return await self._after_update(incident_id, owner_id)

    async def update_incident_status(
        self,
        caller: Caller,
        incident_id: str,
        status: IncidentStatus,
        admin_comment: Optional[str] = None,
    ) -> IncidentOut:
        if not caller.is_admin:
            raise Forbidden("Admin access required")

        async def _apply():
            async with self.db.transaction() as session:
                incident = await session.get(Incident, incident_id)
                if incident is None:
                    raise NotFound("Incident not found")
                incident.status = status.value
                if admin_comment is not None:
                    incident.admin_comment = admin_comment
                incident.updated_at = utcnow()
                return incident.user_id

        owner_id = await self._bounded(_apply(), "update incident status")
        logger.info("Incident %s moved to %s by admin %s", incident_id, status.value, caller.id)
        return await self._after_update(incident_id, owner_id)

    async def append_media(self, caller: Caller, incident_id: str, entries: List[Any]) -> IncidentOut:
        media = accepted_media(entries)

        async def _apply():
            async with self.db.transaction() as session:
                incident = await session.get(Incident, incident_id)
                if incident is None:
                    raise NotFound("Incident not found")
                if not can_modify(caller, incident):
                    raise Forbidden()
                if not media:
                    raise ValidationFailed("No valid media entries")
                await _insert_media(session, incident.id, media)
                incident.updated_at = utcnow()
                return incident.user_id

        owner_id = await self._bounded(_apply(), "append media")
        logger.info("Appended %d media file(s) to incident %s", len(media), incident_id)
        return await self._after_update(incident_id, owner_id)

    async def _after_update(self, incident_id: str, owner_id: str) -> IncidentOut:
        incident = await self._bounded(self._fetch(incident_id), "load incident")
        if incident is None:
            # deleted by a concurrent request after our commit
            raise NotFound("Incident not found")
        await self._notify(INCIDENT_UPDATED, incident_id, owner_id, incident.status.value)
        return incident

    def _check_delete_allowed(self, caller: Caller, incident: Incident) -> None:
        if caller.is_admin:
            return
        if caller.id != incident.user_id:
            raise Forbidden()
        if self.delete_policy == DRAFT_ONLY and incident.status != IncidentStatus.draft.value:
            raise Forbidden("Only draft incidents can be deleted by their owner")

    async def delete_incident(self, caller: Caller, incident_id: str) -> None:
        async def _apply():
            async with self.db.transaction() as session:
                incident = await session.get(Incident, incident_id)
                if incident is None:
                    raise NotFound("Incident not found")
                self._check_delete_allowed(caller, incident)
                owner_id = incident.user_id
                await session.execute(
                    delete(MediaFile).where(MediaFile.incident_id == incident_id).execution_options(synchronize_session=False)
                )
                await session.execute(
                    delete(Incident).where(Incident.id == incident_id).execution_options(synchronize_session=False)
                )
                return owner_id

        owner_id = await self._bounded(_apply(), "delete incident")
        logger.info("Incident %s deleted by %s", incident_id, caller.id)
        await self._notify(INCIDENT_DELETED, incident_id, owner_id, None)
