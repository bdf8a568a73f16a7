"""Practitioner profiles and availability management."""

from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.exceptions import ForbiddenException, NotFoundException, ValidationException
from app.core.redis_client import CacheManager
from app.repositories.practitioner_repository import PractitionerRepository
from app.schemas.appointments import Actor, ActorRole
from app.schemas.scheduling import (
    AvailabilityResponse,
    PractitionerCreate,
    PractitionerResponse,
    normalize_availability,
)

logger = structlog.get_logger(__name__)


class PractitionerService:
    """Service for practitioner-related operations."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = utc_now,
        cache: CacheManager | None = None,
    ):
        """Initialize service with database session."""
        self.db = db
        self.clock = clock
        self.cache = cache
        self.practitioners = PractitionerRepository(db)

    @staticmethod
    def _ensure_owner(actor: Actor, practitioner_id: UUID) -> None:
        if actor.is_admin:
            return
        if actor.role != ActorRole.PRACTITIONER or actor.id != practitioner_id:
            raise ForbiddenException("Access denied to this practitioner profile")

    async def _get_row(self, practitioner_id: UUID) -> dict[str, Any]:
        practitioner = await self.practitioners.get(practitioner_id)
        if not practitioner:
            raise NotFoundException("Practitioner not found")
        return practitioner

    async def create_practitioner(
        self,
        actor: Actor,
        data: PractitionerCreate,
    ) -> PractitionerResponse:
        """
        Create a practitioner profile, optionally with initial availability.

        Practitioners create their own profile under their account ID; admins
        may create a profile for any ID.

        Args:
            actor: Requesting user
            data: Profile data

        Returns:
            Created practitioner

        Raises:
            ForbiddenException: If actor may not create this profile
            ValidationException: If the profile exists or availability is malformed
        """
        if actor.role == ActorRole.PRACTITIONER:
            if data.id is not None and data.id != actor.id:
                raise ForbiddenException("Practitioners can only create their own profile")
            practitioner_id = actor.id
        elif actor.is_admin:
            practitioner_id = data.id or uuid4()
        else:
            raise ForbiddenException("Only practitioners can create a practitioner profile")

        if await self.practitioners.get(practitioner_id):
            raise ValidationException("Practitioner profile already exists")

        entries = normalize_availability(data.availability) if data.availability else []

        now = self.clock()
        row = await self.practitioners.create(
            {
                "id": practitioner_id,
                "full_name": data.full_name,
                "specialization": data.specialization,
                "consultation_fee": data.consultation_fee,
                "consultation_duration_minutes": data.consultation_duration_minutes,
                "timezone": data.timezone,
                "consultation_modes": data.consultation_modes,
                "created_at": now,
                "updated_at": now,
            }
        )
        if entries:
            await self.practitioners.replace_entries(practitioner_id, entries)
        await self.db.commit()

        logger.info(
            "practitioner_created",
            practitioner_id=str(practitioner_id),
            availability_entries=len(entries),
        )
        return PractitionerResponse.model_validate(row)

    async def get_practitioner(self, practitioner_id: UUID) -> PractitionerResponse:
        """
        Get practitioner by ID.

        Raises:
            NotFoundException: If practitioner not found
        """
        return PractitionerResponse.model_validate(await self._get_row(practitioner_id))

    async def get_availability(self, practitioner_id: UUID) -> AvailabilityResponse:
        """Stored weekly entries and date overrides of a practitioner."""
        await self._get_row(practitioner_id)
        entries = await self.practitioners.list_entries(practitioner_id)
        return AvailabilityResponse(practitioner_id=practitioner_id, entries=entries)

    async def replace_availability(
        self,
        practitioner_id: UUID,
        actor: Actor,
        raw: Any,
    ) -> AvailabilityResponse:
        """
        Replace a practitioner's availability.

        Accepts the list form or the legacy mapping keyed by weekday or ISO
        date. Existing appointments are not affected.

        Raises:
            NotFoundException: If practitioner not found
            ForbiddenException: If actor is not the practitioner or an admin
            ValidationException: If the availability is malformed
        """
        self._ensure_owner(actor, practitioner_id)
        await self._get_row(practitioner_id)

        entries = normalize_availability(raw)
        await self.practitioners.replace_entries(practitioner_id, entries)
        await self.db.commit()

        if self.cache:
            self.cache.delete_pattern(f"availability:{practitioner_id}:*")

        logger.info(
            "availability_replaced",
            practitioner_id=str(practitioner_id),
            entries=len(entries),
        )
        return AvailabilityResponse(practitioner_id=practitioner_id, entries=entries)
