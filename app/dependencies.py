"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, utc_now
from app.core.firebase import is_firebase_initialized
from app.core.payment_gateway import PaymentGatewayClient, get_payment_gateway
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.schemas.appointments import Actor, ActorRole
from app.services.appointment_service import AppointmentService
from app.services.availability_service import AvailabilityService
from app.services.notification_service import NotificationService
from app.services.payment_service import PaymentService
from app.services.practitioner_service import PractitionerService
from app.services.reschedule_service import RescheduleService

# Security
security = HTTPBearer(auto_error=False)


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Actor:
    """
    Extract the calling user and role from the JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Authenticated actor

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise _credentials_error("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    role = payload.get("role")
    if not isinstance(user_id_str, str) or not isinstance(role, str):
        raise _credentials_error()

    try:
        return Actor(id=UUID(user_id_str), role=ActorRole(role))
    except ValueError:
        raise _credentials_error("Invalid user ID or role")


def get_clock() -> Clock:
    """Wall clock used by booking rules."""
    return utc_now


def get_cache_manager() -> CacheManager:
    """Availability cache backed by Redis."""
    return CacheManager(get_redis_client())


def get_notifier() -> NotificationService:
    """Push notifier; silent when Firebase is not configured."""
    return NotificationService(enabled=settings.notifications_enabled and is_firebase_initialized())


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
WallClock = Annotated[Clock, Depends(get_clock)]
Cache = Annotated[CacheManager, Depends(get_cache_manager)]
Notifier = Annotated[NotificationService, Depends(get_notifier)]
Gateway = Annotated[PaymentGatewayClient, Depends(get_payment_gateway)]


def get_availability_service(
    db: DatabaseSession,
    clock: WallClock,
    cache: Cache,
) -> AvailabilityService:
    """Request-scoped availability resolver."""
    return AvailabilityService(db, clock=clock, cache=cache)


def get_practitioner_service(
    db: DatabaseSession,
    clock: WallClock,
    cache: Cache,
) -> PractitionerService:
    """Request-scoped practitioner service."""
    return PractitionerService(db, clock=clock, cache=cache)


def get_appointment_service(
    db: DatabaseSession,
    clock: WallClock,
    cache: Cache,
    notifier: Notifier,
) -> AppointmentService:
    """Request-scoped appointment lifecycle."""
    return AppointmentService(db, clock=clock, notifier=notifier, cache=cache)


def get_reschedule_service(
    db: DatabaseSession,
    clock: WallClock,
    cache: Cache,
    notifier: Notifier,
) -> RescheduleService:
    """Request-scoped reschedule service."""
    return RescheduleService(db, clock=clock, notifier=notifier, cache=cache)


def get_payment_service(
    db: DatabaseSession,
    gateway: Gateway,
    lifecycle: Annotated[AppointmentService, Depends(get_appointment_service)],
    clock: WallClock,
) -> PaymentService:
    """Request-scoped payment service."""
    return PaymentService(db, gateway, lifecycle, clock=clock)


AvailabilityServiceDep = Annotated[AvailabilityService, Depends(get_availability_service)]
PractitionerServiceDep = Annotated[PractitionerService, Depends(get_practitioner_service)]
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
RescheduleServiceDep = Annotated[RescheduleService, Depends(get_reschedule_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
