from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from typing import List
import logging

import redis

from ..core.clock import Clock, clinic_now
from ..core.config import settings
from ..core.database import get_redis
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, TokenPayload, Actor
)

logger = logging.getLogger(__name__)

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_actor(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> Actor:
    """Build the calling actor from the identity token."""
    if not token_payload.sub or not token_payload.role:
        raise AuthenticationError("Invalid token payload")

    try:
        return Actor(id=int(token_payload.sub), role=UserRole(token_payload.role))
    except ValueError:
        raise AuthenticationError("Invalid token payload")

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        actor: Actor = Depends(get_current_actor)
    ) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

# Specific role dependencies
async def get_admin_actor(
    actor: Actor = Depends(require_role([UserRole.ADMIN]))
) -> Actor:
    """Require admin role."""
    return actor

async def get_doctor_actor(
    actor: Actor = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> Actor:
    """Require doctor or admin role."""
    return actor

async def get_patient_actor(
    actor: Actor = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN]))
) -> Actor:
    """Require patient or admin role."""
    return actor

def get_clock() -> Clock:
    """Wall clock used for every time-relative scheduling decision."""
    return clinic_now

# Rate limiting dependency
def booking_rate_limit(
    actor: Actor = Depends(get_patient_actor),
    redis_client = Depends(get_redis)
) -> None:
    """Cap booking attempts per caller within a rolling window."""
    key = f"rate_limit:book:{actor.role.value}:{actor.id}"

    try:
        current_requests = redis_client.incr(key)
        if current_requests == 1:
            redis_client.expire(key, settings.BOOKING_RATE_WINDOW_SECONDS)
    except redis.RedisError as exc:
        logger.warning(f"Booking rate limit skipped, redis unavailable: {exc}")
        return

    if current_requests > settings.BOOKING_RATE_LIMIT:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking attempts. Please try again later."
        )
