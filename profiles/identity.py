# profiles/identity.py
from __future__ import annotations

from dataclasses import dataclass

from django.db import DatabaseError

from core.errors import AuthenticationRequired, NotFound, StoreUnavailable
from .models import InstructorProfile


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str
    tier: str
    display_name: str


def resolve_identity(user_id) -> Identity:
    """
    Look up who `user_id` is for the engine. A missing id means nobody is signed in;
    an id without an instructor profile is unknown to the compliance system.
    """
    if not user_id:
        raise AuthenticationRequired()
    try:
        profile = InstructorProfile.objects.select_related("user").filter(user_id=user_id).first()
    except (TypeError, ValueError):
        profile = None
    except DatabaseError as e:
        raise StoreUnavailable() from e
    if profile is None:
        raise NotFound(f"No instructor profile for user {user_id}.")
    return Identity(
        user_id=profile.user_id,
        role=profile.role,
        tier=profile.tier,
        display_name=profile.name,
    )
