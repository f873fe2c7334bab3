"""Profile management: admin setup, creation and timezone updates."""
import logging
import uuid
from typing import List, Optional

from scheduling.errors import (
    AdminExistsError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
)
from scheduling.interval import ensure_timezone, format_instant, utc_now
from scheduling.models import Profile

logger = logging.getLogger(__name__)


class ProfileProcessor:
    """Create and maintain profiles through a storage manager."""
    
    MAX_NAME_LENGTH = 100
    
    def __init__(self, storage):
        self.storage = storage
    
    def setup_admin(self, name: str, timezone: Optional[str] = None) -> Profile:
        """
        Create the first administrator.
        
        Only one admin may exist; the check runs against the profile table.
        
        Raises:
            AdminExistsError: If an admin profile is already stored
        """
        if self.storage.find_admin() is not None:
            logger.warning("Admin setup rejected: admin already exists")
            raise AdminExistsError('Admin already exists')
        
        profile = self._new_profile(name, timezone, is_admin=True)
        self.storage.put_profile(profile)
        logger.info(f"Admin created: {profile.profile_id}")
        return profile
    
    def create_profile(self, name: str,
                       timezone: Optional[str] = None) -> Profile:
        profile = self._new_profile(name, timezone, is_admin=False)
        self.storage.put_profile(profile)
        logger.info(f"Profile created: {profile.profile_id}")
        return profile
    
    def update_timezone(self, profile_id: str, timezone: str) -> Profile:
        if timezone is not None and not isinstance(timezone, str):
            raise ValidationError('Timezone must be a string')
        if not timezone or not timezone.strip():
            raise ValidationError('Timezone is required')
        timezone = timezone.strip()
        ensure_timezone(timezone)
        
        profile = self.storage.update_profile_timezone(
            profile_id, timezone, utc_now()
        )
        if profile is None:
            raise NotFoundError(f"Profile not found: {profile_id}")
        
        logger.info(f"Profile {profile_id} timezone set to {timezone}")
        return profile
    
    def get_profile(self, profile_id: str) -> Profile:
        profile = self.storage.get_profile(profile_id)
        if profile is None:
            raise NotFoundError(f"Profile not found: {profile_id}")
        return profile
    
    def list_profiles(self) -> List[Profile]:
        return self.storage.list_profiles()
    
    def current_profile(self, user_id: Optional[str]) -> Profile:
        """Resolve the caller identified by the user-id request header."""
        if not user_id:
            raise NotAuthenticatedError('User not authenticated')
        return self.get_profile(user_id)
    
    def _new_profile(self, name: Optional[str], timezone: Optional[str],
                     is_admin: bool) -> Profile:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Name is required')
        name = name.strip()
        if len(name) > self.MAX_NAME_LENGTH:
            raise ValidationError(
                f"Name exceeds {self.MAX_NAME_LENGTH} characters"
            )
        
        timezone = timezone or 'UTC'
        if not isinstance(timezone, str):
            raise ValidationError('Timezone must be a string')
        timezone = timezone.strip()
        ensure_timezone(timezone)
        
        now = utc_now()
        return Profile(
            profile_id=str(uuid.uuid4()),
            name=name,
            timezone=timezone,
            is_admin=is_admin,
            created_at=now,
            updated_at=now
        )


def describe_profile(profile: Profile) -> dict:
    return {
        'profile_id': profile.profile_id,
        'name': profile.name,
        'timezone': profile.timezone,
        'is_admin': profile.is_admin,
        'created_at': format_instant(profile.created_at),
        'updated_at': format_instant(profile.updated_at)
    }
