"""
Access Level Resolver - Maps a profile snapshot to a content tier.

Pure functions: no I/O, no clock, never raises. Page and component gates
call these against a freshly loaded profile.
"""

from vault_access.models.api import AccessLevel
from vault_access.models.domain import AccessSummary, UserProfile


def get_access_level(profile: UserProfile | None) -> AccessLevel:
    """
    Determine the access level for a profile.

    Priority order (first match wins):
    1. No profile = restricted
    2. Full unlock = all_access
    3. Course pass = course_pass
    4. Guest = restricted (preview only)
    5. Default = basic (free content only)
    """
    if profile is None:
        return AccessLevel.RESTRICTED

    if profile.has_full_unlock is True:
        return AccessLevel.ALL_ACCESS

    if profile.has_course_pass is True:
        return AccessLevel.COURSE_PASS

    if profile.is_guest is True:
        return AccessLevel.RESTRICTED

    return AccessLevel.BASIC


def can_access_masterclass(profile: UserProfile | None) -> bool:
    """Masterclass content sits above the course pass: full access only."""
    return get_access_level(profile) == AccessLevel.ALL_ACCESS


def can_access_course(profile: UserProfile | None) -> bool:
    """Check if the profile unlocks course content."""
    return get_access_level(profile) in (AccessLevel.ALL_ACCESS, AccessLevel.COURSE_PASS)


def has_studio_access(profile: UserProfile | None) -> bool:
    """Studio-client privileges, independent of the tier ladder."""
    if profile is None:
        return False
    return profile.active_studio_client is True


def describe_access(profile: UserProfile | None) -> AccessSummary:
    """Bundle the tier and every capability check for one profile."""
    return AccessSummary(
        access_level=get_access_level(profile),
        can_access_masterclass=can_access_masterclass(profile),
        can_access_course=can_access_course(profile),
        has_studio_access=has_studio_access(profile),
    )
