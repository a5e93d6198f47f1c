"""Shared cloud cache: lookups and opt-in contributions."""

from pyxposed.cloud._sanitize import sanitize_cloud_text
from pyxposed.cloud.contribution import ContributionQueue
from pyxposed.cloud.lookup import CloudLookupClient
from pyxposed.cloud.state import CloudCacheState

__all__ = [
    "CloudCacheState",
    "CloudLookupClient",
    "ContributionQueue",
    "sanitize_cloud_text",
]
