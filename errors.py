# errors.py
"""
Exception taxonomy for itinerary generation.

Only ConfigurationError and NoDistrictFound ever reach the HTTP layer. The
others are raised inside a single resolution attempt and recovered there
(retry, cache miss or unverified placeholder).
"""
from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(EngineError):
    """Request or deployment is missing something the engine cannot work without."""


class NoDistrictFound(EngineError):
    def __init__(self, region_id: Optional[int] = None, country_id: Optional[int] = None) -> None:
        self.region_id = region_id
        self.country_id = country_id
        scope = f"region {region_id}" if region_id is not None else f"country {country_id}"
        super().__init__(f"No districts found for {scope}")


class GenerationFailure(EngineError):
    """AI call failed, timed out or returned something unusable."""

    def __init__(self, reason: str, detail: str = "", name: Optional[str] = None) -> None:
        self.reason = reason
        self.detail = detail
        self.name = name
        super().__init__(f"{reason}: {detail}" if detail else reason)


class VerificationMismatch(EngineError):
    """A proposed place could not be located, or lies outside the district radius."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"{name!r} not verified ({reason})")


class CacheUnavailable(EngineError):
    """Knowledge cache read/write failed; callers treat this as a miss."""
