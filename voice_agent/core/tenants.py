"""
Tenant profiles.

A tenant is the business a caller reaches. Its profile scopes the service
catalog, business-specific intent categories, emergency handling, booking
flow variant, after-hours lead intake and the contact details quoted back
to callers.

Profiles come from the JSON file named by settings.tenant_config_path
(a list of objects) and fall back to the built-in default profile.
"""

import json
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from voice_agent.config import settings

logger = logging.getLogger(__name__)


class ServiceOption(BaseModel):
    """A bookable service and the keywords that select it."""

    label: str
    keywords: list[str] = Field(default_factory=list)
    requires_all: bool = False
    """When True every keyword must appear (e.g. 'call' AND 'automation')."""


class TenantProfile(BaseModel):
    """Business configuration for one tenant."""

    tenant_id: str
    company_name: str = "our team"
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    hours: Optional[str] = None

    service_catalog: list[ServiceOption] = Field(default_factory=list)
    default_service: str = "Product demo"

    intent_categories: dict[str, list[str]] = Field(default_factory=dict)
    """Business-specific intent categories: name -> regex patterns."""

    emergency_enabled: bool = False
    emergency_message: str = (
        "I understand this is urgent. Let me connect you with our on-call team right away."
    )

    lead_intake_enabled: bool = False
    """After-hours mode: every call collects a callback lead instead of booking."""
    lead_email: Optional[str] = None
    """Lead recipient; falls back to the tenant email."""
    lead_greeting: Optional[str] = None
    lead_reason_examples: str = "a new project, a repair, or something else"

    booking_variant: Literal["review", "confirm"] = "review"
    default_calendar: Optional[Literal["google", "microsoft"]] = None

    @property
    def contact_line(self) -> str:
        """Short 'how to reach us' phrase for error responses."""
        if self.phone:
            return f"call us directly at {self.phone}"
        if self.email:
            return f"email us at {self.email}"
        return "contact us directly"

    @property
    def lead_recipient(self) -> Optional[str]:
        return self.lead_email or self.email


DEFAULT_SERVICE_CATALOG = [
    ServiceOption(label="Call automation demo", keywords=["call", "automation"], requires_all=True),
    ServiceOption(label="Transcript service demo", keywords=["transcript", "meeting"]),
    ServiceOption(label="Voice estimate demo", keywords=["voice", "estimate"], requires_all=True),
    ServiceOption(label="Integration discussion", keywords=["integration", "integrate", "connect"]),
    ServiceOption(label="Pricing consultation", keywords=["pricing", "price", "cost", "quote"]),
    ServiceOption(label="Technical consultation", keywords=["technical", "api", "developer"]),
    ServiceOption(label="Product demo", keywords=["demo", "show", "see how"]),
]


def default_profile(tenant_id: Optional[str] = None) -> TenantProfile:
    """Built-in profile used when no configuration exists for a tenant."""
    return TenantProfile(
        tenant_id=tenant_id or settings.default_tenant_id,
        company_name="SherpaPrompt",
        service_catalog=list(DEFAULT_SERVICE_CATALOG),
        default_service="Product demo",
    )


class TenantRegistry:
    """Lookup of tenant profiles by id."""

    def __init__(self, profiles: Optional[list[TenantProfile]] = None):
        self._profiles: dict[str, TenantProfile] = {}
        for profile in profiles or []:
            self._profiles[profile.tenant_id] = profile

    @classmethod
    def from_file(cls, path: str) -> "TenantRegistry":
        """Load profiles from a JSON file.

        Invalid entries are logged and skipped.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        profiles = []
        for entry in raw:
            try:
                profiles.append(TenantProfile.model_validate(entry))
            except ValidationError as e:
                logger.error(f"Skipping invalid tenant profile {entry.get('tenant_id')}: {e}")
        logger.info(f"Loaded {len(profiles)} tenant profiles from {path}")
        return cls(profiles)

    def get(self, tenant_id: Optional[str]) -> TenantProfile:
        """Get a tenant profile, falling back to the default profile."""
        key = tenant_id or settings.default_tenant_id
        profile = self._profiles.get(key)
        if profile is None:
            profile = self._profiles.get(settings.default_tenant_id)
        if profile is None:
            profile = default_profile(key)
        return profile

    def register(self, profile: TenantProfile) -> None:
        """Add or replace a profile."""
        self._profiles[profile.tenant_id] = profile


# Singleton
_registry: Optional[TenantRegistry] = None


def get_tenant_registry() -> TenantRegistry:
    """Get singleton TenantRegistry."""
    global _registry
    if _registry is None:
        if settings.tenant_config_path:
            _registry = TenantRegistry.from_file(settings.tenant_config_path)
        else:
            _registry = TenantRegistry()
    return _registry
