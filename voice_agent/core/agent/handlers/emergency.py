"""
Emergency handler.

DETERMINISTIC ONLY. NO AI.

Tenants that take urgent calls (emergency_enabled) get a fixed response
from their profile whenever the classifier flags an emergency. The text
never comes from an LLM, so it cannot vary between calls.
"""

import logging
from typing import Any

from voice_agent.core.tenants import TenantProfile

logger = logging.getLogger(__name__)


class EmergencyHandler:
    """Deterministic emergency response handler."""

    def respond(self, message: str, tenant: TenantProfile, session: Any = None) -> str:
        """
        Return the tenant's emergency response.

        Args:
            message: Caller utterance (logged by length only)
            tenant: Tenant profile holding the emergency message
            session: Session (for logging context)

        Returns:
            Fixed emergency response, with the tenant phone when configured
        """
        session_id = getattr(session, "session_id", "unknown") if session else "unknown"
        logger.warning(
            f"Emergency response triggered for session={session_id} "
            f"tenant={tenant.tenant_id} (utterance length {len(message)})"
        )

        response = tenant.emergency_message
        if tenant.phone and tenant.phone not in response:
            response = f"{response} If we get disconnected, call {tenant.phone}."
        return response
