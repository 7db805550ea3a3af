"""
Lead intake handler.

DETERMINISTIC ONLY. NO AI.

Tenants in after-hours mode (lead_intake_enabled) neither book nor answer
questions. Every call follows the same script: greeting, name (read back
for confirmation), phone, reason and callback urgency. The orchestrator
emails the finished lead to the tenant.
"""

import logging
from dataclasses import dataclass

from voice_agent.core.intelligence.session.models import LeadIntake, Session
from voice_agent.core.intelligence.session.state import LeadStep
from voice_agent.core.intelligence.slots.fallback import (
    extract_bare_name,
    extract_name,
    extract_phone,
    extract_urgency,
)
from voice_agent.core.scheduling.flow import is_readback_accepted, is_readback_denial
from voice_agent.core.tenants import TenantProfile

logger = logging.getLogger(__name__)

CLOSING_MESSAGE = (
    "Thank you for your call. Our team will follow up with you soon. "
    "Is there anything else I can help you with?"
)


@dataclass
class LeadTurn:
    """Reply for one lead intake turn."""

    response: str
    completed: bool = False
    """True only on the turn that finished the lead."""


def lead_greeting(tenant: TenantProfile) -> str:
    """Opening line: the tenant's own greeting, or one built from its profile."""
    if tenant.lead_greeting:
        return tenant.lead_greeting

    parts = [f"Hi there, I'm {tenant.company_name}'s virtual assistant."]
    if tenant.emergency_enabled:
        parts.append("If this is an emergency or time-sensitive, say so now and I'll reach our on-call team.")
    parts.append(
        "We're currently closed, but I can take a few quick details so our team "
        "can follow up first thing. Could I start with your name?"
    )
    return " ".join(parts)


class LeadIntakeHandler:
    """Scripted name/phone/reason/urgency collection."""

    def process(self, session: Session, text: str, tenant: TenantProfile) -> LeadTurn:
        """
        Advance the lead script by one turn.

        Args:
            session: Session holding the lead state
            text: Caller utterance
            tenant: Tenant profile (greeting and reason examples)

        Returns:
            LeadTurn with the reply to speak
        """
        lead = session.lead

        match lead.step:
            case LeadStep.GREETING:
                lead.step = LeadStep.COLLECT_NAME
                return LeadTurn(lead_greeting(tenant))
            case LeadStep.COLLECT_NAME:
                return self._collect_name(lead, text)
            case LeadStep.CONFIRM_NAME:
                return self._confirm_name(lead, text)
            case LeadStep.COLLECT_PHONE:
                return self._collect_phone(lead, text, tenant)
            case LeadStep.COLLECT_REASON:
                return self._collect_reason(lead, text)
            case LeadStep.COLLECT_URGENCY:
                lead.urgency = extract_urgency(text).value
                lead.step = LeadStep.COMPLETED
                logger.info(f"Lead completed for session {session.session_id} ({lead.urgency})")
                return LeadTurn(CLOSING_MESSAGE, completed=True)
            case _:
                return LeadTurn(CLOSING_MESSAGE)

    # === Steps ===

    def _collect_name(self, lead: LeadIntake, text: str) -> LeadTurn:
        name = extract_name(text) or extract_bare_name(text)
        if not name:
            return LeadTurn("I didn't catch your name clearly. Could you please tell me your name again?")

        lead.name = name
        lead.step = LeadStep.CONFIRM_NAME
        return LeadTurn(f"Thanks, I heard your name is {name}. Is that right?")

    def _confirm_name(self, lead: LeadIntake, text: str) -> LeadTurn:
        if is_readback_accepted(text):
            lead.step = LeadStep.COLLECT_PHONE
            return LeadTurn(f"Great, {lead.name}. What's the best phone number to reach you at?")

        if is_readback_denial(text):
            # "No, it's Jon" restates the name in the same breath
            restated = extract_name(text)
            if restated and restated != lead.name:
                lead.name = restated
                return LeadTurn(f"Sorry about that. I have {restated}. Is that right?")
            lead.name = None
            lead.step = LeadStep.COLLECT_NAME
            return LeadTurn("Could you please spell or restate your name for me?")

        return LeadTurn(f"Just to check, is your name {lead.name}? Please say yes or no.")

    def _collect_phone(self, lead: LeadIntake, text: str, tenant: TenantProfile) -> LeadTurn:
        phone = extract_phone(text)
        if not phone:
            return LeadTurn("I didn't catch your phone number clearly. Could you please repeat it?")

        lead.phone = phone
        lead.step = LeadStep.COLLECT_REASON
        return LeadTurn(
            f"Got it, I have {phone}. What's the main reason for your call? "
            f"For example, {tenant.lead_reason_examples}."
        )

    def _collect_reason(self, lead: LeadIntake, text: str) -> LeadTurn:
        reason = text.strip()
        if not reason:
            return LeadTurn("Could you tell me briefly what you're calling about?")

        lead.reason = reason
        lead.step = LeadStep.COLLECT_URGENCY
        return LeadTurn(
            "Got it. Would you like us to call you back on the next business day, "
            "or is there no rush and any day would be fine?"
        )
