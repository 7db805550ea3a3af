"""
Identity Collector.

Collects the caller's name and email before booking or general questions,
and handles name/email changes outside the appointment flow. Email is
always confirmed by spelling it back.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from voice_agent.config import settings
from voice_agent.core.intelligence.session.models import Session
from voice_agent.core.intelligence.slots.extractor import SlotExtractor, get_slot_extractor
from voice_agent.core.intelligence.slots.fallback import extract_bare_name
from voice_agent.core.intelligence.slots.types import ExtractedIdentity
from voice_agent.core.scheduling.flow import detect_direct_changes, is_readback_accepted, is_readback_denial
from voice_agent.core.scheduling.response import ResponseGenerator, get_response_generator
from voice_agent.core.tenants import TenantProfile

logger = logging.getLogger(__name__)

# Utterance was probably an attempt at an email address
EMAIL_ATTEMPT = re.compile(r"@|\bat\b|\bdot\b|\bemail\b", re.IGNORECASE)


@dataclass
class IdentityResult:
    """Reply for an identity turn."""

    response: str
    user_info_changed: bool = False
    completed: bool = False


class IdentityCollector:
    """Slot-fills name and email, accepting both in one utterance."""

    def __init__(
        self,
        slot_extractor: Optional[SlotExtractor] = None,
        response_generator: Optional[ResponseGenerator] = None,
    ):
        self._slot_extractor = slot_extractor
        self._response_generator = response_generator

    def _get_slot_extractor(self) -> SlotExtractor:
        """Get slot extractor."""
        if self._slot_extractor is None:
            self._slot_extractor = get_slot_extractor()
        return self._slot_extractor

    @property
    def responses(self) -> ResponseGenerator:
        if self._response_generator is None:
            self._response_generator = get_response_generator()
        return self._response_generator

    async def extract(self, session: Session, text: str, tenant: TenantProfile) -> ExtractedIdentity:
        """Extract whichever identity fields the session still lacks."""
        extractor = self._get_slot_extractor()
        history = session.recent_history(settings.history_context_messages)
        user = session.user_info
        found = ExtractedIdentity()

        if not user.collected:
            email = await extractor.extract_email(text, tenant, history)
            if email.found:
                found.email = email.value
                found.sources["email"] = email.source.value

        if not user.name:
            name = await extractor.extract_name(text, tenant, history)
            if name.found:
                found.name = name.value
                found.sources["name"] = name.source.value
            elif found.email is None and not EMAIL_ATTEMPT.search(text):
                found.name = extract_bare_name(text)
                if found.name:
                    found.sources["name"] = "bare"

        return found

    async def process(self, session: Session, text: str, tenant: TenantProfile) -> IdentityResult:
        """
        Fill missing identity fields from one utterance.

        A new email is spelled back and only stored once the caller accepts
        it; until then every turn comes back here.

        Args:
            session: Caller session (user_info is mutated)
            text: Caller utterance
            tenant: Tenant profile

        Returns:
            IdentityResult with the next prompt
        """
        user = session.user_info
        if user.pending_email:
            return await self._confirm_email(session, text, tenant)

        found = await self.extract(session, text, tenant)
        changed = False

        if found.name:
            user.name = found.name
            changed = True

        email_rejected = False
        if found.email and not user.propose_email(found.email):
            email_rejected = True

        if found.has_any():
            logger.debug(f"Identity extracted for session {session.session_id}: {found.sources}")

        if user.pending_email:
            return IdentityResult(
                self.responses.email_readback(user.pending_email, user.name),
                user_info_changed=changed,
            )

        if not user.name:
            if user.email:
                return IdentityResult(self.responses.ask_name(), user_info_changed=changed)
            return IdentityResult(self.responses.ask_name_and_email(), user_info_changed=changed)

        if email_rejected or (not found.email and not found.name and EMAIL_ATTEMPT.search(text)):
            return IdentityResult(self.responses.invalid_email(), user_info_changed=changed)

        return IdentityResult(self.responses.ask_email(user.name), user_info_changed=changed)

    async def _confirm_email(self, session: Session, text: str, tenant: TenantProfile) -> IdentityResult:
        """Handle the reply to a spelled-back email."""
        user = session.user_info
        history = session.recent_history(settings.history_context_messages)

        # "no, it's j-o-h-n at ..." restates the address instead of just rejecting it
        extraction = await self._get_slot_extractor().extract_email(text, tenant, history)
        if extraction.found and extraction.value != user.pending_email and user.propose_email(extraction.value):
            return IdentityResult(self.responses.email_readback(user.pending_email, user.name))

        if is_readback_accepted(text):
            previous = user.email
            user.confirm_email()
            logger.info(f"Email confirmed for session {session.session_id}")
            if not user.name:
                return IdentityResult(self.responses.ask_name(), user_info_changed=True)
            if previous and previous != user.email:
                reply = self.responses.email_changed(previous, user.email)
            else:
                logger.info(f"Identity collected for session {session.session_id}")
                reply = self.responses.identity_complete(user)
            return IdentityResult(reply, user_info_changed=True, completed=True)

        if is_readback_denial(text):
            user.reject_email()
            logger.debug(f"Spelled-back email rejected in session {session.session_id}")
            return IdentityResult(self.responses.email_respell(), user_info_changed=True)

        return IdentityResult(self.responses.email_readback_reprompt(user.pending_email))

    async def apply_change(
        self,
        session: Session,
        text: str,
        field_name: str,
        tenant: TenantProfile,
    ) -> IdentityResult:
        """
        Handle "change my name/email" outside the appointment flow.

        A new name in the same utterance is applied right away; a new email
        is spelled back and applied once the caller accepts it. Without a
        value the field is cleared so the next turn goes back through
        collection.
        """
        user = session.user_info
        extractor = self._get_slot_extractor()
        history = session.recent_history(settings.history_context_messages)
        value = next((c.value for c in detect_direct_changes(text) if c.field == field_name), None)

        if field_name == "name":
            new_name = None
            if value:
                extraction = await extractor.extract_name(f"my name is {value}", tenant, history)
                new_name = extraction.value or extract_bare_name(value)
            if new_name:
                old_name = user.name
                user.name = new_name
                logger.info(f"Name changed for session {session.session_id}")
                return IdentityResult(self.responses.name_changed(old_name, new_name), user_info_changed=True)
            user.name = None
            return IdentityResult(self.responses.clarification("name"), user_info_changed=True)

        extraction = await extractor.extract_email(value or text, tenant, history)
        if extraction.found:
            if user.propose_email(extraction.value):
                logger.info(f"Email change pending confirmation for session {session.session_id}")
                return IdentityResult(self.responses.email_readback(user.pending_email))
            return IdentityResult(self.responses.invalid_email())

        user.email = None
        return IdentityResult(self.responses.clarification("email"), user_info_changed=True)


# Singleton
_collector: Optional[IdentityCollector] = None


def get_identity_collector() -> IdentityCollector:
    """Get singleton IdentityCollector."""
    global _collector
    if _collector is None:
        _collector = IdentityCollector()
    return _collector
