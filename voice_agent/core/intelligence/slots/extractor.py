"""
Slot extraction with an LLM primary and a deterministic fallback.

Every field (name, email, service) runs through one ExtractorChain:
the Claude-backed extractor is tried first; if it raises, returns null, or
returns a value that fails the field's validation, the rule-based extractor
answers instead.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from voice_agent.config import settings
from voice_agent.core.tenants import TenantProfile
from voice_agent.infra.claude import ClaudeClient, get_claude_client, parse_json_reply
from . import fallback
from .spelling import is_valid_email, normalize_email, title_case_name
from .types import Extraction, ExtractionSource, SlotField

logger = logging.getLogger(__name__)


NAME_PROMPT = """Extract the caller's name from this phone-call utterance.

The caller may spell letters out ("j-o-h-n"), restate it, or correct
themselves ("no wait, it's actually Jon"). Always return the LAST name given.
Do not invent a name; greetings and filler are not names.
{context}
Utterance: "{message}"

Respond with ONLY valid JSON:
{{"name": "<full name or null>"}}"""


EMAIL_PROMPT = """Extract the caller's email address from this phone-call utterance.

Spoken forms are common: "john at gmail dot com", "j-o-h-n at g-m-a-i-l dot c-o-m",
"underscore", "dash". Convert them to a normal address. If the caller restates
or corrects the address, return the LAST one given.
{context}
Utterance: "{message}"

Respond with ONLY valid JSON:
{{"email": "<address or null>"}}"""


SERVICE_PROMPT = """A caller to {company} is booking an appointment. Decide which service they want.

Offered services:
{services}

Pick the closest offered service. If none fits, reply with a short (2-4 word)
label describing what they asked for.
{context}
Utterance: "{message}"

Respond with ONLY valid JSON:
{{"service": "<service label>"}}"""


_NULL_STRINGS = {"", "null", "none", "unknown", "n/a"}


@dataclass
class ExtractionContext:
    """What an extractor may know besides the utterance."""

    tenant: TenantProfile
    history: list[dict] = field(default_factory=list)

    def history_block(self) -> str:
        """Recent conversation lines for prompts."""
        if not self.history:
            return ""
        lines = ["", "Recent conversation:"]
        for turn in self.history[-settings.history_context_messages:]:
            role = "Caller" if turn.get("role") == "user" else "Agent"
            lines.append(f"- {role}: {str(turn.get('content', ''))[:150]}")
        lines.append("")
        return "\n".join(lines)


class Extractor(ABC):
    """Turns free text into one slot value, or None."""

    def __init__(self, slot: SlotField):
        self.slot = slot

    @abstractmethod
    async def extract(self, text: str, context: ExtractionContext) -> Optional[str]:
        """Extract a raw value. May raise; the chain handles failures."""


class ClaudeFieldExtractor(Extractor):
    """LLM extractor that asks for a single-key JSON object."""

    def __init__(
        self,
        slot: SlotField,
        prompt_template: str,
        claude_client: Optional[ClaudeClient] = None,
    ):
        super().__init__(slot)
        self._prompt_template = prompt_template
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    def build_prompt(self, text: str, context: ExtractionContext) -> str:
        """Fill the prompt template."""
        services = "\n".join(f"- {option.label}" for option in context.tenant.service_catalog)
        return self._prompt_template.format(
            message=text.replace('"', "'"),
            context=context.history_block(),
            company=context.tenant.company_name,
            services=services or f"- {context.tenant.default_service}",
        )

    async def extract(self, text: str, context: ExtractionContext) -> Optional[str]:
        client = await self._get_client()
        response = await client.generate(
            prompt=self.build_prompt(text, context),
            model=settings.claude_extraction_model,
            max_tokens=100,
            temperature=0,
        )

        try:
            data = parse_json_reply(response.content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Unparseable {self.slot.value} extraction: {response.content[:80]!r}") from e

        value = data.get(self.slot.value) if isinstance(data, dict) else None
        if value is None or str(value).strip().lower() in _NULL_STRINGS:
            return None
        return str(value).strip()


class RuleExtractor(Extractor):
    """Deterministic extractor wrapping a plain function."""

    def __init__(self, slot: SlotField, func: Callable[[str, ExtractionContext], Optional[str]]):
        super().__init__(slot)
        self._func = func

    async def extract(self, text: str, context: ExtractionContext) -> Optional[str]:
        return self._func(text, context)


def _clean_name(value: str) -> Optional[str]:
    value = value.strip(" .,!?\"'")
    if not value or any(ch.isdigit() for ch in value) or "@" in value:
        return None
    if len(value.split()) > 4:
        return None
    return title_case_name(value)


def _clean_email(value: str) -> Optional[str]:
    candidate = normalize_email(value)
    return candidate if is_valid_email(candidate) else None


def _clean_service(value: str) -> Optional[str]:
    value = value.strip(" .,!?\"'")
    if not value or len(value) > 60:
        return None
    return value[0].upper() + value[1:]


class ExtractorChain:
    """Primary-then-fallback policy for one slot field."""

    def __init__(
        self,
        slot: SlotField,
        fallback_extractor: Extractor,
        clean: Callable[[str], Optional[str]],
        primary: Optional[Extractor] = None,
    ):
        self.slot = slot
        self.primary = primary
        self.fallback = fallback_extractor
        self._clean = clean

    def _accept(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self._clean(value)

    async def run(self, text: str, context: ExtractionContext) -> Extraction:
        """Extract the field, falling back on any primary failure.

        Returns:
            Extraction with value None only when the fallback found nothing
        """
        primary_error = None

        if self.primary is not None:
            try:
                value = self._accept(await self.primary.extract(text, context))
                if value is not None:
                    logger.debug(f"{self.slot.value} extracted by primary: {value!r}")
                    return Extraction(field=self.slot, value=value, source=ExtractionSource.PRIMARY)
            except Exception as e:
                primary_error = str(e)
                logger.warning(f"Primary {self.slot.value} extractor failed, using fallback: {e}")

        value = self._accept(await self.fallback.extract(text, context))
        if value is not None:
            logger.debug(f"{self.slot.value} extracted by fallback: {value!r}")
            return Extraction(
                field=self.slot,
                value=value,
                source=ExtractionSource.FALLBACK,
                primary_error=primary_error,
            )

        return Extraction(field=self.slot, primary_error=primary_error)


class SlotExtractor:
    """Name, email and service extraction for the dialogue components."""

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        use_llm: Optional[bool] = None,
    ):
        """Initialize extractor chains.

        Args:
            claude_client: Optional Claude client (for testing)
            use_llm: Force the LLM primary on/off. Defaults to on when a
                client is given or an API key is configured.
        """
        if use_llm is None:
            use_llm = claude_client is not None or bool(settings.anthropic_api_key)

        def primary(slot: SlotField, template: str) -> Optional[Extractor]:
            if not use_llm:
                return None
            return ClaudeFieldExtractor(slot, template, claude_client=claude_client)

        self.name_chain = ExtractorChain(
            SlotField.NAME,
            fallback_extractor=RuleExtractor(SlotField.NAME, lambda text, ctx: fallback.extract_name(text)),
            clean=_clean_name,
            primary=primary(SlotField.NAME, NAME_PROMPT),
        )
        self.email_chain = ExtractorChain(
            SlotField.EMAIL,
            fallback_extractor=RuleExtractor(SlotField.EMAIL, lambda text, ctx: fallback.extract_email(text)),
            clean=_clean_email,
            primary=primary(SlotField.EMAIL, EMAIL_PROMPT),
        )
        self.service_chain = ExtractorChain(
            SlotField.SERVICE,
            fallback_extractor=RuleExtractor(
                SlotField.SERVICE, lambda text, ctx: fallback.extract_service(text, ctx.tenant)
            ),
            clean=_clean_service,
            primary=primary(SlotField.SERVICE, SERVICE_PROMPT),
        )

    async def extract_name(
        self,
        text: str,
        tenant: TenantProfile,
        history: Optional[list[dict]] = None,
    ) -> Extraction:
        """Extract the caller's name (value None when none was given)."""
        return await self.name_chain.run(text, ExtractionContext(tenant, history or []))

    async def extract_email(
        self,
        text: str,
        tenant: TenantProfile,
        history: Optional[list[dict]] = None,
    ) -> Extraction:
        """Extract a syntactically valid email (value None when none was given)."""
        return await self.email_chain.run(text, ExtractionContext(tenant, history or []))

    async def extract_service(
        self,
        text: str,
        tenant: TenantProfile,
        history: Optional[list[dict]] = None,
    ) -> Extraction:
        """Extract a service label. Always yields a value."""
        result = await self.service_chain.run(text, ExtractionContext(tenant, history or []))
        if result.value is None:
            result.value = tenant.default_service
            result.source = ExtractionSource.FALLBACK
        return result


# Singleton
_extractor: Optional[SlotExtractor] = None


def get_slot_extractor() -> SlotExtractor:
    """Get singleton SlotExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = SlotExtractor()
    return _extractor
