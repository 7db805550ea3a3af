"""
Knowledge branch of the dialogue.

Questions that are not goodbyes, identity answers or booking steps are
searched against the tenant's knowledge service and answered by Claude
from the returned passages. Contact, hours and address questions fall back
to the tenant profile when the search finds nothing.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from voice_agent.config import get_settings, settings
from voice_agent.core.intelligence.session.models import Session
from voice_agent.core.tenants import TenantProfile
from voice_agent.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from voice_agent.infra.http import request_with_retry

logger = logging.getLogger(__name__)

REPHRASE_RESPONSE = (
    "I don't have specific information about that. Could you please repeat or rephrase your question?"
)

ANSWER_SYSTEM_PROMPT = """You are the voice receptionist for {company}, answering a caller on the phone.

Answer the caller's question using ONLY the knowledge passages below.
- Be direct and conversational. Two or three short sentences.
- No markdown, lists or headings; your answer is read aloud.
- If the passages do not answer the question, reply exactly: NO_ANSWER

KNOWLEDGE PASSAGES:
{passages}"""

CONTACT_KEYWORDS = re.compile(
    r"\b(?:phone|number|call|telephone|email|address|location|located|where are you|"
    r"reach|contact|hours|open|close|website)\b",
    re.IGNORECASE,
)


class KnowledgeSearchError(Exception):
    """Raised when the knowledge service answers with an unusable payload."""


@dataclass
class Passage:
    """One ranked search hit."""

    content: str
    score: float = 0.0
    title: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Passage":
        """Create from API response dict."""
        return cls(
            content=str(data.get("content", data.get("text", ""))).strip(),
            score=float(data.get("score", data.get("similarity", 0.0)) or 0.0),
            title=data.get("title"),
            category=data.get("category"),
        )


@dataclass
class KnowledgeAnswer:
    """Reply for a knowledge turn.

    answered is False for the rephrase prompt, which must not set the
    follow-up flag.
    """

    text: str
    answered: bool
    source: str = "none"  # knowledge | company_info | none


class KnowledgeSearchClient:
    """
    HTTP client for the knowledge search service.

    Knowledge service exposes:
    - POST /api/search - Ranked passages for a query
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        current = get_settings()
        self.base_url = base_url or current.knowledge_service_url
        self.timeout = timeout or current.knowledge_timeout
        self.max_attempts = max_attempts or current.knowledge_max_retries
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str, tenant_id: Optional[str] = None, limit: Optional[int] = None) -> list[Passage]:
        """
        Search the tenant's knowledge base.

        Args:
            query: Caller question
            tenant_id: Tenant identifier
            limit: Number of passages (defaults to settings.knowledge_top_k)

        Returns:
            Passages best first; empty on failure
        """
        client = await self._get_client()
        payload = {
            "query": query,
            "tenant_id": tenant_id,
            "limit": limit or settings.knowledge_top_k,
        }

        try:
            response = await request_with_retry(
                client, "POST", "/api/search", max_attempts=self.max_attempts, json=payload
            )
            response.raise_for_status()
            data = response.json()

            raw = data.get("results", data.get("passages")) if isinstance(data, dict) else data
            if not isinstance(raw, list):
                raise KnowledgeSearchError("Search payload has no result list")

            passages = [Passage.from_dict(item) for item in raw if isinstance(item, dict)]
            passages = [p for p in passages if p.content]
            passages.sort(key=lambda p: p.score, reverse=True)
            logger.info(f"Knowledge search returned {len(passages)} passages")
            return passages

        except (httpx.HTTPError, KnowledgeSearchError, ValueError) as e:
            logger.error(f"Knowledge search failed: {e}")
            return []

    async def health_check(self) -> bool:
        """Check knowledge service reachability."""
        client = await self._get_client()
        try:
            response = await client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Knowledge service health check failed: {e}")
            return False


def is_contact_query(text: str) -> bool:
    """Caller asks how to reach the business, where it is, or when it is open."""
    return bool(CONTACT_KEYWORDS.search(text))


def company_info_answer(text: str, tenant: TenantProfile) -> Optional[str]:
    """Answer a contact question from the tenant profile, if it holds the detail."""
    lowered = text.lower()

    if re.search(r"\bhours?\b|\bopen\b|\bclose", lowered) and tenant.hours:
        return f"Our hours are {tenant.hours}."
    if re.search(r"\baddress\b|\blocat|\bwhere are you", lowered) and tenant.address:
        return f"We're located at {tenant.address}."
    if re.search(r"\bwebsite\b", lowered) and tenant.website:
        return f"You can visit our website at {tenant.website}."
    if re.search(r"\bemail\b", lowered) and tenant.email:
        return f"Our email address is {tenant.email}."
    if tenant.phone or tenant.email:
        parts = [f"call us at {tenant.phone}" if tenant.phone else None,
                 f"email us at {tenant.email}" if tenant.email else None]
        return f"You can {' or '.join(p for p in parts if p)}."
    return None


class KnowledgeAgent:
    """Answers free-form questions from the knowledge service."""

    def __init__(
        self,
        search_client: Optional[KnowledgeSearchClient] = None,
        claude_client: Optional[ClaudeClient] = None,
    ):
        self._search_client = search_client
        self._claude = claude_client

    def _get_search_client(self) -> KnowledgeSearchClient:
        """Get knowledge search client."""
        if self._search_client is None:
            self._search_client = get_knowledge_client()
        return self._search_client

    async def _get_claude(self) -> Optional[ClaudeClient]:
        """Get Claude client, or None when no API key is configured."""
        if self._claude is None and settings.anthropic_api_key:
            self._claude = await get_claude_client()
        return self._claude

    async def answer(self, question: str, session: Session, tenant: TenantProfile) -> KnowledgeAnswer:
        """
        Answer a caller question.

        Args:
            question: Caller utterance
            session: Caller session (for conversation context)
            tenant: Tenant profile

        Returns:
            KnowledgeAnswer; answered=False means the caller was asked to rephrase
        """
        passages = await self._get_search_client().search(question, tenant_id=tenant.tenant_id)

        if passages:
            text = await self._compose(question, passages, session, tenant)
            if text:
                return KnowledgeAnswer(text, answered=True, source="knowledge")

        if is_contact_query(question):
            info = company_info_answer(question, tenant)
            if info:
                logger.info(f"Answered contact question from tenant profile for {tenant.tenant_id}")
                return KnowledgeAnswer(info, answered=True, source="company_info")

        return KnowledgeAnswer(REPHRASE_RESPONSE, answered=False)

    async def _compose(
        self,
        question: str,
        passages: list[Passage],
        session: Session,
        tenant: TenantProfile,
    ) -> Optional[str]:
        """Phrase an answer from passages; the top passage is used when Claude is unavailable."""
        claude = await self._get_claude()
        if claude is None:
            return passages[0].content

        context = "\n\n".join(
            f"[{i}] {p.title + ': ' if p.title else ''}{p.content}" for i, p in enumerate(passages, 1)
        )
        history = session.recent_history(settings.history_context_messages)
        # The orchestrator has already logged this utterance
        if history and history[-1] == {"role": "user", "content": question}:
            history = history[:-1]

        try:
            response = await claude.generate(
                prompt=question,
                system_prompt=ANSWER_SYSTEM_PROMPT.format(company=tenant.company_name, passages=context),
                model=settings.claude_answer_model,
                max_tokens=300,
                temperature=0.3,
                history=history,
            )
        except ClaudeClientError as e:
            logger.error(f"Knowledge answer generation failed: {e}")
            return None

        text = response.content.strip()
        if not text or "NO_ANSWER" in text:
            return None
        return text


# Singletons
_client: Optional[KnowledgeSearchClient] = None
_agent: Optional[KnowledgeAgent] = None


def get_knowledge_client() -> KnowledgeSearchClient:
    """Get singleton KnowledgeSearchClient."""
    global _client
    if _client is None:
        _client = KnowledgeSearchClient()
    return _client


def get_knowledge_agent() -> KnowledgeAgent:
    """Get singleton KnowledgeAgent."""
    global _agent
    if _agent is None:
        _agent = KnowledgeAgent()
    return _agent
