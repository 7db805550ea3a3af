"""Tests for the knowledge search client and answer composition."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from voice_agent.core.agent import knowledge
from voice_agent.core.agent.knowledge import (
    REPHRASE_RESPONSE,
    KnowledgeAgent,
    KnowledgeSearchClient,
    Passage,
    company_info_answer,
    is_contact_query,
)
from voice_agent.core.intelligence.session.models import Session
from voice_agent.core.tenants import TenantProfile
from voice_agent.infra.claude import ClaudeClientError

BASE_URL = "http://knowledge.test"


def make_response(status_code: int, payload=None) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=payload if payload is not None else {},
        request=httpx.Request("POST", f"{BASE_URL}/api/search"),
    )


@pytest.fixture
def tenant():
    return TenantProfile(
        tenant_id="acme",
        company_name="Acme",
        phone="555-0100",
        hours="9 AM to 5 PM, Monday through Friday",
    )


@pytest.fixture
def session():
    return Session(session_id="s1", tenant_id="acme")


@pytest.fixture
def search_client():
    client = MagicMock(spec=KnowledgeSearchClient)
    client.search = AsyncMock(return_value=[Passage(content="We build voice agents for small businesses.", score=0.9)])
    return client


@pytest.fixture
def claude():
    client = MagicMock()
    client.generate = AsyncMock(return_value=MagicMock(content="We build voice agents."))
    return client


class TestSearchClient:
    """Test knowledge service payload handling."""

    @pytest.fixture
    def client(self):
        search = KnowledgeSearchClient(base_url=BASE_URL, timeout=1.0, max_attempts=1)
        search._client = MagicMock()
        return search

    @pytest.mark.asyncio
    async def test_results_sorted_by_score(self, client):
        client._client.request = AsyncMock(return_value=make_response(200, {"results": [
            {"content": "Low", "score": 0.2},
            {"text": "High", "similarity": 0.9, "title": "About"},
            {"content": "", "score": 1.0},
        ]}))

        passages = await client.search("what do you do", tenant_id="acme", limit=5)

        assert [p.content for p in passages] == ["High", "Low"]
        assert passages[0].title == "About"
        payload = client._client.request.call_args.kwargs["json"]
        assert payload == {"query": "what do you do", "tenant_id": "acme", "limit": 5}

    @pytest.mark.asyncio
    async def test_passages_key(self, client):
        client._client.request = AsyncMock(return_value=make_response(200, {"passages": [{"content": "A"}]}))

        passages = await client.search("q")

        assert passages == [Passage(content="A")]

    @pytest.mark.asyncio
    async def test_server_error_returns_empty(self, client):
        client._client.request = AsyncMock(return_value=make_response(500))

        assert await client.search("q") == []

    @pytest.mark.asyncio
    async def test_bad_payload_returns_empty(self, client):
        client._client.request = AsyncMock(return_value=make_response(200, {"results": "nope"}))

        assert await client.search("q") == []


class TestCompanyInfo:
    """Test contact answers from the tenant profile."""

    def test_hours(self, tenant):
        assert company_info_answer("when are you open?", tenant) == "Our hours are 9 AM to 5 PM, Monday through Friday."

    def test_phone(self, tenant):
        assert company_info_answer("what's your phone number", tenant) == "You can call us at 555-0100."

    def test_missing_detail_falls_back_to_contact(self, tenant):
        """Test an address question without an address gives the phone."""
        assert "555-0100" in company_info_answer("what's your address", tenant)

    def test_nothing_configured(self):
        assert company_info_answer("what's your phone number", TenantProfile(tenant_id="bare")) is None

    @pytest.mark.parametrize("text,expected", [
        ("how can I contact you", True),
        ("where are you located", True),
        ("what does the product cost", False),
    ])
    def test_is_contact_query(self, text, expected):
        assert is_contact_query(text) is expected


class TestKnowledgeAgent:
    """Test the answer cascade."""

    @pytest.mark.asyncio
    async def test_claude_answer(self, search_client, claude, session, tenant):
        agent = KnowledgeAgent(search_client=search_client, claude_client=claude)

        answer = await agent.answer("what do you do", session, tenant)

        assert answer.answered is True
        assert answer.source == "knowledge"
        assert answer.text == "We build voice agents."
        search_client.search.assert_awaited_once_with("what do you do", tenant_id="acme")
        system_prompt = claude.generate.call_args.kwargs["system_prompt"]
        assert "Acme" in system_prompt
        assert "We build voice agents for small businesses." in system_prompt

    @pytest.mark.asyncio
    async def test_top_passage_without_claude(self, search_client, session, tenant):
        agent = KnowledgeAgent(search_client=search_client)

        with patch.object(knowledge.settings, "anthropic_api_key", None):
            answer = await agent.answer("what do you do", session, tenant)

        assert answer.answered is True
        assert answer.text == "We build voice agents for small businesses."

    @pytest.mark.asyncio
    async def test_no_answer_falls_back_to_contact(self, search_client, claude, session, tenant):
        claude.generate.return_value = MagicMock(content="NO_ANSWER")
        agent = KnowledgeAgent(search_client=search_client, claude_client=claude)

        answer = await agent.answer("what are your hours", session, tenant)

        assert answer.answered is True
        assert answer.source == "company_info"
        assert "9 AM to 5 PM" in answer.text

    @pytest.mark.asyncio
    async def test_rephrase_when_nothing_found(self, search_client, claude, session, tenant):
        search_client.search.return_value = []
        agent = KnowledgeAgent(search_client=search_client, claude_client=claude)

        answer = await agent.answer("what is the meaning of life", session, tenant)

        assert answer.answered is False
        assert answer.text == REPHRASE_RESPONSE
        claude.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_claude_error_rephrases(self, search_client, claude, session, tenant):
        claude.generate.side_effect = ClaudeClientError("overloaded")
        agent = KnowledgeAgent(search_client=search_client, claude_client=claude)

        answer = await agent.answer("tell me about the product", session, tenant)

        assert answer.answered is False

    @pytest.mark.asyncio
    async def test_history_passed_without_current_question(self, search_client, claude, session, tenant):
        """Test the logged question is not sent twice."""
        session.add_message("user", "I run a bakery")
        session.add_message("assistant", "Nice! How can I help?")
        session.add_message("user", "would it work for me")
        agent = KnowledgeAgent(search_client=search_client, claude_client=claude)

        await agent.answer("would it work for me", session, tenant)

        kwargs = claude.generate.call_args.kwargs
        assert kwargs["prompt"] == "would it work for me"
        assert [m["content"] for m in kwargs["history"]] == ["I run a bakery", "Nice! How can I help?"]
