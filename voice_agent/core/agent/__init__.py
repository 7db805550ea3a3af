"""
Agent Module

Dialogue-level components of the voice agent:
- Dispatch: DialogueOrchestrator, routes each utterance to one handler
- Identity: name/email collection and changes
- Knowledge: knowledge search and Claude-phrased answers
- Handlers: deterministic handlers (emergency, lead intake)
"""

from voice_agent.core.agent.dispatch import (
    DialogueOrchestrator,
    SideEffects,
    TurnResult,
    get_orchestrator,
)
from voice_agent.core.agent.identity import IdentityCollector, IdentityResult, get_identity_collector
from voice_agent.core.agent.knowledge import (
    KnowledgeAgent,
    KnowledgeAnswer,
    KnowledgeSearchClient,
    KnowledgeSearchError,
    Passage,
    get_knowledge_agent,
    get_knowledge_client,
)

# Handlers
from voice_agent.core.agent.handlers.emergency import EmergencyHandler
from voice_agent.core.agent.handlers.lead_intake import LeadIntakeHandler

__all__ = [
    # Dispatch
    "DialogueOrchestrator",
    "SideEffects",
    "TurnResult",
    "get_orchestrator",
    # Identity
    "IdentityCollector",
    "IdentityResult",
    "get_identity_collector",
    # Knowledge
    "KnowledgeAgent",
    "KnowledgeAnswer",
    "KnowledgeSearchClient",
    "KnowledgeSearchError",
    "Passage",
    "get_knowledge_agent",
    "get_knowledge_client",
    # Handlers
    "EmergencyHandler",
    "LeadIntakeHandler",
]
