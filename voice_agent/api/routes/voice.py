"""
Voice API Endpoints.

The transport bridge (telephony or browser audio) posts each transcribed
utterance here and speaks back response_text. Closing a session sends the
conversation summary.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from voice_agent.api.middleware.rate_limit import get_tenant_id, require_rate_limit
from voice_agent.core.agent.dispatch import DialogueOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/voice", tags=["Voice"])


class TurnRequest(BaseModel):
    """One transcribed caller utterance."""

    session_id: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Call/session identifier chosen by the transport",
        examples=["CA5f1c9e0d2b"],
    )
    text: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Transcribed caller utterance",
        examples=["I'd like to schedule a demo"],
    )


class TurnResponse(BaseModel):
    """Reply to speak plus side effects."""

    response_text: str = Field(
        ...,
        description="TTS-ready reply",
    )
    session_id: str = Field(
        ...,
        description="Session ID for continuing the conversation",
    )
    side_effects: dict = Field(
        default_factory=dict,
        description="calendar_link, appointment_details, user_info, emergency and lead when present",
    )
    intent: Optional[str] = Field(
        default=None,
        description="Primary intent of the utterance",
    )
    confidence: Optional[float] = Field(
        default=None,
        description="Informational classifier confidence",
    )
    step: Optional[str] = Field(
        default=None,
        description="Appointment flow step after this turn",
    )
    processing_time_ms: Optional[float] = Field(
        default=None,
        description="Processing time in milliseconds",
    )


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "/turn",
    response_model=TurnResponse,
    status_code=status.HTTP_200_OK,
    summary="Process one utterance",
    description="Send a transcribed caller utterance and get the reply to speak.",
    dependencies=[Depends(require_rate_limit)],
    responses={
        200: {"description": "Successful response"},
        422: {"description": "Invalid request"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def turn(
    request: TurnRequest,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: DialogueOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    """
    Process one caller utterance.

    Every failure inside the dialogue is turned into a spoken apology, so
    this endpoint answers 200 for any well-formed request.
    """
    result = await orchestrator.handle_utterance(request.session_id, request.text, tenant_id)
    return TurnResponse(**result.to_dict())


@router.get(
    "/sessions/{session_id}",
    response_model=dict,
    summary="Get session state",
    description="Retrieve the current state of a call session.",
    responses={
        200: {"description": "Session data"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(
    session_id: str,
    orchestrator: DialogueOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Get session information."""
    session = orchestrator.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return session.to_dict()


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a session",
    description="End a call: send the conversation summary and delete the session.",
    responses={
        204: {"description": "Session closed"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def close_session(
    session_id: str,
    orchestrator: DialogueOrchestrator = Depends(get_orchestrator),
) -> None:
    """Close a call session."""
    closed = await orchestrator.close_session(session_id)
    if not closed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    logger.info(f"Session {session_id} closed via API")
