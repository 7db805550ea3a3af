"""
Notification Service

Emails the caller a summary of the conversation when the session ends
(goodbye, hangup or expiry), and emails after-hours leads to the tenant.
Delivery is fire-and-forget: dispatch_summary and dispatch_lead schedule
the send on the running loop and never block or fail a turn.

The email API is Resend-compatible: POST /emails with a bearer key.
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

import httpx

from voice_agent.config import get_settings, settings
from voice_agent.core.intelligence.session.models import AppointmentRecord, LeadIntake, Session, UserInfo
from voice_agent.core.tenants import TenantProfile
from voice_agent.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client, parse_json_reply
from voice_agent.infra.http import request_with_retry

logger = logging.getLogger(__name__)

# Minimum conversation worth summarizing
MIN_SUMMARY_MESSAGES = 2

SUMMARY_PROMPT = """Summarize this phone conversation between a caller and the {company} voice assistant.

Conversation:
{transcript}

Return ONLY a JSON object, no other text:
{{"key_points": ["short bullet", "..."], "topics": ["topic", "..."]}}

Use at most 5 key points, written for the caller ("You asked about ...")."""


class NotificationError(Exception):
    """Raised when the email API rejects an email."""


@dataclass
class NotificationResult:
    """Outcome of an email send."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ConversationSummary:
    """Key points and topics for the summary email."""

    key_points: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)


def should_send_summary(user_info: UserInfo, history_length: int) -> bool:
    """Summaries need a collected identity and a real conversation."""
    return user_info.collected and history_length >= MIN_SUMMARY_MESSAGES


def fallback_key_points(history: list[dict], limit: int = 3) -> list[str]:
    """The caller's last questions, used when Claude is unavailable."""
    questions = [m["content"].strip() for m in history if m.get("role") == "user" and m.get("content")]
    return [f"You said: \"{q}\"" for q in questions[-limit:]] or ["You spoke with our voice assistant."]


class NotificationService:
    """Builds and sends summary and lead emails."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        claude_client: Optional[ClaudeClient] = None,
        enabled: Optional[bool] = None,
    ):
        """Initialize notification service.

        Args:
            api_url: Email API base URL (defaults to settings)
            api_key: Email API key; sends are skipped when unset
            from_address: Sender address
            claude_client: Claude client for key points (for testing)
            enabled: Override settings.summary_emails_enabled
        """
        current = get_settings()
        self.api_url = api_url or current.email_api_url
        self.api_key = api_key if api_key is not None else current.email_api_key
        self.from_address = from_address or current.email_from_address
        self.enabled = current.summary_emails_enabled if enabled is None else enabled
        self._claude = claude_client
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        """Delivery is enabled and has credentials."""
        return self.enabled and bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=15.0,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # === Content ===

    async def summarize(self, history: list[dict], company: str) -> ConversationSummary:
        """Key points from Claude, or the caller's last questions as a fallback."""
        claude = self._claude
        if claude is None and settings.anthropic_api_key:
            claude = await get_claude_client()

        if claude is not None:
            transcript = "\n".join(f"{m['role']}: {m['content']}" for m in history)
            try:
                response = await claude.generate(
                    prompt=SUMMARY_PROMPT.format(company=company, transcript=transcript),
                    model=settings.claude_answer_model,
                    max_tokens=400,
                )
                data = parse_json_reply(response.content)
                points = [str(p) for p in data.get("key_points", []) if p]
                if points:
                    return ConversationSummary(
                        key_points=points[:5],
                        topics=[str(t) for t in data.get("topics", []) if t],
                    )
            except (ClaudeClientError, ValueError, AttributeError) as e:
                logger.warning(f"Summary generation failed, using fallback key points: {e}")

        return ConversationSummary(key_points=fallback_key_points(history))

    def build_text(
        self,
        user_info: UserInfo,
        summary: ConversationSummary,
        last_appointment: Optional[AppointmentRecord],
        company: str,
    ) -> str:
        """Plain-text email body."""
        lines = [
            f"Hi {user_info.name},",
            "",
            f"Thanks for calling {company}. Here's a summary of our conversation.",
            "",
            "KEY POINTS:",
            *[f"- {point}" for point in summary.key_points],
        ]
        if summary.topics:
            lines += ["", f"TOPICS COVERED: {', '.join(summary.topics)}"]
        if last_appointment is not None:
            details = last_appointment.details
            lines += [
                "",
                "YOUR APPOINTMENT:",
                f"- Service: {details.get('title')}",
                f"- Date: {details.get('date')}",
                f"- Time: {details.get('time_display') or details.get('time')}",
                f"- Duration: {details.get('duration_minutes', settings.appointment_duration_minutes)} minutes",
            ]
            if last_appointment.calendar_link:
                lines.append(f"- Calendar: {last_appointment.calendar_link}")
        lines += ["", f"- The {company} team"]
        return "\n".join(lines)

    def build_html(
        self,
        user_info: UserInfo,
        summary: ConversationSummary,
        last_appointment: Optional[AppointmentRecord],
        company: str,
    ) -> str:
        """HTML email body."""
        esc = html.escape
        points = "".join(f"<li>{esc(point)}</li>" for point in summary.key_points)
        parts = [
            f"<p>Hi {esc(user_info.name or '')},</p>",
            f"<p>Thanks for calling {esc(company)}. Here's a summary of our conversation.</p>",
            f"<h3>Key points</h3><ul>{points}</ul>",
        ]
        if summary.topics:
            parts.append(f"<p><strong>Topics covered:</strong> {esc(', '.join(summary.topics))}</p>")
        if last_appointment is not None:
            details = last_appointment.details
            rows = [
                ("Service", details.get("title")),
                ("Date", details.get("date")),
                ("Time", details.get("time_display") or details.get("time")),
            ]
            items = "".join(f"<li><strong>{label}:</strong> {esc(str(value))}</li>" for label, value in rows)
            link = last_appointment.calendar_link
            if link:
                items += f'<li><a href="{esc(link)}">View in your calendar</a></li>'
            parts.append(f"<h3>Your appointment</h3><ul>{items}</ul>")
        parts.append(f"<p>The {esc(company)} team</p>")
        return "\n".join(parts)

    @staticmethod
    def _lead_rows(lead: LeadIntake) -> list[tuple[str, str]]:
        return [
            ("Name", lead.name or ""),
            ("Phone", lead.phone or ""),
            ("Reason", lead.reason or ""),
            ("Urgency", lead.urgency or ""),
        ]

    def build_lead_text(self, lead: LeadIntake, company: str) -> str:
        """Plain-text lead body."""
        lines = [f"New after-hours lead for {company}.", "", "CALLER DETAILS:"]
        lines += [f"- {label}: {value}" for label, value in self._lead_rows(lead)]
        lines += ["", "Please follow up with this caller at your earliest convenience."]
        return "\n".join(lines)

    def build_lead_html(self, lead: LeadIntake, company: str) -> str:
        """HTML lead body."""
        esc = html.escape
        items = "".join(
            f"<li><strong>{label}:</strong> {esc(value)}</li>" for label, value in self._lead_rows(lead)
        )
        return "\n".join([
            f"<h2>New after-hours lead for {esc(company)}</h2>",
            f"<h3>Caller details</h3><ul>{items}</ul>",
            "<p>Please follow up with this caller at your earliest convenience.</p>",
        ])

    # === Delivery ===

    async def send_summary(
        self,
        user_info: UserInfo,
        history: list[dict],
        last_appointment: Optional[AppointmentRecord] = None,
        tenant: Optional[TenantProfile] = None,
    ) -> NotificationResult:
        """
        Email a conversation summary to the caller.

        Args:
            user_info: Caller identity (email is the recipient)
            history: Conversation log as role/content dicts
            last_appointment: Booking made during the call, if any
            tenant: Tenant profile (company name in the email)

        Returns:
            NotificationResult; success=False when delivery is disabled,
            unconfigured or rejected
        """
        if not self.is_configured:
            logger.info("Summary email skipped: delivery disabled or not configured")
            return NotificationResult(success=False, error="Email delivery not configured")

        if not should_send_summary(user_info, len(history)):
            return NotificationResult(success=False, error="Nothing to summarize")

        company = tenant.company_name if tenant else "our team"
        summary = await self.summarize(history, company)
        payload = {
            "from": self.from_address,
            "to": [user_info.email],
            "subject": f"Your {company} conversation summary",
            "text": self.build_text(user_info, summary, last_appointment, company),
            "html": self.build_html(user_info, summary, last_appointment, company),
        }

        return await self._deliver(payload, "Summary")

    async def send_lead(self, lead: LeadIntake, tenant: TenantProfile) -> NotificationResult:
        """
        Email a completed after-hours lead to the tenant.

        Leads go out whenever credentials exist; summary_emails_enabled
        only governs caller summaries.

        Returns:
            NotificationResult; success=False when unconfigured, the lead
            is incomplete, the tenant has no recipient, or the API rejects it
        """
        if not self.api_key:
            logger.warning(f"Lead email for tenant {tenant.tenant_id} skipped: no email API key")
            return NotificationResult(success=False, error="Email delivery not configured")

        if not lead.completed:
            return NotificationResult(success=False, error="Lead incomplete")

        recipient = tenant.lead_recipient
        if not recipient:
            logger.warning(f"Lead email for tenant {tenant.tenant_id} skipped: no recipient")
            return NotificationResult(success=False, error="No lead recipient")

        payload = {
            "from": self.from_address,
            "to": [recipient],
            "subject": f"New lead from {tenant.company_name} - {lead.name}",
            "text": self.build_lead_text(lead, tenant.company_name),
            "html": self.build_lead_html(lead, tenant.company_name),
        }
        return await self._deliver(payload, "Lead")

    async def _deliver(self, payload: dict, kind: str) -> NotificationResult:
        client = await self._get_client()
        try:
            response = await request_with_retry(client, "POST", "/emails", json=payload)
            if response.status_code not in (200, 201, 202):
                raise NotificationError(f"Email API returned {response.status_code}: {response.text[:200]}")

            data = response.json()
            message_id = data.get("id") if isinstance(data, dict) else None
            logger.info(f"{kind} email sent (id={message_id})")
            return NotificationResult(success=True, message_id=message_id)

        except (httpx.HTTPError, NotificationError, ValueError) as e:
            logger.error(f"{kind} email failed: {e}")
            return NotificationResult(success=False, error=str(e))


# Singleton
_service: Optional[NotificationService] = None

# Strong references to in-flight sends
_pending: set[asyncio.Task] = set()


def get_notification_service() -> NotificationService:
    """Get singleton NotificationService."""
    global _service
    if _service is None:
        _service = NotificationService()
    return _service


def _log_outcome(task: asyncio.Task) -> None:
    _pending.discard(task)
    name = task.get_name()
    if task.cancelled():
        logger.warning(f"{name} cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"{name} crashed: {error!r}")
    elif not task.result().success:
        logger.info(f"{name} not sent: {task.result().error}")


def _schedule(coro, name: str) -> Optional[asyncio.Task]:
    """Run a send on the current loop, keeping a strong reference until done."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.warning(f"No running loop, {name} not sent")
        return None

    task = loop.create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_log_outcome)
    logger.info(f"{name} scheduled")
    return task


def dispatch_summary(
    session: Session,
    tenant: Optional[TenantProfile] = None,
    service: Optional[NotificationService] = None,
) -> Optional[asyncio.Task]:
    """
    Schedule a summary email without awaiting it.

    Returns:
        The scheduled task, or None when the session does not qualify or
        no event loop is running
    """
    if not should_send_summary(session.user_info, len(session.conversation_history)):
        logger.debug(f"No summary for session {session.session_id}")
        return None

    service = service or get_notification_service()
    user_info = UserInfo(name=session.user_info.name, email=session.user_info.email)
    history = session.recent_history(len(session.conversation_history))

    return _schedule(
        service.send_summary(user_info, history, session.last_appointment, tenant),
        f"Summary email for session {session.session_id}",
    )


def dispatch_lead(
    session: Session,
    tenant: TenantProfile,
    service: Optional[NotificationService] = None,
) -> Optional[asyncio.Task]:
    """
    Schedule the lead email for a finished intake without awaiting it.

    Returns:
        The scheduled task, or None when the lead is incomplete or no
        event loop is running
    """
    if not session.lead.completed:
        logger.debug(f"No completed lead for session {session.session_id}")
        return None

    service = service or get_notification_service()
    return _schedule(
        service.send_lead(replace(session.lead), tenant),
        f"Lead email for session {session.session_id}",
    )
