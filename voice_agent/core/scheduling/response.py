"""
Response templates for the voice agent.

Every spoken reply the dialogue core produces comes from here, so wording
stays consistent and testable. format_for_speech turns the multi-line
templates into plain text a TTS engine can read.
"""

import re
from datetime import date
from typing import Optional, Sequence

from voice_agent.config import settings
from voice_agent.core.intelligence.session.models import SlotBag, UserInfo
from voice_agent.core.intelligence.slots.datetime_parser import format_date
from voice_agent.core.intelligence.slots.spelling import spell_email
from voice_agent.core.intelligence.slots.types import TimeSlot
from voice_agent.core.tenants import TenantProfile

FOLLOW_UP_QUESTION = "Is there anything else you'd like to know, or would you like to schedule an appointment?"

REVIEW_FOOTER = (
    'Please review these details. Say "sounds good" to confirm, or tell me what '
    "you'd like to change (service, date, time, name, or email)."
)

DATE_FORMAT_HINT = 'Please provide the date in a format like "December 15, 2025" or "2025-12-15".'

CLARIFICATIONS = {
    "date": f"I'm having trouble understanding that date. {DATE_FORMAT_HINT}",
    "relative_date": (
        "To make sure I get it exactly right, I need the full calendar date rather than "
        f"something like \"tomorrow\" or \"next Tuesday\". {DATE_FORMAT_HINT}"
    ),
    "past_date": f"That date has already passed. Could you give me a date in the future? {DATE_FORMAT_HINT}",
    "invalid_date": f"That doesn't look like a real calendar date. {DATE_FORMAT_HINT}",
    "time": "I couldn't match that to one of the available times. Please choose from the available time slots.",
    "service": "I didn't catch what type of service you need. Could you tell me what you'd like to schedule?",
    "calendar": (
        "I didn't catch that. Would you like to use Google Calendar or Microsoft Calendar "
        "for your appointment? Please say 'Google' or 'Microsoft'."
    ),
    "name": (
        "I'd be happy to update your name. Could you please tell me what name you'd like me "
        "to use? Feel free to spell it out if needed."
    ),
    "email": (
        "I'd be happy to update your email. Could you please spell it out letter by letter "
        "for accuracy, for example 'j-o-h-n at g-m-a-i-l dot c-o-m'?"
    ),
    "general": "I didn't quite catch that. Could you please repeat or rephrase your request?",
}

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+\.)\s+")
_EMPHASIS = re.compile(r"(\*\*|__|\*|`)")
_HEADING = re.compile(r"^\s*#+\s*")


def format_for_speech(text: str) -> str:
    """Flatten a templated reply into one TTS-friendly paragraph.

    Bullets, headings and emphasis markers are removed. Each line becomes a
    sentence, and whitespace is collapsed.
    """
    sentences = []
    for line in text.splitlines():
        line = _HEADING.sub("", _BULLET.sub("", line))
        line = _EMPHASIS.sub("", line).strip()
        if not line:
            continue
        if line[-1] not in ".!?:,":
            line += "."
        sentences.append(line)
    return re.sub(r"\s+", " ", " ".join(sentences)).strip()


def _clock(value: str) -> str:
    """'16:00' -> '4:00 PM'."""
    hour, minute = (int(part) for part in value.split(":"))
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def _calendar_name(calendar_type: Optional[str]) -> str:
    return "Microsoft Calendar" if calendar_type == "microsoft" else "Google Calendar"


def _spoken_date(value: Optional[str]) -> str:
    if not value:
        return "not set"
    try:
        return format_date(date.fromisoformat(value))
    except ValueError:
        return value


def _slot_list(slots: Sequence[TimeSlot], limit: Optional[int] = None) -> str:
    chosen = list(slots)[:limit] if limit else list(slots)
    return ", ".join(slot.display for slot in chosen)


class ResponseGenerator:
    """Deterministic response templates."""

    def __init__(self):
        self.duration = settings.appointment_duration_minutes
        self.hours = f"{_clock(settings.business_hours_start)} to {_clock(settings.business_hours_end)}"

    # === Conversation ===

    def goodbye(self, name: Optional[str], tenant: TenantProfile) -> str:
        return (
            f"Thank you, {name or 'there'}! I hope you were satisfied with "
            f"{tenant.company_name}'s service. Have a great day!"
        )

    def follow_up(self, base_response: str) -> str:
        """Append the 'anything else, or book?' question."""
        return f"{base_response.rstrip()} {FOLLOW_UP_QUESTION}"

    def more_questions(self) -> str:
        return "Of course! What else would you like to know?"

    def decline_close(self, name: Optional[str] = None) -> str:
        name_part = f", {name}" if name else ""
        return f"No problem{name_part}! If anything else comes up, just let me know. Have a great day!"

    def clarification(self, topic: str) -> str:
        """Re-prompt with a narrower instruction."""
        return CLARIFICATIONS.get(topic, CLARIFICATIONS["general"])

    def general_error(self, tenant: TenantProfile) -> str:
        return (
            "I'm experiencing some technical difficulties. Please try again, "
            f"or {tenant.contact_line} for assistance."
        )

    # === Identity ===

    def ask_name(self) -> str:
        return "I'd be happy to help! Could you please tell me your name?"

    def ask_name_and_email(self) -> str:
        return (
            "I'd be happy to help! Could you please provide your name and email address "
            "so I can assist you better?"
        )

    def ask_email(self, name: Optional[str] = None) -> str:
        prefix = f"Thanks, {name}! " if name else ""
        return f"{prefix}Could you please spell out your email address?"

    def invalid_email(self) -> str:
        return (
            "I didn't quite get a valid email address. Could you spell it out letter by letter, "
            "for example 'j-o-h-n at g-m-a-i-l dot c-o-m'?"
        )

    def identity_complete(self, user_info: UserInfo) -> str:
        return f"Perfect, thanks {user_info.name}! How can I help you today?"

    def email_readback(self, email: str, name: Optional[str] = None) -> str:
        prefix = f"Thanks, {name}! " if name else "Thanks! "
        return f"{prefix}I've got your email as {spell_email(email)}. Is that correct?"

    def email_readback_reprompt(self, email: str) -> str:
        return (
            f"I didn't catch that. Is your email {spell_email(email)}? "
            'Please say "yes" to confirm or "no" to spell it again.'
        )

    def email_respell(self) -> str:
        return (
            "No problem. Please spell your email address again, letter by letter, "
            "for example 'j-o-h-n at g-m-a-i-l dot c-o-m'."
        )

    def name_changed(self, old_name: Optional[str], new_name: str) -> str:
        if old_name:
            return f"Got it! I've updated your name from {old_name} to {new_name}. How can I help you today?"
        return f"Got it! I'll call you {new_name}. How can I help you today?"

    def email_changed(self, old_email: Optional[str], new_email: str) -> str:
        if old_email:
            return (
                f"Perfect! I've updated your email from {old_email} to {spell_email(new_email)}. "
                "How can I help you today?"
            )
        return f"Perfect! I've got your email as {spell_email(new_email)}. How can I help you today?"

    # === Appointment flow ===

    def appointment_start(self) -> str:
        return (
            "Great! I'd be happy to help you schedule an appointment. First, would you like me to "
            "add this to your Google Calendar or Microsoft Calendar? Just say 'Google' or 'Microsoft'."
        )

    def flow_ask_name(self) -> str:
        return "Great! I'd be happy to help you schedule an appointment. First, what's your name?"

    def flow_ask_email(self, name: Optional[str]) -> str:
        greeting = f"Perfect, {name}! " if name else ""
        return (
            f"{greeting}What's your email address? Please spell it out for accuracy, "
            "for example 'j-o-h-n at g-m-a-i-l dot c-o-m'."
        )

    def ask_service(self, tenant: TenantProfile, calendar_type: Optional[str] = None) -> str:
        examples = [option.label.lower() for option in tenant.service_catalog[:3]]
        hint = f" For example, a {', a '.join(examples[:-1])} or a {examples[-1]}?" if len(examples) > 1 else ""
        if calendar_type:
            return (
                f"Perfect! I'll add it to your {_calendar_name(calendar_type)}. "
                f"What type of service are you looking for?{hint}"
            )
        return f"Great! I'd be happy to help you schedule an appointment. What type of service are you looking for?{hint}"

    def service_collected(self, title: str) -> str:
        return (
            f"Perfect! I'll schedule a {title} for you. Please note that all appointments are "
            f"{self.duration} minutes long and available Monday through Friday from {self.hours}. "
            f"What date would work best? {DATE_FORMAT_HINT}"
        )

    def ask_date(self) -> str:
        return f"What date would work best for you? {DATE_FORMAT_HINT}"

    def date_availability(self, formatted_date: str, slots: Sequence[TimeSlot]) -> str:
        return (
            f"Great! {formatted_date} has {len(slots)} available {self.duration}-minute slots: "
            f"{_slot_list(slots)}. Which time works best for you?"
        )

    def weekend_substitution(
        self,
        requested_date: str,
        next_date: str,
        slots: Sequence[TimeSlot],
    ) -> str:
        return (
            f"{requested_date} falls on a weekend, and appointments are only available Monday "
            f"through Friday. The next available date is {next_date} with slots at: "
            f"{_slot_list(slots, 3)}. Which time works best for you?"
        )

    def no_availability(
        self,
        requested_date: str,
        next_date: str,
        slots: Sequence[TimeSlot],
    ) -> str:
        return (
            f"I'm sorry, but {requested_date} has no available appointment slots. The next "
            f"available date is {next_date} with slots at: {_slot_list(slots, 3)}. "
            "Which time works best for you?"
        )

    def nothing_available(self, requested_date: str) -> str:
        return (
            f"I'm sorry, I couldn't find any open appointment slots starting from {requested_date}. "
            "Would you like to try a later date?"
        )

    def calendar_unavailable(self, tenant: TenantProfile) -> str:
        return (
            "I'm having trouble checking the calendar right now. Please try another date, "
            f"or {tenant.contact_line} to schedule."
        )

    def time_options(self, slots: Sequence[TimeSlot]) -> str:
        if not slots:
            return self.ask_date()
        return (
            f"{CLARIFICATIONS['time']} The available times are: {_slot_list(slots)}. "
            "Which one works for you?"
        )

    def ask_time(self, formatted_date: str, slots: Sequence[TimeSlot]) -> str:
        return f"Sure! {formatted_date} has these times open: {_slot_list(slots)}. Which time would you like?"

    def _details_block(self, details: SlotBag, user_info: UserInfo) -> str:
        return (
            f"Service: {details.title}\n"
            f"Date: {_spoken_date(details.date)}\n"
            f"Time: {details.time_display or details.time} ({self.duration} minutes)\n"
            f"Customer: {user_info.name} ({user_info.email})"
        )

    def review(self, details: SlotBag, user_info: UserInfo) -> str:
        return (
            "Perfect! Let me review your appointment details:\n\n"
            f"{self._details_block(details, user_info)}\n\n"
            f"{REVIEW_FOOTER}"
        )

    def review_reprompt(self) -> str:
        return (
            'I didn\'t catch a change. Say "sounds good" to confirm, or tell me what you\'d '
            "like to change: service, date, time, name, or email."
        )

    def multiple_changes(self, changes: Sequence[str], details: SlotBag, user_info: UserInfo) -> str:
        return (
            f"Perfect! I've updated your {', '.join(changes)}. Let me review your appointment details:\n\n"
            f"{self._details_block(details, user_info)}\n\n"
            f"{REVIEW_FOOTER}"
        )

    def date_change_needs_time(
        self,
        formatted_date: str,
        slots: Sequence[TimeSlot],
        other_changes: Sequence[str] = (),
    ) -> str:
        prefix = f"I've updated your {', '.join(other_changes)}. " if other_changes else ""
        return (
            f"{prefix}I've moved your appointment to {formatted_date}, but your previous time isn't "
            f"available that day. The open times are: {_slot_list(slots)}. Which time works best for you?"
        )

    def date_change_unavailable(self, formatted_date: str) -> str:
        return (
            f"I'm sorry, {formatted_date} has no available slots, so I've kept your original date. "
            "Would you like to try a different date?"
        )

    def change_prompt(self, field_name: str, details: SlotBag) -> str:
        """Ask for the new value of a field in the two-turn change path."""
        match field_name:
            case "service":
                return "Sure! What type of service would you like instead?"
            case "date":
                return f"Sure! What date would work better? {DATE_FORMAT_HINT}"
            case "time":
                return self.ask_time(_spoken_date(details.date), details.available_slots)
            case "name":
                return self.clarification("name")
            case "email":
                return self.clarification("email")
            case _:
                return self.review_reprompt()

    def confirm_prompt(self, details: SlotBag, user_info: UserInfo) -> str:
        return (
            f"Just to confirm: a {details.title} on {_spoken_date(details.date)} at "
            f"{details.time_display or details.time} for {user_info.name}. Shall I book it? "
            "Say yes to confirm, or cancel to start over."
        )

    def confirm_reprompt(self) -> str:
        return (
            "I didn't catch that. Should I go ahead and schedule this appointment? "
            'Please say "sounds good" to confirm, or "cancel" to start over.'
        )

    def date_redirect(self, title: Optional[str]) -> str:
        service = f" for your {title}" if title else ""
        return f"I understand you'd like to change the date. What date would work best{service}? {DATE_FORMAT_HINT}"

    def booking_cancelled(self) -> str:
        return "No problem, I've cleared those details. What type of service would you like to schedule?"

    def confirmation(self, details: dict, user_info: UserInfo, calendar_type: Optional[str]) -> str:
        calendar_name = _calendar_name(calendar_type)
        return (
            f"Excellent! Your appointment has been scheduled successfully in {calendar_name}.\n\n"
            "Appointment Details:\n"
            f"- Service: {details.get('title')}\n"
            f"- Date & Time: {_spoken_date(details.get('date'))} at {details.get('time_display') or details.get('time')}\n"
            f"- Duration: {self.duration} minutes\n"
            f"- Customer: {user_info.name} ({user_info.email})\n\n"
            f"Our team will contact you at {user_info.email} to confirm the appointment details "
            "and provide any additional information you may need.\n\n"
            "Is there anything else I can help you with today?"
        )

    def appointment_error(self, title: Optional[str], tenant: TenantProfile) -> str:
        service = title or "appointment"
        return (
            "I apologize, but there was an issue creating your calendar appointment. Please "
            f"{tenant.contact_line} to schedule your appointment, or try again later. Our team "
            f"will be happy to help you schedule your {service}."
        )

    def validation_error(self) -> str:
        return (
            "I'm sorry, some of your appointment details were incomplete, so I couldn't book it. "
            "Let's start over. Would you like to schedule an appointment?"
        )

    def flow_error(self) -> str:
        return (
            "I'm sorry, something went wrong with your appointment request. Let's start over. "
            "Would you like to schedule an appointment, or is there something else I can help with?"
        )


# Singleton
_generator: Optional[ResponseGenerator] = None


def get_response_generator() -> ResponseGenerator:
    """Get singleton ResponseGenerator."""
    global _generator
    if _generator is None:
        _generator = ResponseGenerator()
    return _generator
