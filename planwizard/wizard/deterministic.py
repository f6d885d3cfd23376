"""Rule-based turn resolution that runs before any model call.

``resolve_turn`` maps a raw user turn onto one intent and a list of typed
actions for phrasing that is common and low-ambiguity ("Amy - amy@x.com",
"remove #2", "that's it").  Anything it does not recognise comes back as an
``UnhandledTurn`` so the orchestrator can defer to the planning agent.  The
functions here never touch storage and never mutate the session.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence

from planwizard.wizard import dates
from planwizard.wizard.normalization import clean_optional_string
from planwizard.wizard.schemas import (
    AddAttendeeAction,
    Attendee,
    ConfirmAttendeeListAction,
    ConfirmItemsAction,
    ConfirmPlanInfoAction,
    ConfirmScheduleAction,
    HandledTurn,
    PlanInfo,
    PlanSession,
    RemoveAttendeeAction,
    RemoveAttendeePayload,
    RemoveItemAction,
    RemoveItemPayload,
    UnhandledTurn,
)

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"\+?\d[\d().\-\s]{6,}\d")
ADD_SIGNAL = re.compile(r"\b(add|invite|include|put\s+on\s+the\s+list|bring\s+in)\b", re.IGNORECASE)
REMOVE_SIGNAL = re.compile(r"\b(remove|delete|drop|take\s+off|uninvite)\b", re.IGNORECASE)
LEADING_REMOVE = re.compile(r"^\s*(?:please\s+|and\s+|also\s+)*(?:remove|delete|drop|take\s+off|uninvite)\b", re.IGNORECASE)

_CLOSER = (
    r"(?:no|nope|nah|none|no\s+more|no\s+one\s+else|nobody\s+else|nothing\s+else|that'?s\s+it|thats\s+it|"
    r"that'?s\s+all|thats\s+all|done|all\s+done|i'?m\s+done|we'?re\s+done|finished|ready|all\s+set|"
    r"looks\s+good|move\s+on|proceed|next)"
)
CLOSING_UTTERANCE = re.compile(
    r"^\s*" + _CLOSER + r"(?:[\s,.!]+" + _CLOSER + r")*(?:[\s,.!]+(?:thanks|thank\s+you))?[\s.!?]*$",
    re.IGNORECASE,
)

_EXPLICIT_INDEX = re.compile(r"(?:#|\bnumber\s*|\bno\.\s*)(\d+)\b", re.IGNORECASE)
_VERB_INDEX = re.compile(r"\b(?:remove|delete|drop|take\s+off|uninvite)\s+(?:item\s+|guest\s+|attendee\s+)?(\d+)\b", re.IGNORECASE)
_ORDINAL_WORDS = {
    "first": 0,
    "second": 1,
    "third": 2,
    "fourth": 3,
    "fifth": 4,
    "sixth": 5,
    "seventh": 6,
    "eighth": 7,
    "ninth": 8,
    "tenth": 9,
}
_REMOVE_TARGET = re.compile(r"\b(?:remove|delete|drop|take\s+off|uninvite)\s+([^,.!?\n]{1,60})", re.IGNORECASE)
_TARGET_NOISE = re.compile(r"^(?:the\s+)?(?:(?:guest|attendee|item|dish|recipe)\b)?\s*(?:named|called)?\s*", re.IGNORECASE)
_TARGET_TAIL = re.compile(r"\s+(?:from|off)\s+(?:the\s+|my\s+)?(?:list|menu|plan).*$|\s+please$", re.IGNORECASE)
_LEADING_ADD_WORDS = re.compile(r"^\s*(?:(?:add|invite|include|also|and|please|plus)\s+)+", re.IGNORECASE)
_GUEST_LABEL = re.compile(r"^\s*(?:guest|attendee)\s*:?\s*", re.IGNORECASE)

_PLAN_SIGNAL = re.compile(r"\b(party|birthday|bbq|celebration|dinner|event|gathering|potluck)\b", re.IGNORECASE)
_QUOTED_NAME = re.compile(r"\b(?:called|call(?:\s+(?:it|this))?|named?|title)\s*[\"“]([^\"”]{2,80})[\"”]", re.IGNORECASE)
_UNQUOTED_NAME = re.compile(r"\b(?:called|call(?:\s+(?:it|this))?|named?|title)\s+([^,.!?\n\"“]{2,80})", re.IGNORECASE)
_NAME_TAIL = re.compile(r"\s+(?:at|in|on|this|next|tomorrow|today|tonight)\b.*$", re.IGNORECASE)
_LOCATION = re.compile(r"(?=\b(?:at|in)\s+([^,.!?\n]{2,80}))", re.IGNORECASE)
_LOCATION_TAIL = re.compile(r"\s+(?:on|at|this|next|tomorrow|today|tonight)\b.*$", re.IGNORECASE)
_TIME_ONLY = re.compile(r"^\d{1,2}(?::\d{2})?\s*(?:am|pm)?$", re.IGNORECASE)
_DESCRIPTION = re.compile(r"\b(?:description|details|occasion|it'?s\s+for|this\s+is\s+for)\s*[:-]?\s*([^\n]{3,120})", re.IGNORECASE)
_NO_CONTRIBUTIONS = re.compile(r"\b(no\s+potluck|no\s+contributions?|don'?t\s+bring|without\s+contributions?)\b", re.IGNORECASE)
_CONTRIBUTIONS = re.compile(r"\b(potluck|bring\s+(?:a\s+)?(?:dish|dishes|food)|contributions?\s+(?:are\s+)?(?:welcome|allowed))\b", re.IGNORECASE)
_INFERRED_NAMES = (
    (re.compile(r"\bbirthday\b", re.IGNORECASE), "Birthday Party"),
    (re.compile(r"\bbbq\b", re.IGNORECASE), "BBQ Party"),
    (re.compile(r"\bdinner\b", re.IGNORECASE), "Dinner Party"),
    (re.compile(r"\bpotluck\b", re.IGNORECASE), "Potluck"),
    (re.compile(r"\bparty\b", re.IGNORECASE), "Party"),
)


def _normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _lookup(value: str | None) -> str:
    return (value or "").strip().lower()


def _digits(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def is_closing_utterance(text: str) -> bool:
    return bool(CLOSING_UTTERANCE.match(text))


# ============================================
# Attendee step
# ============================================


@dataclass
class _ParsedSegments:
    attendees: List[Attendee]
    skipped_removal: bool = False
    skipped_closing: bool = False


def _split_segments(text: str) -> List[str]:
    if "\n" in text:
        return re.split(r"\n+", text)
    if ";" in text:
        return text.split(";")
    if "," in text and (EMAIL_PATTERN.search(text) or PHONE_PATTERN.search(text)):
        return text.split(",")
    return [text]


def _parse_segment(segment: str, allow_name_only: bool) -> List[Attendee]:
    working = _GUEST_LABEL.sub("", _LEADING_ADD_WORDS.sub("", segment)).strip()
    if not working:
        return []

    emails = EMAIL_PATTERN.findall(working)
    for email in emails:
        working = working.replace(email, " ")
    phones = [_normalize_whitespace(phone) for phone in PHONE_PATTERN.findall(working)]
    for phone in phones:
        working = working.replace(phone, " ")

    # Several contacts of one kind in a segment cannot be paired with a name.
    if len(emails) > 1 or len(phones) > 1:
        return [Attendee(email=email) for email in emails] + [Attendee(phone=phone) for phone in phones]

    name = _normalize_whitespace(re.sub(r"[-–—:()<>]", " ", working))
    name = re.sub(r"^(?:and|also)\s+|\s+(?:and|please)$", "", name, flags=re.IGNORECASE).strip()
    email = emails[0] if emails else None
    phone = phones[0] if phones else None

    if not email and not phone:
        if not allow_name_only or not name or len(name) > 60 or "?" in name or is_closing_utterance(name):
            return []
    if not name and not email and not phone:
        return []
    return [Attendee(name=name or None, email=email, phone=phone)]


_CONTACT_SEPARATOR = re.compile(r"[-–—:(<]\s*$")


def _is_name_contact_line(segment: str) -> bool:
    contact = EMAIL_PATTERN.search(segment) or PHONE_PATTERN.search(segment)
    if not contact:
        return False
    head = segment[: contact.start()]
    return bool(head.strip(" -–—:(<")) and bool(_CONTACT_SEPARATOR.search(head))


def _is_removal_request(segment: str) -> bool:
    """A leading remove verb always wins; elsewhere the keyword may be part of a name."""

    if LEADING_REMOVE.match(segment):
        return True
    if _is_name_contact_line(segment):
        return False
    return bool(REMOVE_SIGNAL.search(segment)) and not ADD_SIGNAL.search(segment)


def _parse_attendees(text: str) -> _ParsedSegments:
    segments = [segment.strip() for segment in _split_segments(text)]
    segments = [segment for segment in segments if segment]
    has_contacts = bool(EMAIL_PATTERN.search(text) or PHONE_PATTERN.search(text))

    result = _ParsedSegments(attendees=[])
    for segment in segments:
        if _is_removal_request(segment):
            result.skipped_removal = True
            continue
        if is_closing_utterance(segment):
            result.skipped_closing = True
            continue
        allow_name_only = bool(ADD_SIGNAL.search(segment)) or bool(ADD_SIGNAL.search(text) and len(segments) > 1)
        if not allow_name_only and has_contacts and len(segments) > 1:
            allow_name_only = True
        result.attendees.extend(_parse_segment(segment, allow_name_only))
    return result


def _ordinal_index(text: str) -> int | None:
    match = _EXPLICIT_INDEX.search(text) or _VERB_INDEX.search(text)
    if match:
        number = int(match.group(1))
        if number > 0:
            return number - 1
        return None
    lowered = text.lower()
    for word, index in _ORDINAL_WORDS.items():
        if re.search(rf"\b{word}\b", lowered):
            return index
    return None


def _removal_target(text: str) -> str | None:
    match = _REMOVE_TARGET.search(text)
    if not match:
        return None
    target = _TARGET_TAIL.sub("", match.group(1).strip())
    target = _TARGET_NOISE.sub("", target)
    return clean_optional_string(_normalize_whitespace(target))


def match_attendees(attendees: Sequence[Attendee], text: str) -> List[int]:
    """Indexes of attendees the removal text refers to.

    Email and phone match exactly; names match case-insensitively on an exact
    or substring basis, so "Amy" matches both "Amy" and "Amy Lee".
    """

    email = EMAIL_PATTERN.search(text)
    if email:
        wanted = _lookup(email.group(0))
        return [index for index, attendee in enumerate(attendees) if _lookup(attendee.email) == wanted]
    phone = PHONE_PATTERN.search(text)
    if phone:
        wanted = _digits(phone.group(0))
        return [index for index, attendee in enumerate(attendees) if wanted and _digits(attendee.phone) == wanted]

    target = _lookup(_removal_target(text))
    if not target:
        return []
    return [index for index, attendee in enumerate(attendees) if attendee.name and target in _lookup(attendee.name)]


def _describe_attendee(index: int, attendee: Attendee) -> str:
    contact = attendee.email or attendee.phone
    label = attendee.name or contact or "unnamed attendee"
    if attendee.name and contact:
        return f"#{index + 1} {label} ({contact})"
    return f"#{index + 1} {label}"


def _summarize_names(labels: Sequence[str]) -> str:
    shown = ", ".join(labels[:3])
    if len(labels) > 3:
        return f"{shown} and {len(labels) - 3} more"
    return shown


def _resolve_attendees(text: str, session: PlanSession) -> HandledTurn | UnhandledTurn:
    attendees = session.attendee_list
    parsed = _parse_attendees(text)

    if parsed.attendees:
        names = [attendee.label() for attendee in parsed.attendees]
        reply = f"Added {_summarize_names(names)} to the attendee list."
        if parsed.skipped_removal:
            reply += " I did not remove anyone yet; send the removal on its own and I will take care of it."
        elif parsed.skipped_closing:
            reply += " Say \"that's it\" once you are ready to review the list."
        else:
            reply += " Anyone else to add?"
        return HandledTurn(
            intent="add-guests",
            assistant_text=reply,
            actions=[AddAttendeeAction(payload=attendee) for attendee in parsed.attendees],
        )

    if REMOVE_SIGNAL.search(text):
        # A phone number after the verb is a contact, not a position.
        has_contact = bool(EMAIL_PATTERN.search(text) or PHONE_PATTERN.search(text))
        index = None if has_contact else _ordinal_index(text)
        if index is not None:
            expected = attendees[index].model_copy() if index < len(attendees) else None
            return HandledTurn(
                intent="remove-attendee",
                assistant_text=f"Got it. I removed attendee #{index + 1} from the list.",
                actions=[RemoveAttendeeAction(payload=RemoveAttendeePayload(index=index, expected=expected))],
            )

        matches = match_attendees(attendees, text)
        if len(matches) == 1:
            match = matches[0]
            return HandledTurn(
                intent="remove-attendee",
                assistant_text=f"Got it. I removed {attendees[match].label()} from the list.",
                actions=[
                    RemoveAttendeeAction(
                        payload=RemoveAttendeePayload(index=match, expected=attendees[match].model_copy())
                    )
                ],
            )
        if len(matches) > 1:
            options = "; ".join(_describe_attendee(index, attendees[index]) for index in matches)
            return HandledTurn(
                intent="ask-clarification",
                assistant_text=f"I found more than one matching attendee: {options}. Which number should I remove?",
                actions=[],
            )
        return UnhandledTurn(reason="no-match")

    if is_closing_utterance(text):
        return HandledTurn(
            intent="confirm-attendee-list",
            assistant_text="Wonderful. Here is your attendee list for confirmation.",
            actions=[ConfirmAttendeeListAction()],
        )

    if ADD_SIGNAL.search(text):
        return UnhandledTurn(reason="ambiguous")
    return UnhandledTurn(reason="no-signal")


# ============================================
# Info step
# ============================================


def _extract_name(text: str) -> str | None:
    match = _QUOTED_NAME.search(text)
    if match:
        return clean_optional_string(match.group(1))
    match = _UNQUOTED_NAME.search(text)
    if match:
        return clean_optional_string(_NAME_TAIL.sub("", match.group(1)))
    return None


def _infer_name(text: str) -> str | None:
    for pattern, name in _INFERRED_NAMES:
        if pattern.search(text):
            return name
    return None


def _extract_location(text: str) -> str | None:
    for match in _LOCATION.finditer(text):
        candidate = clean_optional_string(_LOCATION_TAIL.sub("", match.group(1)))
        if not candidate or _TIME_ONLY.match(candidate):
            continue
        if dates.DATE_SIGNAL.match(candidate) or candidate[0].isdigit():
            continue
        return candidate
    return None


def _extract_description(text: str) -> str | None:
    match = _DESCRIPTION.search(text)
    return clean_optional_string(match.group(1)) if match else None


def _extract_allow_contributions(text: str) -> bool | None:
    if _NO_CONTRIBUTIONS.search(text):
        return False
    if _CONTRIBUTIONS.search(text):
        return True
    return None


def _resolve_info(text: str, session: PlanSession, reference_now: datetime | None) -> HandledTurn | UnhandledTurn:
    existing = session.plan_info

    if is_closing_utterance(text):
        if existing is None:
            return UnhandledTurn(reason="no-signal")
        return HandledTurn(
            intent="confirm-plan-info",
            assistant_text="Let me confirm those plan details.",
            actions=[ConfirmPlanInfoAction(payload=existing.model_copy())],
        )

    explicit_name = _extract_name(text)
    name = explicit_name or (existing.name if existing else None) or _infer_name(text)

    # The name may itself contain date-like words ("Saturday Social").
    date_text = text.replace(explicit_name, " ") if explicit_name else text
    parsed_date = dates.parse_plan_datetime(date_text, reference_now)
    date_time = parsed_date or (existing.date_time if existing else None)

    has_date_signal = bool(dates.DATE_SIGNAL.search(date_text))

    if name and date_time:
        contributions = _extract_allow_contributions(text)
        if contributions is None:
            contributions = existing.allow_contributions if existing else False
        info = PlanInfo(
            name=name,
            date_time=date_time,
            location=_extract_location(date_text) or (existing.location if existing else None),
            description=_extract_description(text) or (existing.description if existing else None),
            allow_contributions=contributions,
        )
        return HandledTurn(
            intent="confirm-plan-info",
            assistant_text="Perfect! Let me confirm those plan details.",
            actions=[ConfirmPlanInfoAction(payload=info)],
        )

    if name:
        if has_date_signal:
            return HandledTurn(
                intent="ask-unparseable-datetime",
                assistant_text='I could not quite read that date. Try something like "Saturday at 7pm" or "March 15 at 6pm".',
            )
        return HandledTurn(intent="ask-missing-datetime", assistant_text=f'Great name. When is "{name}" happening?')

    if date_time:
        return HandledTurn(
            intent="ask-missing-name",
            assistant_text="Nice, I have the timing. What would you like to call it?",
        )

    if has_date_signal:
        return HandledTurn(
            intent="ask-unparseable-datetime",
            assistant_text='I could not quite read that date. Try something like "Saturday at 7pm" or "March 15 at 6pm".',
        )
    if _PLAN_SIGNAL.search(text):
        return HandledTurn(
            intent="ask-missing-name",
            assistant_text="Fun. What should we call it, and when is it happening?",
        )
    return UnhandledTurn(reason="no-signal")


# ============================================
# Items step
# ============================================


def _item_names(session: PlanSession) -> List[tuple[int, bool, str]]:
    plan = session.item_plan
    combined = [(index, False, item.name) for index, item in enumerate(plan.existing_items)]
    combined.extend((index, True, item.name) for index, item in enumerate(plan.new_items))
    return combined


def _remove_item_action(session: PlanSession, position: int) -> RemoveItemAction:
    existing_count = len(session.item_plan.existing_items)
    combined = _item_names(session)
    if position < len(combined):
        index, is_new, name = combined[position]
        return RemoveItemAction(payload=RemoveItemPayload(index=index, is_new=is_new, expected_name=name))
    # Out of range either way; the projector reports it.
    return RemoveItemAction(payload=RemoveItemPayload(index=position - existing_count, is_new=True))


def _resolve_items(text: str, session: PlanSession) -> HandledTurn | UnhandledTurn:
    if REMOVE_SIGNAL.search(text):
        position = _ordinal_index(text)
        if position is not None:
            return HandledTurn(
                intent="remove-item",
                assistant_text=f"Got it. I removed item #{position + 1} from the plan.",
                actions=[_remove_item_action(session, position)],
            )
        target = _lookup(_removal_target(text))
        if not target:
            return UnhandledTurn(reason="ambiguous")
        combined = _item_names(session)
        matches = [position for position, (_, _, name) in enumerate(combined) if target in _lookup(name)]
        if len(matches) == 1:
            return HandledTurn(
                intent="remove-item",
                assistant_text=f"Got it. I removed {combined[matches[0]][2]} from the plan.",
                actions=[_remove_item_action(session, matches[0])],
            )
        if len(matches) > 1:
            options = "; ".join(f"#{position + 1} {combined[position][2]}" for position in matches)
            return HandledTurn(
                intent="ask-clarification",
                assistant_text=f"More than one item matches: {options}. Which number should I remove?",
            )
        return UnhandledTurn(reason="no-match")

    if is_closing_utterance(text):
        return HandledTurn(
            intent="confirm-items",
            assistant_text="Great. Here is the item list for confirmation.",
            actions=[ConfirmItemsAction()],
        )
    return UnhandledTurn(reason="no-signal")


# ============================================
# Schedule step
# ============================================


def _resolve_schedule(text: str) -> HandledTurn | UnhandledTurn:
    if is_closing_utterance(text):
        return HandledTurn(
            intent="confirm-schedule",
            assistant_text="Here is the schedule for a final review.",
            actions=[ConfirmScheduleAction()],
        )
    return UnhandledTurn(reason="no-signal")


def resolve_turn(
    step: str,
    text: str,
    session: PlanSession,
    reference_now: datetime | None = None,
) -> HandledTurn | UnhandledTurn:
    """Resolve one user turn for ``step`` without calling the model."""

    cleaned = (text or "").strip()
    if not cleaned:
        return UnhandledTurn(reason="no-signal")
    if step == "attendees":
        return _resolve_attendees(cleaned, session)
    if step == "info":
        return _resolve_info(cleaned, session, reference_now)
    if step == "items":
        return _resolve_items(cleaned, session)
    if step == "schedule":
        return _resolve_schedule(cleaned)
    return UnhandledTurn(reason="unsupported")
