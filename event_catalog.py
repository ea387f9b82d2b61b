"""Static HubSpot event catalog for activity-based qualification rules.

Standard events mirror HubSpot's Event Analytics and Timeline Events types.
Portal-scoped custom events are not listed; they are recognized by their
identifier grammar ``pe<portal_id>_<event_name>``.
"""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple

from schema_errors import Issue, ValidationError, failure, success
from schema_types import EventCategory, HubSpotEvent


CUSTOM_EVENT_RE = re.compile(r"^pe\d+_[a-z0-9_]+$")
_CUSTOM_PREFIX_RE = re.compile(r"^pe\d+_")

OCCURRENCES = ("has_occurred", "has_not_occurred", "count")
COUNT_OPERATORS = (
    "equals",
    "not_equals",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
)

_E = EventCategory

STANDARD_EVENTS: Tuple[HubSpotEvent, ...] = (
    HubSpotEvent("email_open", "Email Open", _E.EMAIL, "Contact opened a marketing email", "4-666440"),
    HubSpotEvent("email_click", "Email Click", _E.EMAIL, "Contact clicked a link in a marketing email", "4-666441"),
    HubSpotEvent("email_bounce", "Email Bounce", _E.EMAIL, "Email bounced (hard or soft)", "4-666288"),
    HubSpotEvent("email_delivered", "Email Delivered", _E.EMAIL, "Email was successfully delivered to the contact"),
    HubSpotEvent("email_spam_report", "Email Marked as Spam", _E.EMAIL, "Contact marked the email as spam"),
    HubSpotEvent("email_unsubscribe", "Email Unsubscribe", _E.EMAIL, "Contact unsubscribed from email communications"),
    HubSpotEvent("form_submission", "Form Submission", _E.FORM, "Contact submitted a HubSpot form", "4-1639801"),
    HubSpotEvent("form_view", "Form View", _E.FORM, "Contact viewed a form on a page"),
    HubSpotEvent("page_view", "Page View", _E.PAGE, "Contact viewed a page on your website", "4-1553668"),
    HubSpotEvent("landing_page_view", "Landing Page View", _E.PAGE, "Contact viewed a HubSpot landing page"),
    HubSpotEvent("cta_view", "CTA View", _E.CTA, "Contact viewed a call-to-action (CTA)", "4-1555804"),
    HubSpotEvent("cta_click", "CTA Click", _E.CTA, "Contact clicked a call-to-action (CTA)", "4-1555805"),
    HubSpotEvent("ad_interaction", "Ad Interaction", _E.MARKETING, "Contact interacted with a HubSpot ad", "4-1553675"),
    HubSpotEvent(
        "marketing_event_registration",
        "Marketing Event Registration",
        _E.MARKETING,
        "Contact registered for a marketing event",
        "4-68559",
    ),
    HubSpotEvent("marketing_event_attendance", "Marketing Event Attendance", _E.MARKETING, "Contact attended a marketing event"),
)

CATEGORY_LABELS: Mapping[EventCategory, str] = MappingProxyType(
    {
        _E.EMAIL: "Email",
        _E.FORM: "Forms",
        _E.PAGE: "Page Views",
        _E.CTA: "CTAs",
        _E.MARKETING: "Marketing",
        _E.CUSTOM: "Custom Events",
    }
)

_BY_ID: Mapping[str, HubSpotEvent] = MappingProxyType({event.id: event for event in STANDARD_EVENTS})


def list_events() -> Tuple[HubSpotEvent, ...]:
    return STANDARD_EVENTS


def get_events_by_category() -> Dict[EventCategory, List[HubSpotEvent]]:
    """Group the catalog by category; every category is a key, even if empty."""
    grouped: Dict[EventCategory, List[HubSpotEvent]] = {category: [] for category in EventCategory}
    for event in STANDARD_EVENTS:
        grouped[event.category].append(event)
    return grouped


def find_event_by_id(event_id: str) -> HubSpotEvent | None:
    if not isinstance(event_id, str):
        return None
    return _BY_ID.get(event_id)


def validate_custom_event_format(name: str) -> bool:
    if not isinstance(name, str):
        return False
    return CUSTOM_EVENT_RE.fullmatch(name) is not None


def get_event_display_name(event_id: str) -> str:
    """Human label for a catalog or custom event id; other input comes back as is."""
    event = find_event_by_id(event_id)
    if event is not None:
        return event.name
    if validate_custom_event_format(event_id):
        remainder = _CUSTOM_PREFIX_RE.sub("", event_id, count=1)
        return " ".join(part[:1].upper() + part[1:] for part in remainder.split("_"))
    return event_id


def category_label(category: EventCategory | str) -> str:
    try:
        return CATEGORY_LABELS[EventCategory(category)]
    except ValueError:
        return str(category)


def resolve_event(event_id: str) -> dict:
    event = find_event_by_id(event_id)
    if event is not None:
        return {**success("event", event.to_dict()), "custom": False}
    if validate_custom_event_format(event_id):
        custom = {
            "id": event_id,
            "name": get_event_display_name(event_id),
            "category": EventCategory.CUSTOM.value,
            "event_type_id": None,
            "description": "Portal-scoped custom event",
        }
        return {**success("event", custom), "custom": True}
    exc = ValidationError(
        "EVENT_ID_INVALID",
        "Unknown event; custom events must look like pe<portal_id>_<event_name>",
        "event_type",
        {"value": event_id},
    )
    return {**failure(exc, "event"), "custom": False}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_activity_condition(condition: Any) -> List[Issue]:
    """Check an activity qualification condition; returns the list of issues."""
    if not isinstance(condition, dict):
        return [ValidationError("CONDITION_INVALID", "condition must be an object").to_issue()]
    issues: List[Issue] = []
    event_type = condition.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        issues.append(ValidationError("VALUE_REQUIRED", "Event type is required", "event_type").to_issue())
    else:
        resolved = resolve_event(event_type)
        issues.extend(resolved["errors"])

    occurrence = condition.get("occurrence")
    if occurrence not in OCCURRENCES:
        issues.append(
            ValidationError("ENUM_INVALID", f"occurrence must be one of: {', '.join(OCCURRENCES)}", "occurrence").to_issue()
        )
    elif occurrence == "count":
        if condition.get("operator") not in COUNT_OPERATORS:
            issues.append(ValidationError("OPERATOR_REQUIRED", "count conditions need a comparison operator", "operator").to_issue())
        if not _is_number(condition.get("value")):
            issues.append(ValidationError("VALUE_REQUIRED", "count conditions need a numeric value", "value").to_issue())

    timeframe = condition.get("timeframe")
    if timeframe is not None and (not _is_number(timeframe) or timeframe <= 0):
        issues.append(ValidationError("TIMEFRAME_INVALID", "Timeframe must be positive", "timeframe").to_issue())
    return issues
