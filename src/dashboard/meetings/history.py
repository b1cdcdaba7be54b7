"""Meeting history aggregation.

Rebuilds per-meeting summaries (hosts, participants, display names, duration,
status) from the raw meeting event log and keeps only the meetings the
requesting user took part in, either as a host or as a participant.

Hosts are discovered two ways and both count: an occupant_joined event whose
occupant is an owner or moderator, and any host_assigned event. The two are
not reconciled against each other.

Participants are identified by email when the occupant is authenticated.
Anonymous occupants get a "Guest N" label numbered by first appearance of
their occupant_jid within one session; the counter starts over for every
session.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from src.dashboard.meetings.schemas import (
    MeetingEvent,
    MeetingEventType,
    MeetingSession,
    MeetingSessionStatus,
    MeetingSummary,
    MeetingSummaryStatus,
)

logger = structlog.get_logger(__name__)


class InvalidDateParameter(ValueError):
    """A from/to query parameter could not be parsed as an ISO date."""

    def __init__(self, parameter: str) -> None:
        self.parameter = parameter
        super().__init__(f"Invalid '{parameter}' date parameter")


# ── Date Range ───────────────────────────────────────────────────────────────


def _parse_iso(value: str, parameter: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        raise InvalidDateParameter(parameter) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date_range(
    from_param: str | None, to_param: str | None
) -> tuple[datetime | None, datetime | None]:
    """Parse the optional from/to query parameters.

    Naive values are taken as UTC. The upper bound is pushed to the last
    millisecond of its day so that a bare date includes the whole day.

    Raises:
        InvalidDateParameter: naming the parameter that failed to parse.
    """
    date_from = _parse_iso(from_param, "from") if from_param else None
    date_to = None
    if to_param:
        date_to = _parse_iso(to_param, "to").replace(
            hour=23, minute=59, second=59, microsecond=999000
        )
    return date_from, date_to


# ── Name Helpers ─────────────────────────────────────────────────────────────


def name_from_email(email: str) -> str:
    """Derive a display name from an email local part.

    "jane.doe@example.com" -> "Jane Doe"
    """
    local_part = email.split("@")[0]
    return " ".join(part[:1].upper() + part[1:] for part in local_part.split("."))


@dataclass(frozen=True)
class _ParticipantInfo:
    email: str | None
    name: str | None


def _text(mapping: dict[str, Any], key: str) -> str | None:
    """A non-empty string field of event metadata, else None."""
    value = mapping.get(key)
    return value if isinstance(value, str) and value else None


def _participant_display_name(identifier: str, info: _ParticipantInfo | None) -> str:
    if info is not None and info.name:
        return info.name
    if info is not None and info.email:
        return name_from_email(info.email)
    if "@" in identifier and not identifier.startswith("Guest"):
        return name_from_email(identifier)
    # Guest labels and bare names
    return identifier


# ── Per-session Aggregation ──────────────────────────────────────────────────


def group_events_by_meeting(
    events: Iterable[MeetingEvent],
) -> dict[int, list[MeetingEvent]]:
    """Group a flat event list by meeting id, ordered by (timestamp, id)."""
    grouped: dict[int, list[MeetingEvent]] = {}
    for event in sorted(events, key=lambda e: (e.timestamp, e.id)):
        grouped.setdefault(event.meeting_id, []).append(event)
    return grouped


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def summarize_session(
    session: MeetingSession,
    events: Iterable[MeetingEvent],
    now: datetime,
) -> MeetingSummary:
    """Build the summary of one session from its ordered events.

    Args:
        session: The stored session.
        events: That session's events in log order.
        now: Reference time for sessions that have not ended yet.
    """
    # Insertion-ordered maps double as first-seen ordered sets
    hosts: dict[str, str | None] = {}
    participants: dict[str, _ParticipantInfo] = {}
    guest_labels: dict[str, str] = {}

    def add_host(email: str, name: str | None) -> None:
        if hosts.get(email) is None:
            hosts[email] = name

    for event in events:
        metadata: dict[str, Any] = event.metadata or {}

        occupant = metadata.get("occupant")
        if event.event_type == MeetingEventType.OCCUPANT_JOINED.value and isinstance(occupant, dict):
            # Metadata is free-form JSON; non-string values are treated as absent
            email = _text(occupant, "email")
            name = _text(occupant, "name")
            occupant_jid = _text(occupant, "occupant_jid")
            is_host = (
                occupant.get("affiliation") == "owner"
                or occupant.get("role") == "moderator"
            )
            if is_host and email:
                add_host(email, name)

            identifier: str | None = None
            if email:
                identifier = email
            elif occupant_jid:
                if occupant_jid not in guest_labels:
                    guest_labels[occupant_jid] = f"Guest {len(guest_labels) + 1}"
                identifier = guest_labels[occupant_jid]
            elif name:
                identifier = name

            if identifier and identifier not in participants:
                participants[identifier] = _ParticipantInfo(email=email, name=name)

        host_email = _text(metadata, "email")
        if event.event_type == MeetingEventType.HOST_ASSIGNED.value and host_email:
            add_host(host_email, _text(metadata, "name"))

    ended_at = session.ended_at or now
    duration = int((ended_at - session.started_at).total_seconds() // 60)
    status = (
        MeetingSummaryStatus.IN_PROGRESS
        if session.status == MeetingSessionStatus.ONGOING.value
        else MeetingSummaryStatus.COMPLETED
    )

    host_emails = list(hosts)
    host_names = [hosts[email] or name_from_email(email) for email in host_emails]
    first_host = host_emails[0] if host_emails else None
    if host_names and host_names[0]:
        host_name = host_names[0]
    elif first_host:
        host_name = first_host.split("@")[0]
    else:
        host_name = "Unknown"

    participant_ids = list(participants)
    participant_names = [
        _participant_display_name(identifier, participants.get(identifier))
        for identifier in participant_ids
    ]

    return MeetingSummary(
        id=str(session.id),
        title=session.room_name,
        timestamp=_epoch_ms(session.started_at),
        end_timestamp=_epoch_ms(ended_at),
        email=first_host or "",
        host_name=host_name,
        hosts=host_emails,
        host_names=host_names,
        duration=duration,
        participants=participant_ids,
        participant_names=participant_names,
        participant_count=len(participant_ids),
        status=status,
        room_name=session.room_name,
    )


def user_participated(summary: MeetingSummary, user_email: str) -> bool:
    """True if the user is one of the summary's hosts or participants."""
    return user_email in summary.hosts or user_email in summary.participants


# ── Aggregator ───────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeetingHistoryAggregator:
    """Builds the meeting history visible to one user.

    Read-only: issues one session range query and, when that returns
    anything, one batched event query. Failures from either query propagate
    unchanged.

    Args:
        repository: Object exposing async list_sessions(from, to) and
            list_events(meeting_ids), e.g. MeetingRepository.
        clock: Returns the current time; used for ongoing sessions.
    """

    def __init__(
        self,
        repository: Any,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock

    async def get_history(
        self,
        user_email: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Iterator[MeetingSummary]:
        """Fetch sessions in range and return a lazy iterator of summaries.

        Summaries come out in session start order and only for sessions the
        user hosted or joined.
        """
        sessions = await self._repository.list_sessions(date_from, date_to)
        if not sessions:
            logger.info(
                "meeting_history.no_sessions",
                date_from=date_from.isoformat() if date_from else None,
                date_to=date_to.isoformat() if date_to else None,
            )
            return iter(())

        events = await self._repository.list_events([s.id for s in sessions])
        events_by_meeting = group_events_by_meeting(events)
        now = self._clock()

        return (
            summary
            for summary in (
                summarize_session(s, events_by_meeting.get(s.id, []), now)
                for s in sessions
            )
            if user_participated(summary, user_email)
        )
