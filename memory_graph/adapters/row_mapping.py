"""Row <-> domain model mapping shared by the SQLite and PostgreSQL adapters.

SQLite hands back TEXT timestamps and JSON strings; psycopg2 hands back
datetime objects and already-decoded JSONB. The parsers here accept both.
"""

import json
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Final
from uuid import UUID

from pydantic import TypeAdapter

from memory_graph.domain.models import (
    CandidateMetadata,
    CollisionStatus,
    Connection,
    ConnectionType,
    MediaItem,
    MemoryCollision,
    SharedEvent,
    SocialPost,
    SourceRef,
    UserProfile,
    ensure_utc,
)

DB_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%S.%f+00:00"
"""Fixed-width UTC format so TEXT timestamps sort chronologically."""

_METADATA_ADAPTER: Final[TypeAdapter[Any]] = TypeAdapter(CandidateMetadata)


def to_db_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_utc(value).strftime(DB_TIMESTAMP_FORMAT)


def parse_db_timestamp(value: datetime | str | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def _required_timestamp(value: datetime | str | None, column: str) -> datetime:
    parsed = parse_db_timestamp(value)
    if parsed is None:
        raise ValueError(f"Row missing {column} timestamp")
    return parsed


def connection_types_to_json(types: Iterable[ConnectionType]) -> str:
    return json.dumps(sorted(t.value for t in types))


def connection_types_from_json(value: str | list[str] | None) -> set[ConnectionType]:
    if not value:
        return set()
    raw = json.loads(value) if isinstance(value, str) else value
    return {ConnectionType(item) for item in raw}


def metadata_to_json(metadata: Any) -> str:
    return json.dumps(_METADATA_ADAPTER.dump_python(metadata, mode="json"))


def metadata_from_json(value: str | dict[str, Any]) -> Any:
    raw = json.loads(value) if isinstance(value, str) else value
    return _METADATA_ADAPTER.validate_python(raw)


def _source_ref(source_type: str | None, source_id: str | None) -> SourceRef | None:
    if not source_id:
        return None
    return SourceRef(source_type=source_type, source_id=source_id)


def profile_from_row(row: Mapping[str, Any]) -> UserProfile:
    return UserProfile(
        user_id=row["user_id"],
        email=row["email"] or "",
        display_name=row["display_name"],
        collision_detection_enabled=bool(row["collision_detection_enabled"]),
        updated_at=parse_db_timestamp(row["updated_at"]),
    )


def post_from_row(row: Mapping[str, Any]) -> SocialPost:
    return SocialPost(
        post_id=row["post_id"],
        user_id=row["user_id"],
        created_at=_required_timestamp(row["created_at"], "created_at"),
        content=row["content"] or "",
        provider=row["provider"] or "unknown",
    )


def media_from_row(row: Mapping[str, Any]) -> MediaItem:
    return MediaItem(
        media_id=row["media_id"],
        user_id=row["user_id"],
        created_at=_required_timestamp(row["created_at"], "created_at"),
        latitude=row["latitude"],
        longitude=row["longitude"],
        location=row["location"],
        url=row["url"] or "",
    )


def connection_from_row(row: Mapping[str, Any]) -> Connection:
    return Connection(
        connection_id=UUID(str(row["connection_id"])),
        user_a_id=row["user_a_id"],
        user_b_id=row["user_b_id"],
        connection_types=connection_types_from_json(row["connection_types"]),
        shared_event_count=int(row["shared_event_count"]),
        first_shared_event=parse_db_timestamp(row["first_shared_event"]),
        last_shared_event=parse_db_timestamp(row["last_shared_event"]),
        strength=float(row["strength"]),
        hidden=bool(row["hidden"]),
        created_at=_required_timestamp(row["created_at"], "created_at"),
        updated_at=_required_timestamp(row["updated_at"], "updated_at"),
    )


def shared_event_from_row(row: Mapping[str, Any]) -> SharedEvent:
    return SharedEvent(
        shared_event_id=UUID(str(row["shared_event_id"])),
        connection_id=UUID(str(row["connection_id"])),
        event_type=ConnectionType(row["event_type"]),
        event_date=_required_timestamp(row["event_date"], "event_date"),
        duration_hours=row["duration_hours"],
        location=row["location"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        user_a_source=_source_ref(
            row["user_a_source_type"], row["user_a_source_id"]
        ),
        user_b_source=_source_ref(
            row["user_b_source_type"], row["user_b_source_id"]
        ),
        confidence=float(row["confidence"]),
        metadata=metadata_from_json(row["metadata"]),
        created_at=_required_timestamp(row["created_at"], "created_at"),
    )


def collision_from_row(row: Mapping[str, Any]) -> MemoryCollision:
    return MemoryCollision(
        collision_id=UUID(str(row["collision_id"])),
        initiator_id=row["initiator_id"],
        target_id=row["target_id"],
        connection_id=UUID(str(row["connection_id"])),
        event_summary=row["event_summary"],
        status=CollisionStatus(row["status"]),
        created_at=_required_timestamp(row["created_at"], "created_at"),
        responded_at=parse_db_timestamp(row["responded_at"]),
    )


def shared_event_params(
    event: SharedEvent,
    *,
    format_timestamp: Callable[[datetime], Any] = ensure_utc,
) -> tuple[Any, ...]:
    """Positional insert parameters in shared_events column order."""
    a_source = event.user_a_source
    b_source = event.user_b_source
    return (
        str(event.shared_event_id),
        str(event.connection_id),
        event.event_type.value,
        format_timestamp(event.event_date),
        event.duration_hours,
        event.location,
        event.latitude,
        event.longitude,
        a_source.source_type if a_source else None,
        a_source.source_id if a_source else None,
        b_source.source_type if b_source else None,
        b_source.source_id if b_source else None,
        event.confidence,
        metadata_to_json(event.metadata),
        format_timestamp(event.created_at),
    )


SHARED_EVENT_COLUMNS: Final[str] = (
    "shared_event_id, connection_id, event_type, event_date, duration_hours, "
    "location, latitude, longitude, user_a_source_type, user_a_source_id, "
    "user_b_source_type, user_b_source_id, confidence, metadata, created_at"
)
