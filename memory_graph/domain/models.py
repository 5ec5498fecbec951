"""Domain models for the memory graph engine.

All models use Pydantic v2 for validation and serialization.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID, uuid4

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from memory_graph.domain.exceptions import ValidationError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=pytz.UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=pytz.UTC)
    return value.astimezone(pytz.UTC)


class ConnectionType(str, Enum):
    """Kind of evidence linking two users."""

    TEMPORAL_OVERLAP = "TEMPORAL_OVERLAP"
    SPATIAL_OVERLAP = "SPATIAL_OVERLAP"
    MUTUAL_MENTION = "MUTUAL_MENTION"


class CollisionStatus(str, Enum):
    """User response state of a memory collision notification."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"


class CollisionAction(str, Enum):
    """Action a user can take on a pending collision."""

    CONFIRM = "confirm"
    DECLINE = "decline"


class SchedulerState(str, Enum):
    """Run state of a sweep scheduler."""

    IDLE = "idle"
    RUNNING = "running"


class SweepKind(str, Enum):
    """Which user pairs a sweep evaluates."""

    FULL = "full"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class PairOutcome(str, Enum):
    """Outcome of evaluating a single user pair."""

    INELIGIBLE = "ineligible"
    NO_EVIDENCE = "no_evidence"
    RECORDED = "recorded"
    FAILED = "failed"


# === Input records (owned by the account / data-access collaborators) ===


class UserProfile(BaseModel):
    """Account-level facts the engine reads about a user."""

    user_id: str = Field(..., min_length=1, description="User identifier")
    email: str = Field(default="", description="Primary email address")
    display_name: str | None = Field(
        default=None, description="Handle used in @mentions"
    )
    collision_detection_enabled: bool = Field(
        default=True, description="Opt-in flag for collision detection"
    )
    updated_at: datetime | None = Field(
        default=None, description="Last account or data activity"
    )


class SocialPost(BaseModel):
    """Normalized social post synced from a data source."""

    post_id: str = Field(..., description="Post identifier")
    user_id: str = Field(..., description="Owning user")
    created_at: datetime = Field(..., description="Post timestamp (UTC)")
    content: str = Field(default="", description="Post text")
    provider: str = Field(default="unknown", description="Source provider name")

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class MediaItem(BaseModel):
    """Normalized media item, optionally geotagged."""

    media_id: str = Field(..., description="Media identifier")
    user_id: str = Field(..., description="Owning user")
    created_at: datetime = Field(..., description="Capture timestamp (UTC)")
    latitude: float | None = Field(default=None, description="Latitude in degrees")
    longitude: float | None = Field(default=None, description="Longitude in degrees")
    location: str | None = Field(default=None, description="Place name")
    url: str = Field(default="", description="Source URL")

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def has_coordinates(self) -> bool:
        """True when both coordinates are present and numeric."""
        if self.latitude is None or self.longitude is None:
            return False
        return not (math.isnan(self.latitude) or math.isnan(self.longitude))


class UserEventData(BaseModel):
    """Everything the detectors need to know about one user."""

    profile: UserProfile
    posts: list[SocialPost] = Field(default_factory=list)
    media: list[MediaItem] = Field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.profile.user_id


# === Canonical pair key ===


def pair_sort_key(user_id: str) -> bytes:
    """Comparator key for canonical pair ordering.

    Ids are compared by their UTF-8 byte values, which matches Unicode code
    point order and does not depend on locale.
    """
    return user_id.encode("utf-8")


class UserPair(BaseModel):
    """Unordered user pair stored in canonical order (user_a_id < user_b_id)."""

    model_config = ConfigDict(frozen=True)

    user_a_id: str = Field(..., min_length=1)
    user_b_id: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_canonical_order(self) -> "UserPair":
        if pair_sort_key(self.user_a_id) >= pair_sort_key(self.user_b_id):
            raise ValueError(
                "user_a_id must sort strictly before user_b_id; use canonical_pair()"
            )
        return self

    @property
    def key(self) -> str:
        """Stable string key used for locking and logging."""
        return f"{self.user_a_id}:{self.user_b_id}"

    def contains(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)

    def other(self, user_id: str) -> str:
        """Return the member of the pair that is not ``user_id``."""
        if user_id == self.user_a_id:
            return self.user_b_id
        if user_id == self.user_b_id:
            return self.user_a_id
        raise ValidationError(f"User {user_id} is not part of pair {self.key}")


def canonical_pair(first_user_id: str, second_user_id: str) -> UserPair:
    """Build the canonical pair for two user ids in either order.

    Raises:
        ValidationError: If both ids are equal
    """
    if first_user_id == second_user_id:
        raise ValidationError(f"Cannot pair user {first_user_id} with itself")
    user_a_id, user_b_id = sorted((first_user_id, second_user_id), key=pair_sort_key)
    return UserPair(user_a_id=user_a_id, user_b_id=user_b_id)


# === Candidates ===


class SourceRef(BaseModel):
    """Pointer to the raw record a piece of evidence came from."""

    model_config = ConfigDict(frozen=True)

    source_type: str | None = Field(default=None, description="Provider or MEDIA")
    source_id: str = Field(..., description="Record identifier")


class TemporalMetadata(BaseModel):
    """Display data for a temporal overlap."""

    kind: Literal["temporal"] = "temporal"
    user_a_content: str = ""
    user_b_content: str = ""


class SpatialMetadata(BaseModel):
    """Display data for a spatial overlap."""

    kind: Literal["spatial"] = "spatial"
    distance_meters: float
    user_a_url: str = ""
    user_b_url: str = ""


class MentionMetadata(BaseModel):
    """Display data for a mutual mention."""

    kind: Literal["mention"] = "mention"
    content: str = ""
    direction: Literal["a_mentions_b", "b_mentions_a"]


CandidateMetadata = Annotated[
    TemporalMetadata | SpatialMetadata | MentionMetadata,
    Field(discriminator="kind"),
]


class SharedEventCandidate(BaseModel):
    """Unpersisted evidence that two users shared an event."""

    event_type: ConnectionType
    event_date: datetime
    duration_hours: int | None = Field(
        default=None, description="Rounded time gap between the two records"
    )
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    user_a_source: SourceRef | None = None
    user_b_source: SourceRef | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    metadata: CandidateMetadata


# === Persistent records ===


class Connection(BaseModel):
    """Aggregated relationship between two users (one row per pair)."""

    connection_id: UUID = Field(default_factory=uuid4)
    user_a_id: str
    user_b_id: str
    connection_types: set[ConnectionType] = Field(default_factory=set)
    shared_event_count: int = Field(default=0, ge=0)
    first_shared_event: datetime | None = None
    last_shared_event: datetime | None = None
    strength: float = Field(default=0.0, ge=0.0)
    hidden: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def pair(self) -> UserPair:
        return UserPair(user_a_id=self.user_a_id, user_b_id=self.user_b_id)

    def other_user(self, user_id: str) -> str:
        return self.pair.other(user_id)


class SharedEvent(BaseModel):
    """Persisted, immutable piece of evidence attached to a Connection."""

    shared_event_id: UUID = Field(default_factory=uuid4)
    connection_id: UUID
    event_type: ConnectionType
    event_date: datetime
    duration_hours: int | None = None
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    user_a_source: SourceRef | None = None
    user_b_source: SourceRef | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    metadata: CandidateMetadata
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_candidate(
        cls, connection_id: UUID, candidate: SharedEventCandidate
    ) -> "SharedEvent":
        return cls(
            connection_id=connection_id,
            **candidate.model_dump(exclude={"metadata"}),
            metadata=candidate.metadata,
        )


DEFAULT_COLLISION_SUMMARY = "New shared experiences detected"


class MemoryCollision(BaseModel):
    """Notification record handed to the notification collaborator."""

    collision_id: UUID = Field(default_factory=uuid4)
    initiator_id: str
    target_id: str
    connection_id: UUID
    event_summary: str = DEFAULT_COLLISION_SUMMARY
    status: CollisionStatus = CollisionStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    responded_at: datetime | None = None


# === Results and read models ===


class ConnectionWriteResult(BaseModel):
    """Result of persisting one batch of candidates for a pair."""

    connection: Connection
    created: bool
    events_added: int
    collisions_created: int = 0


class PairDetectionResult(BaseModel):
    """Result of evaluating one user pair."""

    pair: UserPair
    outcome: PairOutcome
    candidates_found: int = 0
    candidates_persisted: int = 0
    connection_id: UUID | None = None
    connection_created: bool = False


class SweepResult(BaseModel):
    """Summary of one sweep over a set of user pairs."""

    kind: SweepKind
    correlation_id: str
    skipped: bool = False
    users_considered: int = 0
    pairs_evaluated: int = 0
    pairs_recorded: int = 0
    pairs_ineligible: int = 0
    pairs_failed: int = 0
    candidates_persisted: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None


class ScheduleDescription(BaseModel):
    """Human-readable description of a configured trigger."""

    kind: SweepKind
    description: str


class SchedulerStatus(BaseModel):
    """Status snapshot exposed by the sweep scheduler."""

    state: SchedulerState
    is_running: bool
    schedules: list[ScheduleDescription] = Field(default_factory=list)
    last_sweep: SweepResult | None = None


class GraphNode(BaseModel):
    """User node in a connection graph."""

    user_id: str
    display_name: str | None = None
    node_type: Literal["central", "connection"]


class GraphEdge(BaseModel):
    """Edge between the central user and a connected user."""

    source: str
    target: str
    strength: float
    shared_event_count: int
    connection_types: list[ConnectionType] = Field(default_factory=list)


class ConnectionGraph(BaseModel):
    """Connection graph centered on one user."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)


class UserConnection(BaseModel):
    """A connection seen from one member's point of view."""

    connection: Connection
    other_user_id: str


class ConnectionStats(BaseModel):
    """Aggregate statistics over a user's visible connections."""

    total_connections: int = 0
    total_shared_events: int = 0
    average_strength: float = 0.0
    strongest_connection_user_id: str | None = None
    strongest_connection_strength: float = 0.0
    pending_collisions: int = 0
    connections_by_type: dict[ConnectionType, int] = Field(default_factory=dict)
