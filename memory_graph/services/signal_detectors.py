"""Signal detectors for shared-event evidence between two users.

Three independent, stateless detectors:
- Temporal overlap: posts published close together in time
- Spatial overlap: geotagged media captured close together in space
- Mutual mention: a post naming the other user by email or @handle

Every detector is deterministic: identical inputs always yield the same
candidates, in the same order, with the same confidences.
"""

import math
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta

import pytz

from memory_graph.domain.detection_constants import (
    DEFAULT_SPATIAL_RADIUS_METERS,
    DEFAULT_TEMPORAL_WINDOW_HOURS,
    MEDIA_SOURCE_TYPE,
    MENTION_A_TO_B_CONFIDENCE,
    MENTION_B_TO_A_CONFIDENCE,
    MENTION_HANDLE_PREFIX,
    METADATA_SNIPPET_LENGTH,
)
from memory_graph.domain.models import (
    ConnectionType,
    MediaItem,
    MentionMetadata,
    SharedEventCandidate,
    SocialPost,
    SourceRef,
    SpatialMetadata,
    TemporalMetadata,
    UserEventData,
    UserProfile,
)
from memory_graph.services.geo import haversine_distance

_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)
_ONE_MICROSECOND = timedelta(microseconds=1)


def _snippet(text: str) -> str:
    return text[:METADATA_SNIPPET_LENGTH]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _bucket_of(moment: datetime, bucket_width_us: int) -> int:
    return ((moment - _EPOCH) // _ONE_MICROSECOND) // bucket_width_us


def find_temporal_overlaps(
    posts_a: Sequence[SocialPost],
    posts_b: Sequence[SocialPost],
    *,
    window_hours: float = DEFAULT_TEMPORAL_WINDOW_HOURS,
) -> list[SharedEventCandidate]:
    """Find post pairs published within ``window_hours`` of each other.

    Posts of user B are indexed by time bucket (bucket width = window), so each
    post of user A is only compared with the neighbouring buckets. Output is
    identical to comparing every pair: ordered by A's post, then B's post in
    input order.

    Args:
        posts_a: Posts of user A
        posts_b: Posts of user B
        window_hours: Inclusive time window

    Returns:
        One candidate per matching pair, confidence ``1 - Δt / window``

    Raises:
        ValueError: If window_hours is not positive

    Example:
        >>> # 20:00 vs 21:30 with a 4h window
        >>> find_temporal_overlaps([post_a], [post_b])[0].confidence
        0.625
    """
    if window_hours <= 0:
        raise ValueError("window_hours must be positive")
    if not posts_a or not posts_b:
        return []

    window = timedelta(hours=window_hours)
    window_seconds = window.total_seconds()
    bucket_width_us = max(window // _ONE_MICROSECOND, 1)

    buckets: dict[int, list[tuple[int, SocialPost]]] = defaultdict(list)
    for index, post_b in enumerate(posts_b):
        buckets[_bucket_of(post_b.created_at, bucket_width_us)].append(
            (index, post_b)
        )

    overlaps: list[SharedEventCandidate] = []
    for post_a in posts_a:
        bucket = _bucket_of(post_a.created_at, bucket_width_us)
        nearby = sorted(
            buckets.get(bucket - 1, [])
            + buckets.get(bucket, [])
            + buckets.get(bucket + 1, []),
            key=lambda item: item[0],
        )

        for _, post_b in nearby:
            time_diff = abs(post_a.created_at - post_b.created_at)
            if time_diff > window:
                continue

            diff_seconds = time_diff.total_seconds()
            overlaps.append(
                SharedEventCandidate(
                    event_type=ConnectionType.TEMPORAL_OVERLAP,
                    event_date=post_a.created_at,
                    duration_hours=_round_half_up(diff_seconds / 3600),
                    user_a_source=SourceRef(
                        source_type=post_a.provider, source_id=post_a.post_id
                    ),
                    user_b_source=SourceRef(
                        source_type=post_b.provider, source_id=post_b.post_id
                    ),
                    confidence=1 - diff_seconds / window_seconds,
                    metadata=TemporalMetadata(
                        user_a_content=_snippet(post_a.content),
                        user_b_content=_snippet(post_b.content),
                    ),
                )
            )

    return overlaps


def find_spatial_overlaps(
    media_a: Sequence[MediaItem],
    media_b: Sequence[MediaItem],
    *,
    radius_meters: float = DEFAULT_SPATIAL_RADIUS_METERS,
) -> list[SharedEventCandidate]:
    """Find geotagged media pairs captured within ``radius_meters``.

    Items without both coordinates are skipped entirely. User A's item is
    authoritative for the event date, coordinates and place name; B's place
    name is used only when A has none.

    Raises:
        ValueError: If radius_meters is not positive
    """
    if radius_meters <= 0:
        raise ValueError("radius_meters must be positive")

    located_b = [item for item in media_b if item.has_coordinates]
    overlaps: list[SharedEventCandidate] = []

    for item_a in media_a:
        if not item_a.has_coordinates:
            continue
        lat_a = float(item_a.latitude)  # type: ignore[arg-type]
        lon_a = float(item_a.longitude)  # type: ignore[arg-type]

        for item_b in located_b:
            distance = haversine_distance(
                lat_a,
                lon_a,
                float(item_b.latitude),  # type: ignore[arg-type]
                float(item_b.longitude),  # type: ignore[arg-type]
            )
            if distance > radius_meters:
                continue

            overlaps.append(
                SharedEventCandidate(
                    event_type=ConnectionType.SPATIAL_OVERLAP,
                    event_date=item_a.created_at,
                    location=item_a.location or item_b.location,
                    latitude=lat_a,
                    longitude=lon_a,
                    user_a_source=SourceRef(
                        source_type=MEDIA_SOURCE_TYPE, source_id=item_a.media_id
                    ),
                    user_b_source=SourceRef(
                        source_type=MEDIA_SOURCE_TYPE, source_id=item_b.media_id
                    ),
                    confidence=1 - distance / radius_meters,
                    metadata=SpatialMetadata(
                        distance_meters=distance,
                        user_a_url=item_a.url,
                        user_b_url=item_b.url,
                    ),
                )
            )

    return overlaps


def mention_tokens(profile: UserProfile) -> list[str]:
    """Lower-cased strings whose presence in a post names this user."""
    tokens: list[str] = []
    if profile.email.strip():
        tokens.append(profile.email.strip().lower())
    if profile.display_name and profile.display_name.strip():
        tokens.append(
            f"{MENTION_HANDLE_PREFIX}{profile.display_name.strip().lower()}"
        )
    return tokens


def _mentions(post: SocialPost, tokens: Sequence[str]) -> bool:
    content = post.content.lower()
    return any(token in content for token in tokens)


def find_mutual_mentions(
    data_a: UserEventData, data_b: UserEventData
) -> list[SharedEventCandidate]:
    """Find posts where one user names the other.

    A's posts naming B yield confidence 0.8 and carry only A's source ref;
    B's posts naming A yield 0.9 and carry only B's source ref.
    """
    mentions: list[SharedEventCandidate] = []

    tokens_b = mention_tokens(data_b.profile)
    if tokens_b:
        for post in data_a.posts:
            if not _mentions(post, tokens_b):
                continue
            mentions.append(
                SharedEventCandidate(
                    event_type=ConnectionType.MUTUAL_MENTION,
                    event_date=post.created_at,
                    user_a_source=SourceRef(
                        source_type=post.provider, source_id=post.post_id
                    ),
                    confidence=MENTION_A_TO_B_CONFIDENCE,
                    metadata=MentionMetadata(
                        content=_snippet(post.content), direction="a_mentions_b"
                    ),
                )
            )

    tokens_a = mention_tokens(data_a.profile)
    if tokens_a:
        for post in data_b.posts:
            if not _mentions(post, tokens_a):
                continue
            mentions.append(
                SharedEventCandidate(
                    event_type=ConnectionType.MUTUAL_MENTION,
                    event_date=post.created_at,
                    user_b_source=SourceRef(
                        source_type=post.provider, source_id=post.post_id
                    ),
                    confidence=MENTION_B_TO_A_CONFIDENCE,
                    metadata=MentionMetadata(
                        content=_snippet(post.content), direction="b_mentions_a"
                    ),
                )
            )

    return mentions


def run_all_detectors(
    data_a: UserEventData,
    data_b: UserEventData,
    *,
    window_hours: float = DEFAULT_TEMPORAL_WINDOW_HOURS,
    radius_meters: float = DEFAULT_SPATIAL_RADIUS_METERS,
) -> list[SharedEventCandidate]:
    """Run temporal, spatial and mention detection and concatenate results."""
    candidates: list[SharedEventCandidate] = []
    candidates.extend(
        find_temporal_overlaps(data_a.posts, data_b.posts, window_hours=window_hours)
    )
    candidates.extend(
        find_spatial_overlaps(data_a.media, data_b.media, radius_meters=radius_meters)
    )
    candidates.extend(find_mutual_mentions(data_a, data_b))
    return candidates
