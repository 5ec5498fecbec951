"""Business rules and constants for shared-event detection.

This module defines the thresholds the three signal detectors and the
candidate filter use to decide whether two users' records describe the same
real-world occurrence. Settings may override the windows and the minimum
confidence; the defaults here are the reference values.
"""

from typing import Final

# Temporal overlap
DEFAULT_TEMPORAL_WINDOW_HOURS: Final[float] = 4.0
"""Maximum time difference in hours between two posts for a temporal overlap.

Business rule: two posts no more than 4 hours apart may describe the same
occasion. Confidence decays linearly from 1.0 (same instant) to 0.0 at the
window boundary, which is still included.

Example:
    - User A posts at 20:00, User B posts at 21:30
    - Δt = 1.5h → confidence = 1 - 1.5/4 = 0.625
"""

# Spatial overlap
DEFAULT_SPATIAL_RADIUS_METERS: Final[float] = 100.0
"""Maximum great-circle distance in meters between two geotagged media items.

Business rule: photos taken within 100 meters of each other are evidence of a
shared location. Confidence decays linearly with distance, 0.0 at the radius.

Example:
    - (40.7128, -74.0060) vs (40.7129, -74.0061): ~14 m → confidence ≈ 0.86
"""

EARTH_RADIUS_METERS: Final[float] = 6371e3
"""Mean Earth radius used by the haversine distance (meters)."""

# Mutual mentions
MENTION_A_TO_B_CONFIDENCE: Final[float] = 0.8
"""Confidence when user A's post names user B."""

MENTION_B_TO_A_CONFIDENCE: Final[float] = 0.9
"""Confidence when user B's post names user A."""

MENTION_HANDLE_PREFIX: Final[str] = "@"
"""Prefix of a display-name mention token (``@displayName``)."""

# Candidate filtering
DEFAULT_MIN_CONFIDENCE: Final[float] = 0.3
"""Global minimum confidence for a candidate to be persisted.

Business rule: weak evidence (e.g. posts 3.5 hours apart, confidence 0.125)
is discarded. A pair whose candidates are all filtered out gets no
Connection at all.
"""

METADATA_SNIPPET_LENGTH: Final[int] = 200
"""Number of leading characters of post text stored for display."""

MEDIA_SOURCE_TYPE: Final[str] = "MEDIA"
"""Source type recorded for media-item evidence."""
