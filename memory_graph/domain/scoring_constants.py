"""Weights and caps for the connection strength score.

The strength of a connection is the sum of four sub-scores, each capped on its
own, giving a total in the 0-100 range:

    frequency (0-40) + recency (0-30) + diversity (0-~20) + confidence (0-10)
"""

from typing import Final

FREQUENCY_POINTS_PER_EVENT: Final[float] = 4.0
"""Points contributed by each shared event."""

MAX_FREQUENCY_SCORE: Final[float] = 40.0
"""Frequency cap.

Business rule: ten shared events already say "these people share a life";
more do not make the connection stronger.
"""

MAX_RECENCY_SCORE: Final[float] = 30.0
"""Recency score for a shared event happening right now."""

RECENCY_DAYS_PER_POINT: Final[float] = 10.0
"""Recency decays by one point every 10 days since the last shared event.

Example:
    - last event today → 30 points
    - last event 100 days ago → 20 points
    - last event 300+ days ago → 0 points
"""

DIVERSITY_POINTS_PER_TYPE: Final[float] = 6.67
"""Points per distinct event type (3 types ≈ 20 points)."""

CONFIDENCE_SCORE_WEIGHT: Final[float] = 10.0
"""Multiplier applied to the average confidence of all shared events."""

STRENGTH_DECIMALS: Final[int] = 2
"""Stored strength is rounded to two decimal places."""

SECONDS_PER_DAY: Final[float] = 24 * 60 * 60
