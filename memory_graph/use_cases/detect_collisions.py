"""Pair detection use case.

Evaluates a single user pair end to end:

1. Eligibility: both users exist and have collision detection enabled
2. Fetch each user's posts and media from the data source
3. Run the temporal, spatial and mention detectors
4. Drop weak candidates and order the rest by event date
5. Hand surviving candidates to the connection writer
"""

from memory_graph.config.logging_config import get_logger
from memory_graph.config.settings import Settings
from memory_graph.domain.models import (
    PairDetectionResult,
    PairOutcome,
    canonical_pair,
)
from memory_graph.domain.protocols import UserDataSourceProtocol
from memory_graph.services.candidate_filter import filter_candidates
from memory_graph.services.signal_detectors import run_all_detectors
from memory_graph.use_cases.record_connection import ConnectionWriter

logger = get_logger(__name__)


def detect_pair(
    source: UserDataSourceProtocol,
    writer: ConnectionWriter,
    settings: Settings,
    first_user_id: str,
    second_user_id: str,
) -> PairDetectionResult:
    """Detect and persist shared events for two users.

    The pair is canonicalized first, so argument order never changes the
    outcome: detectors always see the lower id as user A.

    Args:
        source: Data-access collaborator
        writer: Connection writer for the persistence step
        settings: Detection thresholds
        first_user_id: One member of the pair
        second_user_id: The other member

    Returns:
        PairDetectionResult describing what happened

    Raises:
        ValidationError: If both ids are equal
        DataAccessError: On data source failures
        RepositoryError: On storage failures

    Example:
        >>> result = detect_pair(repo, writer, settings, "alice", "bob")
        >>> result.outcome
        <PairOutcome.RECORDED: 'recorded'>
    """
    pair = canonical_pair(first_user_id, second_user_id)

    profiles = source.get_user_profiles([pair.user_a_id, pair.user_b_id])
    profile_a = profiles.get(pair.user_a_id)
    profile_b = profiles.get(pair.user_b_id)
    if (
        profile_a is None
        or profile_b is None
        or not profile_a.collision_detection_enabled
        or not profile_b.collision_detection_enabled
    ):
        logger.debug("pair_ineligible", pair=pair.key)
        return PairDetectionResult(pair=pair, outcome=PairOutcome.INELIGIBLE)

    data_a = source.get_user_event_data(pair.user_a_id)
    data_b = source.get_user_event_data(pair.user_b_id)
    if data_a is None or data_b is None:
        logger.debug("pair_data_missing", pair=pair.key)
        return PairDetectionResult(pair=pair, outcome=PairOutcome.INELIGIBLE)

    found = run_all_detectors(
        data_a,
        data_b,
        window_hours=settings.detection_temporal_window_hours,
        radius_meters=settings.detection_spatial_radius_meters,
    )
    candidates = filter_candidates(
        found, min_confidence=settings.detection_min_confidence
    )

    if not candidates:
        logger.debug(
            "pair_no_evidence", pair=pair.key, candidates_found=len(found)
        )
        return PairDetectionResult(
            pair=pair,
            outcome=PairOutcome.NO_EVIDENCE,
            candidates_found=len(found),
        )

    write_result = writer.record(pair, candidates)

    return PairDetectionResult(
        pair=pair,
        outcome=PairOutcome.RECORDED,
        candidates_found=len(found),
        candidates_persisted=write_result.events_added,
        connection_id=write_result.connection.connection_id,
        connection_created=write_result.created,
    )


__all__ = ["detect_pair"]
