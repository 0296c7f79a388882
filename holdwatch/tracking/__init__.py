"""Position tracking for HoldWatch.

This module provides the pure, I/O-free core of the system:
- Reconstruction of the still-open episode of a position from order history
- Counting the fills that belong to that episode
- Holding-time limit parsing and evaluation
"""

from holdwatch.tracking.reconstructor import (
    EpisodeTracker,
    NetBalanceTracker,
    SideTaggedTracker,
    Fill,
    create_tracker,
    normalize_orders,
    sort_chronologically,
    reconstruct_open_time,
    count_fills,
    track_episode,
)
from holdwatch.tracking.limits import (
    DurationParseError,
    LimitBook,
    LimitEvaluation,
    base_asset,
    evaluate_limit,
    format_duration,
    parse_duration,
)

__all__ = [
    'EpisodeTracker',
    'NetBalanceTracker',
    'SideTaggedTracker',
    'Fill',
    'create_tracker',
    'normalize_orders',
    'sort_chronologically',
    'reconstruct_open_time',
    'count_fills',
    'track_episode',
    'DurationParseError',
    'LimitBook',
    'LimitEvaluation',
    'base_asset',
    'evaluate_limit',
    'format_duration',
    'parse_duration',
]
