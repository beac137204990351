"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
These are API stability limits and implementation details.

For configurable values, see models.py (SearchConfig, IndexingConfig, etc.).
"""

# =============================================================================
# Search Maximums
# =============================================================================
# Hard caps for host-facing entry points. Users can configure defaults
# below these, but cannot exceed them.

SEARCH_MAX_LIMIT = 100
"""Maximum results for a library search."""

SEARCH_PARALLEL_WORKERS = 4
"""Threads used for concurrent per-dimension sub-searches."""

# =============================================================================
# Internal Implementation Constants
# =============================================================================

SENTENCE_LOOKBACK_CHARS = 100
"""How far back from a chunk window end to look for a sentence boundary."""

NETWORK_PROBE_TTL_SEC = 30.0
"""How long a cloud reachability probe result stays valid."""

NETWORK_PROBE_TIMEOUT_SEC = 1.5
"""TCP connect timeout for the reachability probe."""
