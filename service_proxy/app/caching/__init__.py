"""
Proxy caching package.

Stale-while-revalidate resolution of contract reads, the block height
poller, and the key normalization both rely on.
"""

from .keys import build_key, constant_key, normalize_argument, split_path_arguments
from .resolver import RefreshOutcome, StaleWhileRevalidateResolver
from .block_poller import BlockHeightPoller, PollOutcome

__all__ = [
    "build_key",
    "constant_key",
    "normalize_argument",
    "split_path_arguments",
    "RefreshOutcome",
    "StaleWhileRevalidateResolver",
    "BlockHeightPoller",
    "PollOutcome",
]
