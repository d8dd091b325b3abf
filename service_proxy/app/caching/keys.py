"""
Cache key construction and argument normalization for contract reads.
"""

from typing import Iterable, List, Tuple, Union

from service_proxy.app.persistence.models import CallKey

Argument = Union[bool, str]

_BOOLEAN_TOKENS = {"true": True, "false": False}


def normalize_argument(raw: str) -> Argument:
    """Map the exact tokens ``true``/``false`` to booleans, keep the rest as strings.

    Numbers stay decimal strings so uint256 values never lose precision.
    """
    return _BOOLEAN_TOKENS.get(raw, raw)


def argument_token(arg: Argument) -> str:
    """Key component for a normalized argument."""
    if isinstance(arg, bool):
        return "true" if arg else "false"
    return arg


def split_path_arguments(path: str) -> List[str]:
    """Split the trailing request path into segments, dropping empty ones."""
    return [segment for segment in path.split("/") if segment]


def build_key(name: str, raw_args: Iterable[str]) -> Tuple[CallKey, List[Argument]]:
    """Build the cache key and the gateway argument vector for a function call.

    Both are derived from the same normalized sequence, in request order.
    """
    args = [normalize_argument(raw) for raw in raw_args if raw != ""]
    key = CallKey(name=name, args=tuple(argument_token(arg) for arg in args))
    return key, args


def constant_key(name: str) -> CallKey:
    """Cache key for a zero-argument getter."""
    return CallKey(name=name)
