"""Identity lookups over the generated message table."""

from __future__ import annotations

from ..errors import UnknownMessageError
from ._table import CHANNELS, LENGTHS, NAMES, VARIABLE

__all__ = [
    "CHANNELS",
    "LENGTHS",
    "NAMES",
    "VARIABLE",
    "channel_for",
    "is_known",
    "name_of",
    "wire_length",
]


def is_known(identity: int) -> bool:
    return identity in LENGTHS


def wire_length(identity: int) -> int | None:
    """Total wire length for ``identity``, or ``VARIABLE``."""
    try:
        return LENGTHS[identity]
    except KeyError:
        raise UnknownMessageError(identity) from None


def channel_for(identity: int) -> str:
    try:
        return CHANNELS[identity]
    except KeyError:
        raise UnknownMessageError(identity) from None


def name_of(identity: int) -> str:
    """Protocol name for ``identity``, or its hex form if unknown."""
    return NAMES.get(identity, f"0x{identity:04X}")
