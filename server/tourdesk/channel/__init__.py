"""Booking channel integration: API client, payload schemas and normalization."""

from .client import ChannelClient, FetchReport
from .errors import ChannelAuthError, ChannelError, ChannelPermissionError, ChannelTransientError
from .normalizer import NormalizationError, NormalizedBooking, normalize, parse_booking
from .schemas import BookingPage, RawBooking

__all__ = [
    "ChannelClient",
    "FetchReport",
    "ChannelError",
    "ChannelAuthError",
    "ChannelPermissionError",
    "ChannelTransientError",
    "NormalizationError",
    "NormalizedBooking",
    "normalize",
    "parse_booking",
    "BookingPage",
    "RawBooking",
]
