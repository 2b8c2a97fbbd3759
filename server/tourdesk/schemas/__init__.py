"""Pydantic schemas for request/response validation."""

from .guide import *  # noqa: F403
from .health import *  # noqa: F403
from .payment import *  # noqa: F403
from .sync import *  # noqa: F403
from .tour import *  # noqa: F403
from .tour_group import *  # noqa: F403
