"""Input events the front end feeds into the session controller."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .models import Identity


class Modifier(str, Enum):
    PLAIN = "plain"
    TOGGLE = "toggle"
    RANGE = "range"


@dataclass(frozen=True)
class Activate:
    identity: Identity
    index: int
    modifier: Modifier = Modifier.PLAIN


@dataclass(frozen=True)
class NavigateDelta:
    delta: int
    extend: bool = False


@dataclass(frozen=True)
class Confirm:
    """Ask to kill the row under the cursor (a second Confirm executes)."""


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class SelectAll:
    pass


@dataclass(frozen=True)
class KillSelected:
    pass


@dataclass(frozen=True)
class ShowDetails:
    identity: Optional[Identity] = None


@dataclass(frozen=True)
class Query:
    text: str


@dataclass(frozen=True)
class Submit:
    text: str


Event = Union[Activate, NavigateDelta, Confirm, Cancel, SelectAll,
              KillSelected, ShowDetails, Query, Submit]
