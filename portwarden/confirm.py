from collections import namedtuple
from enum import Enum
from functools import partial

from .errors import KillRejected


class _BulkToken:
    def __repr__(self):
        return "BULK"


BULK = _BulkToken()

PendingConfirmation = namedtuple("PendingConfirmation", ["token", "since"])


class Outcome(str, Enum):
    PENDING = "pending"      # first press, nothing executed
    REPLACED = "replaced"    # another target was pending, restarted on this one
    CONFIRMED = "confirmed"  # second press on the same target, caller executes


class ConfirmationGate:
    """
    Two-press guard for destructive actions.

    Idle -> Pending(token) on the first request. A second request for the
    same token returns CONFIRMED and goes back to Idle; a request for a
    different token only swaps the pending token. Pending clears itself
    after `timeout` seconds without a request.
    """

    def __init__(self, timers, timeout=3.0):
        self.timers = timers
        self.timeout = timeout
        self.pending = None
        self._generation = 0

    def request(self, token, entry=None):
        if entry is not None and entry.is_protected:
            raise KillRejected(entry)

        if self.pending is not None and self.pending.token == token:
            self._reset()
            return Outcome.CONFIRMED

        outcome = Outcome.PENDING if self.pending is None else Outcome.REPLACED
        self.pending = PendingConfirmation(token, self.timers.clock())
        self._arm()
        return outcome

    def cancel(self):
        if self.pending is None:
            return False
        self._reset()
        return True

    def is_pending(self, token=None):
        if self.pending is None:
            return False
        return token is None or self.pending.token == token

    def close(self):
        self._reset()

    def _arm(self):
        self._generation += 1
        self.timers.schedule(self.timeout, partial(self._expire, self._generation), key="confirm")

    def _expire(self, generation):
        if generation == self._generation:
            self.pending = None

    def _reset(self):
        self.pending = None
        self._generation += 1
        self.timers.cancel_key("confirm")
