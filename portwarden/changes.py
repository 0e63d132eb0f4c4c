from functools import partial

from .config import debug_log
from .models import ChangeState


class ChangeTracker:
    """
    Diffs consecutive snapshots into per-entry change annotations.

    Only non-stable identities are stored; anything absent from `states`
    is stable. A `new` mark expires once, `ttl` seconds after the entry was
    first seen. A `removed` mark lives until the next update.
    """

    def __init__(self, timers, ttl=3.0):
        self.timers = timers
        self.ttl = ttl
        self.states = {}    # identity -> ChangeState
        self._tokens = {}   # identity -> generation of its pending expiry
        self._generation = 0

    def update(self, previous, current):
        for ident in [i for i, s in self.states.items() if s is ChangeState.REMOVED]:
            del self.states[ident]

        if previous is None:
            # first poll: nothing to compare against, everything is stable
            return self.changes()

        old = previous.identities()
        new = current.identities()

        for ident in new - old:
            self._mark_new(ident)
        for ident in old - new:
            self._drop_expiry(ident)
            self.states[ident] = ChangeState.REMOVED

        live = old | new
        for ident in [i for i in self.states if i not in live]:
            self._drop_expiry(ident)
            del self.states[ident]

        if new - old or old - new:
            debug_log(f"CHANGES: +{len(new - old)} -{len(old - new)}")
        return self.changes()

    def state_of(self, identity):
        return self.states.get(identity, ChangeState.STABLE)

    def changes(self):
        return dict(self.states)

    def close(self):
        for ident in list(self._tokens):
            self._drop_expiry(ident)
        self.states.clear()

    def _mark_new(self, ident):
        self._drop_expiry(ident)
        self._generation += 1
        token = self._generation
        self._tokens[ident] = token
        self.states[ident] = ChangeState.NEW
        self.timers.schedule(self.ttl, partial(self._expire, ident, token), key=("change", ident))

    def _expire(self, ident, token):
        if self._tokens.get(ident) != token:
            return
        del self._tokens[ident]
        if self.states.get(ident) is ChangeState.NEW:
            del self.states[ident]

    def _drop_expiry(self, ident):
        if self._tokens.pop(ident, None) is not None:
            self.timers.cancel_key(("change", ident))
