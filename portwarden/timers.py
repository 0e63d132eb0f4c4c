import time


class Timer:
    __slots__ = ("key", "generation", "due", "callback")

    def __init__(self, key, generation, due, callback):
        self.key = key
        self.generation = generation
        self.due = due
        self.callback = callback

    def __repr__(self):
        return f"Timer(key={self.key!r}, generation={self.generation}, due={self.due:.3f})"


class TimerRegistry:
    """
    One-shot timers fired cooperatively from the owner's loop.

    Nothing runs on its own: `run_due()` fires whatever is due according to
    `clock`. Scheduling under a key replaces the timer already holding that
    key. After `close()` every timer is gone and new ones are refused, so
    no callback can run after teardown.
    """

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self.closed = False
        self._timers = {}   # generation -> Timer
        self._keys = {}     # key -> generation
        self._generation = 0

    def schedule(self, delay, callback, key=None):
        if self.closed:
            return None
        if key is not None:
            self.cancel_key(key)
        self._generation += 1
        timer = Timer(key, self._generation, self.clock() + max(0.0, delay), callback)
        self._timers[timer.generation] = timer
        if key is not None:
            self._keys[key] = timer.generation
        return timer

    def cancel(self, timer):
        if timer is None or self._timers.get(timer.generation) is not timer:
            return False
        self._forget(timer)
        return True

    def cancel_key(self, key):
        gen = self._keys.get(key)
        if gen is None:
            return False
        return self.cancel(self._timers.get(gen))

    def next_due(self):
        if not self._timers:
            return None
        return min(t.due for t in self._timers.values())

    def run_due(self):
        """Fire every timer whose deadline has passed, oldest first."""
        if self.closed:
            return 0
        now = self.clock()
        due = sorted((t for t in self._timers.values() if t.due <= now),
                     key=lambda t: (t.due, t.generation))
        fired = 0
        for timer in due:
            if self.closed:
                break
            # an earlier callback may have cancelled or replaced it
            if self._timers.get(timer.generation) is not timer:
                continue
            self._forget(timer)
            timer.callback()
            fired += 1
        return fired

    def close(self):
        self.closed = True
        self._timers.clear()
        self._keys.clear()

    def _forget(self, timer):
        self._timers.pop(timer.generation, None)
        if timer.key is not None and self._keys.get(timer.key) == timer.generation:
            del self._keys[timer.key]

    def __len__(self):
        return len(self._timers)
