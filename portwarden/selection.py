from .events import Modifier


class SelectionModel:
    """
    Multi-selection and cursor over the current ranked view.

    `view` is the ordered list of identities currently shown. `anchor` and
    `cursor` are indexes into it; `set_view()` remaps both by identity so
    they survive re-ranking and refreshes.
    """

    def __init__(self):
        self.view = []
        self.selected = set()
        self.anchor = None
        self.cursor = -1

    def set_view(self, identities):
        anchored = self._at(self.anchor)
        under_cursor = self._at(self.cursor)

        self.view = list(identities)
        positions = {ident: i for i, ident in enumerate(self.view)}

        self.selected &= set(positions)
        self.anchor = positions.get(anchored) if anchored is not None else None

        if under_cursor in positions:
            self.cursor = positions[under_cursor]
        elif self.view:
            self.cursor = min(max(self.cursor, 0), len(self.view) - 1)
        else:
            self.cursor = -1

    def activate(self, index, identity, modifier=Modifier.PLAIN):
        if self._at(index) != identity:
            # the row moved since it was drawn; trust the identity
            index = self.index_of(identity)
            if index is None:
                return False

        if modifier == Modifier.TOGGLE:
            if identity in self.selected:
                self.selected.discard(identity)
            else:
                self.selected.add(identity)
        elif modifier == Modifier.RANGE and self.anchor is not None:
            lo, hi = sorted((self.anchor, index))
            self.selected = set(self.view[lo:hi + 1])
        else:
            self.selected = {identity}
            self.anchor = index
        self.cursor = index
        return True

    def select_all(self):
        self.selected = set(self.view)

    def clear(self):
        self.selected.clear()
        self.anchor = None

    def navigate(self, delta, extend=False):
        """Move the cursor; with `extend` grow the range from the anchor."""
        if not self.view:
            return None
        start = self.cursor if self.cursor >= 0 else 0
        if extend and self.anchor is None:
            self.anchor = start
            self.selected.add(self.view[start])
        index = min(max(start + delta, 0), len(self.view) - 1)
        if extend:
            self.activate(index, self.view[index], Modifier.RANGE)
        else:
            self.cursor = index
        return self.view[index]

    def current(self):
        return self._at(self.cursor)

    def index_of(self, identity):
        try:
            return self.view.index(identity)
        except ValueError:
            return None

    def ordered(self):
        """Selected identities in view order."""
        return [ident for ident in self.view if ident in self.selected]

    def _at(self, index):
        if index is None or not 0 <= index < len(self.view):
            return None
        return self.view[index]
