from __future__ import annotations

from .models import PlayerJoined, PlayerLeft, RosterSnapshot, ServerEvent


class RosterTracker:
    """The set of players believed to be online, keyed by display name.

    The set is an immutable frozenset that is replaced on every change, so a
    reader always sees either the old or the new roster, never a half-applied
    one.  Only the console event consumer writes; the router and the presence
    publisher read through snapshot().

    Lost on restart; the server re-announces joins anyway.
    """

    def __init__(self) -> None:
        self._names: frozenset[str] = frozenset()

    def apply(self, event: ServerEvent) -> bool:
        """Apply a join/leave event.  Returns True if the roster changed.

        Duplicate joins and leaves for unknown names are no-ops: the console
        can repeat itself after a partial loss of output.
        """
        if isinstance(event, PlayerJoined):
            if event.name in self._names:
                return False
            self._names = self._names | {event.name}
            return True

        if isinstance(event, PlayerLeft):
            if event.name not in self._names:
                return False
            self._names = self._names - {event.name}
            return True

        return False

    def clear(self) -> bool:
        """Forget everyone (the server process went away)."""
        changed = bool(self._names)
        self._names = frozenset()
        return changed

    def snapshot(self) -> RosterSnapshot:
        return RosterSnapshot.of(self._names)

    def __len__(self) -> int:
        return len(self._names)
