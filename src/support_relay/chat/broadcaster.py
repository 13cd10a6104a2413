from typing import Callable, Iterable
import logging
import threading

logger = logging.getLogger("support_relay")

AGENT_ROOM = "agents"

# send(connection_id, event, payload)
SendFunc = Callable[[str, str, object], None]


class RoomBroadcaster:
    """
    Named rooms of live connections.

    Membership changes are visible to every broadcast that starts after them. A
    broadcast delivers to a snapshot of the members taken when it starts, so a
    connection joining concurrently may or may not receive it. Nothing is stored
    or replayed for late joiners.
    """

    def __init__(self, send: SendFunc):
        self._send = send
        self._lock = threading.Lock()
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = {}

    def join(self, room_id: str, connection_id: str) -> None:
        with self._lock:
            self._rooms.setdefault(room_id, set()).add(connection_id)
            self._memberships.setdefault(connection_id, set()).add(room_id)

    def leave(self, room_id: str, connection_id: str) -> None:
        with self._lock:
            self._discard(room_id, connection_id)

    def leave_all(self, connection_id: str) -> None:
        with self._lock:
            for room_id in self._memberships.pop(connection_id, set()):
                members = self._rooms.get(room_id)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._rooms[room_id]

    def _discard(self, room_id: str, connection_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[room_id]
        rooms = self._memberships.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._memberships[connection_id]

    def members(self, room_id: str) -> set[str]:
        with self._lock:
            return set(self._rooms.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> set[str]:
        with self._lock:
            return set(self._memberships.get(connection_id, ()))

    def is_member(self, room_id: str, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._rooms.get(room_id, ())

    def broadcast(self, room_id: str, event: str, payload) -> int:
        return self.broadcast_many([room_id], event, payload)

    def broadcast_many(self, room_ids: Iterable[str], event: str, payload) -> int:
        """
        Delivers an event once to every connection in any of the rooms.

        Returns:
            number of connections the event was handed to
        """
        with self._lock:
            recipients = set()
            for room_id in room_ids:
                recipients.update(self._rooms.get(room_id, ()))

        for connection_id in sorted(recipients):
            try:
                self._send(connection_id, event, payload)
            except Exception as e:
                logger.warning(f"failed to deliver {event} to {connection_id}: {e}")
        return len(recipients)
