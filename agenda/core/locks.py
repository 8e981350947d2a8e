from contextlib import contextmanager
from threading import Lock


class KeyedLocks:
    """One mutex per key, created on demand and dropped when unused."""

    def __init__(self):
        self._guard = Lock()
        self._locks: dict[tuple, Lock] = {}
        self._users: dict[tuple, int] = {}

    @contextmanager
    def hold(self, key: tuple):
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


booking_locks = KeyedLocks()
loyalty_locks = KeyedLocks()


def booking_lock(tenant_id: int, professional_id: int):
    # Per professional, not per date: bookings near midnight overlap across days.
    return booking_locks.hold((tenant_id, professional_id))


def loyalty_lock(tenant_id: int, client_phone: str):
    return loyalty_locks.hold((tenant_id, client_phone))
