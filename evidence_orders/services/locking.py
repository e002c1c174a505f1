"""Per-order critical sections.

Each state-changing operation runs ``read -> validate -> write + audit``
inside ``order_transaction``. The in-process keyed lock serializes callers
in this worker; ``SELECT ... FOR UPDATE`` on the order row does the same
across workers on databases that support row locks.
"""
from contextlib import contextmanager
import logging
import threading

from evidence_orders.errors import NotFoundError
from evidence_orders.extensions import db
from evidence_orders.models import Order

logger = logging.getLogger(__name__)


class KeyedLocks:
    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, holders]
        self._entries = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._entries[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._entries.pop(key, None)

    def active_keys(self):
        with self._guard:
            return set(self._entries)


order_locks = KeyedLocks()


@contextmanager
def order_transaction(order_id):
    """Serialize work on one order and commit it as a single unit."""
    with order_locks.hold(order_id):
        try:
            yield
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def load_order_for_update(order_id):
    order = Order.query.filter_by(
        id=order_id
    ).with_for_update().populate_existing().first()
    if order is None:
        raise NotFoundError('Order not found')
    return order
