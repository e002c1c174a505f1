import threading
import time

from evidence_orders.services.locking import KeyedLocks


def test_same_key_is_serialized():
    locks = KeyedLocks()
    inside = []
    overlaps = []

    def worker():
        with locks.hold('order-1'):
            if inside:
                overlaps.append(True)
            inside.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert locks.active_keys() == set()


def test_different_keys_do_not_block():
    locks = KeyedLocks()
    entered = threading.Event()

    def other():
        with locks.hold('order-2'):
            entered.set()

    with locks.hold('order-1'):
        t = threading.Thread(target=other)
        t.start()
        assert entered.wait(timeout=2)
        t.join()


def test_hold_is_reentrant():
    locks = KeyedLocks()
    with locks.hold('order-1'):
        with locks.hold('order-1'):
            assert locks.active_keys() == {'order-1'}
    assert locks.active_keys() == set()


def test_lock_released_on_error():
    locks = KeyedLocks()
    try:
        with locks.hold('order-1'):
            raise RuntimeError('boom')
    except RuntimeError:
        pass
    assert locks.active_keys() == set()
