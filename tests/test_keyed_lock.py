import threading
import time

from support_relay.chat.keyed_lock import KeyedLock


def test_same_key_is_mutually_exclusive():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def worker():
        with locks.hold("c1"):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []


def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    entered = threading.Event()

    def hold_other():
        with locks.hold("c2"):
            entered.set()

    with locks.hold("c1"):
        t = threading.Thread(target=hold_other)
        t.start()
        t.join(timeout=1)

    assert entered.is_set()


def test_entries_are_dropped_when_idle():
    locks = KeyedLock()
    with locks.hold("c1"):
        with locks.hold("c2"):
            assert len(locks) == 2
    assert len(locks) == 0


def test_entry_is_released_when_body_raises():
    locks = KeyedLock()
    try:
        with locks.hold("c1"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert len(locks) == 0
    with locks.hold("c1"):
        pass
