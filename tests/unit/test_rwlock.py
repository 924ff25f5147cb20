"""Unit tests for ReadWriteLock."""

import threading

from devtrack.core.rwlock import ReadWriteLock


def test_readers_share_the_lock():
    lock = ReadWriteLock()
    inside = threading.Barrier(2, timeout=0.5)

    def reader():
        with lock.read():
            inside.wait()

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=1)

    assert not any(thread.is_alive() for thread in threads)
    assert not inside.broken


def test_writer_waits_for_reader():
    lock = ReadWriteLock()
    order = []
    reader_in = threading.Event()
    release_reader = threading.Event()

    def reader():
        with lock.read():
            reader_in.set()
            release_reader.wait(timeout=0.5)
            order.append("read")

    def writer():
        with lock.write():
            order.append("write")

    r = threading.Thread(target=reader)
    r.start()
    reader_in.wait(timeout=0.5)
    w = threading.Thread(target=writer)
    w.start()
    release_reader.set()
    r.join(timeout=1)
    w.join(timeout=1)

    assert order == ["read", "write"]


def test_lock_is_reusable_after_exception():
    lock = ReadWriteLock()
    try:
        with lock.write():
            raise ValueError("boom")
    except ValueError:
        pass

    with lock.read():
        pass
    with lock.write():
        pass
