import threading

from signal_scanner.cooldown_store import COOLING, IDLE, CooldownStore
from signal_scanner.models import LONG, SHORT

T0 = 1_700_000_000_000
MIN = 60_000


def test_at_most_once_within_window():
    cd = CooldownStore()
    assert cd.try_acquire("BTCUSDT", "15m", LONG, 30 * MIN, T0) is True
    assert cd.try_acquire("BTCUSDT", "15m", LONG, 30 * MIN, T0 + 29 * MIN) is False
    assert cd.state("BTCUSDT", "15m", LONG, T0 + 29 * MIN) == COOLING
    assert cd.try_acquire("BTCUSDT", "15m", LONG, 30 * MIN, T0 + 30 * MIN) is True
    assert cd.get("BTCUSDT", "15m", LONG).last_emitted_ms == T0 + 30 * MIN


def test_suppressed_attempt_does_not_extend_window():
    cd = CooldownStore()
    cd.try_acquire("ETHUSDT", "5m", SHORT, 15 * MIN, T0)
    cd.try_acquire("ETHUSDT", "5m", SHORT, 15 * MIN, T0 + 10 * MIN)
    assert cd.get("ETHUSDT", "5m", SHORT).last_emitted_ms == T0
    assert cd.state("ETHUSDT", "5m", SHORT, T0 + 15 * MIN) == IDLE


def test_keys_are_independent_and_normalized():
    cd = CooldownStore()
    assert cd.try_acquire("btcusdt", "60m", LONG, 60 * MIN, T0)
    assert not cd.try_acquire("BTCUSDT", "1h", LONG, 60 * MIN, T0 + MIN)
    assert cd.try_acquire("BTCUSDT", "1h", SHORT, 60 * MIN, T0)
    assert cd.try_acquire("BTCUSDT", "15m", LONG, 30 * MIN, T0)
    assert cd.try_acquire("ETHUSDT", "1h", LONG, 60 * MIN, T0)
    assert len(cd) == 4


def test_record_keeps_the_window_it_was_emitted_with():
    cd = CooldownStore()
    cd.try_acquire("SOLUSDT", "15m", LONG, 5 * MIN, T0)
    assert cd.get("SOLUSDT", "15m", LONG).window_ms == 5 * MIN
    assert cd.state("SOLUSDT", "15m", LONG, T0 + 4 * MIN) == COOLING
    assert cd.state("SOLUSDT", "15m", LONG, T0 + 5 * MIN) == IDLE
    assert cd.try_acquire("SOLUSDT", "15m", LONG, 30 * MIN, T0 + 5 * MIN)


def test_concurrent_acquire_single_winner():
    cd = CooldownStore()
    n = 32
    barrier = threading.Barrier(n)
    wins = []

    def worker():
        barrier.wait()
        if cd.try_acquire("SOLUSDT", "15m", LONG, 30 * MIN, T0):
            wins.append(1)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(wins) == 1


def test_concurrent_acquire_while_pruning():
    cd = CooldownStore()
    rounds = 50
    wins = []

    def acquirer(i):
        if cd.try_acquire("XRPUSDT", "15m", LONG, 30 * MIN, T0 + i * 31 * MIN):
            wins.append(i)

    for i in range(rounds):
        barrier = threading.Barrier(9)

        def run(fn):
            barrier.wait()
            fn()

        threads = [threading.Thread(target=run, args=(lambda: acquirer(i),)) for _ in range(8)]
        threads.append(threading.Thread(target=run, args=(lambda: cd.prune(T0 + i * 31 * MIN),)))
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    # one emission per round: every round starts after the previous window elapsed
    assert sorted(wins) == list(range(rounds))


def test_prune_and_release_drop_locks():
    cd = CooldownStore()
    cd.try_acquire("A", "5m", LONG, 15 * MIN, T0)
    cd.try_acquire("B", "1h", LONG, 60 * MIN, T0)
    assert cd.lock_count() == 2

    assert cd.prune(T0 + 20 * MIN) == 1
    assert [r.symbol for r in cd.snapshot()] == ["B"]
    assert cd.lock_count() == 1

    cd.release("B", "1h", LONG)
    assert len(cd) == 0
    assert cd.lock_count() == 0
    assert cd.try_acquire("B", "1h", LONG, 60 * MIN, T0 + MIN)


def test_lock_map_does_not_grow_across_prunes():
    cd = CooldownStore()
    for i in range(200):
        cd.try_acquire(f"C{i}USDT", "1m", LONG, 5 * MIN, T0)
    assert cd.lock_count() == 200
    assert cd.prune(T0 + 5 * MIN) == 200
    assert cd.lock_count() == 0
    assert len(cd) == 0
