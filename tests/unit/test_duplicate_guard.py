from datetime import date, timedelta

from services.order_guard import DuplicateGuard


def test_unseen_ticker_is_not_duplicate(guard):
    assert guard.has_ordered_today("INFY") is False


def test_recorded_ticker_is_duplicate_for_the_day(guard):
    guard.record_order("INFY")
    assert guard.has_ordered_today("INFY") is True
    assert guard.has_ordered_today("infy") is True
    assert guard.has_ordered_today("TCS") is False


def test_record_increments_count(guard, clock):
    guard.record_order("INFY")
    clock.advance(60)
    entry = guard.record_order(" infy ")

    assert entry.ticker == "INFY"
    assert entry.order_count == 2
    assert entry.last_order_at == clock.now()
    assert guard.get_entry("INFY") is entry


def test_next_day_is_not_duplicate(guard, clock):
    guard.record_order("INFY")
    clock.set_day(clock.today() + timedelta(days=1))

    assert guard.has_ordered_today("INFY") is False
    assert guard.get_entry("INFY") is None


def test_old_entries_are_pruned(clock):
    guard = DuplicateGuard(clock, retention_days=30)
    first_day = clock.today()
    guard.record_order("INFY")

    clock.set_day(first_day + timedelta(days=31))
    guard.record_order("TCS")

    assert guard.get_entry("INFY", first_day) is None
    assert guard.stats()["entries_pruned"] == 1


def test_entries_within_retention_are_kept(guard, clock):
    first_day = clock.today()
    guard.record_order("INFY")
    clock.set_day(first_day + timedelta(days=30))
    guard.record_order("TCS")

    assert guard.get_entry("INFY", first_day) is not None


def test_reset_and_stats(guard, clock):
    guard.record_order("INFY")
    guard.record_order("TCS")
    guard.has_ordered_today("INFY")
    guard.has_ordered_today("SBIN")

    stats = guard.stats()
    assert stats["total_checks"] == 2
    assert stats["duplicates_found"] == 1
    assert stats["orders_recorded"] == 2
    assert stats["tickers_today"] == ["INFY", "TCS"]

    guard.reset()
    assert guard.has_ordered_today("INFY") is False
    assert guard.stats()["entries"] == 0


def test_explicit_day_lookup(guard, clock):
    guard.record_order("INFY")
    assert guard.get_entry("INFY", clock.today()).order_count == 1
    assert guard.get_entry("INFY", date(2000, 1, 1)) is None
