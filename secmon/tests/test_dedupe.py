from secmon.dedupe import TimeDedupe


def test_first_seen_suppresses_until_ttl(clock):
    dedupe = TimeDedupe(ttl_seconds=60, clock=clock)
    assert dedupe.first_seen("rate:1.2.3.4") is True
    assert dedupe.first_seen("rate:1.2.3.4") is False
    assert "rate:1.2.3.4" in dedupe
    clock.advance(60)
    assert "rate:1.2.3.4" not in dedupe
    assert dedupe.first_seen("rate:1.2.3.4") is True


def test_entries_expire(clock):
    dedupe = TimeDedupe(ttl_seconds=5, clock=clock)
    dedupe.first_seen("k")
    assert len(dedupe) == 1
    clock.advance(6)
    assert "k" not in dedupe
    assert len(dedupe) == 0


def test_expired_keys_are_purged_when_large(clock):
    dedupe = TimeDedupe(ttl_seconds=1, clock=clock)
    for i in range(1025):
        dedupe.first_seen(f"k{i}")
    clock.advance(2)
    dedupe.first_seen("fresh")
    assert len(dedupe) == 1
