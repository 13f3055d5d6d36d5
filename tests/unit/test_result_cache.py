from trust_analytics.services.cache import ResultCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_miss_then_hit():
    cache = ResultCache(ttl_seconds=300, clock=Clock())

    assert cache.get(("dashboard", "7d")) is None
    cache.set(("dashboard", "7d"), {"total": 1})

    assert cache.get(("dashboard", "7d")) == {"total": 1}
    assert (cache.hits, cache.misses) == (1, 1)


def test_keys_do_not_collide():
    cache = ResultCache(ttl_seconds=300, clock=Clock())
    cache.set(("dashboard", "7d"), "week")

    assert cache.get(("dashboard", "30d")) is None
    assert cache.get(("votes", "7d")) is None


def test_hit_returns_same_object():
    cache = ResultCache(ttl_seconds=300, clock=Clock())
    snapshot = {"total": 1}
    cache.set("key", snapshot)

    assert cache.get("key") is snapshot


def test_entries_expire_at_ttl():
    clock = Clock()
    cache = ResultCache(ttl_seconds=300, clock=clock)
    cache.set("key", "value")

    clock.now = 299.9
    assert cache.get("key") == "value"

    clock.now = 300
    assert cache.get("key") is None
    assert len(cache) == 0


def test_invalidate_all():
    cache = ResultCache(ttl_seconds=300, clock=Clock())
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.invalidate_all() == 2
    assert len(cache) == 0
    assert cache.get("a") is None
    assert cache.invalidate_all() == 0


def test_set_skips_snapshot_from_before_invalidation():
    cache = ResultCache(ttl_seconds=300, clock=Clock())
    generation = cache.generation

    cache.invalidate_all()

    assert cache.set("key", "stale", generation=generation) is False
    assert cache.get("key") is None
    assert cache.set("key", "fresh", generation=cache.generation) is True
    assert cache.get("key") == "fresh"
