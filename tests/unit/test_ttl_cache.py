"""Tests unitaires du cache mémoire scoppé par tenant."""

from app.core.ttl_cache import TenantTTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_cache(ttl: float = 300) -> tuple[TenantTTLCache, FakeClock]:
    clock = FakeClock()
    return TenantTTLCache("test", default_ttl=ttl, clock=clock), clock


class TestTenantTTLCache:
    def test_get_set(self):
        cache, _ = make_cache()
        cache.set("sales-t1-all", {"total": 3}, tenant_id="t1")

        assert cache.get("sales-t1-all", tenant_id="t1") == {"total": 3}

    def test_missing_key(self):
        cache, _ = make_cache()
        assert cache.get("absent", tenant_id="t1") is None

    def test_expiry(self):
        cache, clock = make_cache(ttl=300)
        cache.set("k", "v", tenant_id="t1")

        clock.now += 299
        assert cache.get("k", tenant_id="t1") == "v"

        clock.now += 1
        assert cache.get("k", tenant_id="t1") is None
        assert len(cache) == 0

    def test_custom_ttl(self):
        cache, clock = make_cache(ttl=300)
        cache.set("k", "v", tenant_id="t1", ttl=10)

        clock.now += 11
        assert cache.get("k", tenant_id="t1") is None

    def test_tenant_mismatch_drops_entry(self):
        """Une lecture pour un autre tenant ne renvoie rien et supprime l'entrée."""
        cache, _ = make_cache()
        cache.set("shared-key", "secret", tenant_id="t1")

        assert cache.get("shared-key", tenant_id="t2") is None
        assert cache.get("shared-key", tenant_id="t1") is None

    def test_uuid_and_str_tenant_ids_match(self):
        import uuid

        tenant = uuid.uuid4()
        cache, _ = make_cache()
        cache.set("k", 1, tenant_id=tenant)

        assert cache.get("k", tenant_id=str(tenant)) == 1

    def test_invalidate_tenant(self):
        cache, _ = make_cache()
        cache.set("a", 1, tenant_id="t1")
        cache.set("b", 2, tenant_id="t1")
        cache.set("c", 3, tenant_id="t2")

        assert cache.invalidate_tenant("t1") == 2
        assert cache.get("c", tenant_id="t2") == 3

    def test_invalidate_pattern_and_sale(self):
        cache, _ = make_cache()
        cache.set("sale-42", 1, tenant_id="t1")
        cache.set("sale-43", 2, tenant_id="t1")
        cache.set("sales-t1-today", 3, tenant_id="t1")

        assert cache.invalidate_sale(42) == 1
        assert cache.invalidate_pattern("sales-") == 1
        assert len(cache) == 1

    def test_clear(self):
        cache, _ = make_cache()
        cache.set("a", 1, tenant_id="t1")
        cache.clear()
        assert len(cache) == 0
