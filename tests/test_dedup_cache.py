"""
Tests for the observed deployments cache.
"""
import threading

from deployment_tracker.services.dedup_cache import ObservedDeployments, cache_key


def test_cache_key_format():
    assert cache_key("prod/web/app", "sha256:abc") == "prod/web/app||sha256:abc"


def test_add_contains_discard():
    cache = ObservedDeployments()
    key = cache_key("prod/web/app", "sha256:abc")

    assert not cache.contains(key)
    cache.add(key)
    assert key in cache
    assert len(cache) == 1

    cache.discard(key)
    assert key not in cache
    cache.discard(key)  # no error when absent


def test_same_deployment_different_digest_tracked_separately():
    cache = ObservedDeployments()
    cache.add(cache_key("prod/web/app", "sha256:old"))
    assert not cache.contains(cache_key("prod/web/app", "sha256:new"))


def test_concurrent_adds():
    cache = ObservedDeployments()

    def worker(n):
        for i in range(200):
            cache.add(cache_key(f"dn-{n}", f"sha256:{i}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 800

    cache.clear()
    assert len(cache) == 0
