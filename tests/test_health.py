"""Tests for the HealthTracker."""
import threading


class TestRecordSearch:
    def test_hit_increments(self, health):
        health.record_search("relevance", True)
        s = health.status
        assert s["searches_total"] == 1
        assert s["searches_hits"] == 1
        assert s["searches_misses"] == 0
        assert s["searches_by_strategy"]["relevance"] == 1

    def test_miss_increments(self, health):
        health.record_search("diversity", False)
        s = health.status
        assert s["searches_misses"] == 1
        assert s["searches_by_strategy"]["diversity"] == 1

    def test_unknown_strategy_not_tracked(self, health):
        health.record_search("lexical", True)
        s = health.status
        assert s["searches_total"] == 1
        assert "lexical" not in s["searches_by_strategy"]

    def test_last_search_at_set(self, health):
        assert health.status["last_search_at"] is None
        health.record_search("hybrid", True)
        assert health.status["last_search_at"] is not None


class TestRecordIngest:
    def test_success(self, health):
        health.record_ingest(ok=True, attempted=3, inserted=2, duplicates=1)
        s = health.status
        assert s["last_ingest_ok"] is True
        assert (s["last_ingest_attempted"], s["last_ingest_inserted"], s["last_ingest_duplicates"]) == (3, 2, 1)
        assert health.is_healthy

    def test_failure(self, health):
        health.record_ingest(ok=False, attempted=3, error="provider down")
        assert health.status["last_ingest_error"] == "provider down"
        assert not health.is_healthy


class TestCounters:
    def test_fallback_cache_delete_dropped(self, health):
        health.record_fallback("analysis: boom")
        health.record_cache_hit()
        health.record_delete(4)
        health.record_access_dropped()
        s = health.status
        assert s["fallbacks"] == 1
        assert s["last_fallback_error"] == "analysis: boom"
        assert s["cache_hits"] == 1
        assert s["deleted_total"] == 4
        assert s["access_updates_dropped"] == 1

    def test_status_is_copy(self, health):
        s = health.status
        s["searches_by_strategy"]["relevance"] = 99
        assert health.status["searches_by_strategy"]["relevance"] == 0

    def test_thread_safety(self, health):
        def worker():
            for _ in range(100):
                health.record_search("relevance", True)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert health.status["searches_total"] == 1000
