import structlog

from releasewatch.core.logger import TruncateTitles, log_context


class TestTruncateTitles:
    def test_long_titles_are_shortened(self):
        event = TruncateTitles(limit=10)(None, "info", {
            "event": "duplicate_detected",
            "title": "Haunted Mansion Spirit Jersey",
            "article_title": "short",
        })
        assert event["title"] == "Haunted Ma..."
        assert event["article_title"] == "short"

    def test_other_fields_untouched(self):
        key = "haunted-mansion-spirit-jersey-glow"
        event = TruncateTitles(limit=10)(None, "info", {"event": "x", "key": key, "title": None})
        assert event["key"] == key
        assert event["title"] is None

    def test_limit_is_inclusive(self):
        event = TruncateTitles(limit=5)(None, "info", {"event": "x", "title": "Mugs!"})
        assert event["title"] == "Mugs!"


def test_nested_log_context_restores_outer_values():
    with log_context(run_id="outer", lock_name="feed_processing"):
        with log_context(run_id="inner"):
            assert structlog.contextvars.get_contextvars()["run_id"] == "inner"
        bound = structlog.contextvars.get_contextvars()
        assert bound["run_id"] == "outer"
        assert bound["lock_name"] == "feed_processing"
    assert "run_id" not in structlog.contextvars.get_contextvars()
