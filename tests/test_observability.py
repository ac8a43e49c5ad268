"""Tests for structured logging and metrics."""

import json
import logging

from observability.logging import ColoredFormatter, JSONFormatter
from observability.prometheus_metrics import (
    export_metrics,
    get_metrics_summary,
    record_index_rebuild,
    record_search_metrics,
)


def make_record(message="Indexed page", **extra):
    record = logging.LogRecord("indexer.document_store", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_formatter(self):
        entry = json.loads(JSONFormatter("catalog-test").format(make_record(document_id="doc-1")))

        assert entry["message"] == "Indexed page"
        assert entry["level"] == "INFO"
        assert entry["service"] == "catalog-test"
        assert entry["document_id"] == "doc-1"

    def test_colored_formatter_plain(self):
        line = ColoredFormatter(use_colors=False).format(make_record())
        assert "| INFO     | indexer.document_store | Indexed page" in line
        assert "\033[" not in line


class TestMetrics:

    def test_summary_counts_searches(self):
        before = get_metrics_summary()["search_requests_total"]
        record_search_metrics("lexical", 0.01, 3)
        assert get_metrics_summary()["search_requests_total"] == before + 1

    def test_export(self):
        record_index_rebuild("manual", 0.02)
        text = export_metrics().decode("utf-8")
        assert "standards_lexical_index_rebuilds_total" in text
