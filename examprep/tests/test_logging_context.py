import json
import logging

from examprep.core.logging import (
    RequestIdFilter,
    StructuredFormatter,
    latency_bucket_ms,
    log_event,
    request_id_ctx_var,
    safe_truncate,
)


def _record(**extra):
    record = logging.LogRecord("examprep", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_filter_injects_context_request_id():
    token = request_id_ctx_var.set("rid-ctx")
    try:
        record = _record()
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)
    assert record.request_id == "rid-ctx"


def test_json_output_includes_structured_fields():
    record = _record(request_id="rid-1", provider="deepseek", error_code="rate_limited", attempt=2)
    payload = json.loads(StructuredFormatter(as_json=True).format(record))
    assert payload["request_id"] == "rid-1"
    assert payload["provider"] == "deepseek"
    assert payload["error_code"] == "rate_limited"
    assert payload["attempt"] == 2
    assert "user_id" not in payload


def test_pretty_output_is_single_line():
    line = StructuredFormatter().format(_record(request_id="rid-2", capability="aiChat"))
    assert "[rid=rid-2]" in line
    assert "capability=aiChat" in line
    assert "\n" not in line


def test_log_event_truncates_upstream_payload():
    logger = logging.getLogger("examprep")
    handler = _Capture()
    logger.addHandler(handler)
    token = request_id_ctx_var.set("rid-3")
    try:
        log_event(
            "error",
            "[ai] provider call failed",
            event_type="ai_call_failed",
            extra={"upstream": {"error": "x" * 1000}, "upstream_status": 400},
        )
    finally:
        request_id_ctx_var.reset(token)
        logger.removeHandler(handler)

    record = handler.records[-1]
    assert record.request_id == "rid-3"
    assert record.upstream_status == 400
    assert record.upstream.endswith("...<truncated>")
    assert "upstream=" in StructuredFormatter().format(record)


def test_safe_truncate():
    assert safe_truncate("short") == "short"
    assert safe_truncate("x" * 600).endswith("...<truncated>")


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(50) == "<100ms"
    assert latency_bucket_ms(2500) == "1-10s"
    assert latency_bucket_ms(150000) == ">=60s"
