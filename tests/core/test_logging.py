"""Tests for structured logging and correlation IDs."""

import json
import logging

from pavilion.core.exceptions import StorageError
from pavilion.core.logging import (
    JSONFormatter,
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    log_error,
    log_info,
)
from pavilion.core.tracing import configure_tracing, pipeline_span, shutdown_tracing


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.setFormatter(JSONFormatter())
        self.lines = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(json.loads(self.format(record)))


def _logger(handler: CapturingHandler) -> logging.Logger:
    logger = logging.getLogger("pavilion.tests.logging")
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger


class TestCorrelationScope:

    def test_scope_binds_and_restores(self) -> None:
        clear_correlation_id()
        outer = get_correlation_id()

        with correlation_scope("upload-1"):
            assert get_correlation_id() == "upload-1"
            with correlation_scope("upload-2"):
                assert get_correlation_id() == "upload-2"
            assert get_correlation_id() == "upload-1"

        assert get_correlation_id() == outer


class TestJSONFormatter:

    def test_record_carries_correlation_and_extra_fields(self) -> None:
        handler = CapturingHandler()
        logger = _logger(handler)

        with correlation_scope("upload-42"):
            log_info(logger, "Staged 10 bytes", upload_id="upload-42", checksum="abc")

        [line] = handler.lines
        assert line["level"] == "INFO"
        assert line["message"] == "Staged 10 bytes"
        assert line["correlation_id"] == "upload-42"
        assert line["extra"]["checksum"] == "abc"
        assert "correlation_id" not in line["extra"]

    def test_exception_is_serialized(self) -> None:
        handler = CapturingHandler()
        logger = _logger(handler)

        log_error(logger, "IPFS upload failed", exception=StorageError("ipfs down"))

        [line] = handler.lines
        assert line["level"] == "ERROR"
        assert line["exception"]["type"] == "StorageError"
        assert "ipfs down" in line["exception"]["message"]

    def test_unserializable_extra_is_stringified(self) -> None:
        handler = CapturingHandler()
        logger = _logger(handler)

        log_info(logger, "tiers", failed_resolutions={"480p"})

        assert handler.lines[0]["extra"]["failed_resolutions"] == "{'480p'}"


class TestTracing:

    def test_records_inside_a_span_carry_trace_ids(self) -> None:
        handler = CapturingHandler()
        logger = _logger(handler)
        configure_tracing("pavilion-test", "0.0.0")
        try:
            with pipeline_span("stage", upload_id="upload-7", checksum=None) as span:
                log_info(logger, "inside span")
                trace_id = format(span.get_span_context().trace_id, "032x")
        finally:
            shutdown_tracing()

        [line] = handler.lines
        assert line["trace_id"] == trace_id
        assert span.name == "ingest.stage"
        assert span.attributes["pavilion.upload_id"] == "upload-7"
        assert "pavilion.checksum" not in span.attributes
