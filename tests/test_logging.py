"""Tests for takeout_ingest.logging."""

from __future__ import annotations

import json
import logging
import threading

import structlog

from takeout_ingest.logging import setup_logging


def _last_record(err: str) -> dict:
    return json.loads(err.strip().splitlines()[-1])


class TestSetupLogging:
    def test_json_mode(self):
        setup_logging(json=True, level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_console_mode(self):
        setup_logging(json=False, level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG

    def test_level_case_insensitive(self):
        setup_logging(level="warning")
        root = logging.getLogger()
        assert root.level == logging.WARNING

    def test_replaces_existing_handlers(self):
        root = logging.getLogger()
        root.addHandler(logging.StreamHandler())
        root.addHandler(logging.StreamHandler())
        assert len(root.handlers) >= 2
        setup_logging()
        assert len(root.handlers) == 1

    def test_json_lines_on_stderr(self, capsys):
        setup_logging(json=True, level="DEBUG")
        structlog.get_logger("test_logger").info("test_event", key="value")

        captured = capsys.readouterr()
        assert captured.out == ""
        record = _last_record(captured.err)
        assert record["event"] == "test_event"
        assert record["key"] == "value"
        assert record["level"] == "info"
        assert record["thread"] == "MainThread"

    def test_worker_thread_name_recorded(self, capsys):
        setup_logging(json=True, level="DEBUG")

        def work():
            structlog.get_logger("test_logger").info("from_worker")

        worker = threading.Thread(target=work, name="tar-decode_0")
        worker.start()
        worker.join()

        record = _last_record(capsys.readouterr().err)
        assert record["event"] == "from_worker"
        assert record["thread"] == "tar-decode_0"

    def test_run_context_on_every_record(self, capsys):
        setup_logging(json=True, mode="list", input="export.tar")
        structlog.get_logger("test_logger").info("first")
        structlog.get_logger("test_logger").info("second", input="override.tar")

        lines = capsys.readouterr().err.strip().splitlines()
        first, second = json.loads(lines[-2]), json.loads(lines[-1])
        assert (first["mode"], first["input"]) == ("list", "export.tar")
        assert (second["mode"], second["input"]) == ("list", "override.tar")

    def test_context_replaced_on_reconfigure(self, capsys):
        setup_logging(json=True, mode="list")
        setup_logging(json=True, input="other.tar")
        structlog.get_logger("test_logger").info("event")

        record = _last_record(capsys.readouterr().err)
        assert record["input"] == "other.tar"
        assert "mode" not in record
