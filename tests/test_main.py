"""Tests for the takeout_ingest command-line entry point."""

from __future__ import annotations

import gzip
import json
import sys

import pytest

from takeout_ingest.__main__ import main

EML = (
    b"From 1234@xxx Mon Jun 02 12:00:00 +0000 2025\r\n"
    b"From: a@example.com\r\n"
    b"Subject: =?UTF-8?Q?Hi?=\r\n"
    b"Content-Type: text/plain\r\n"
    b"\r\n"
    b"Hello"
)


def _events(err: bytes) -> list[dict]:
    records = []
    for line in err.decode().splitlines():
        line = line.strip()
        if line.startswith("{"):
            records.append(json.loads(line))
    return records


@pytest.fixture(autouse=True)
def _json_logs(monkeypatch):
    monkeypatch.setenv("INGEST_LOG_JSON", "true")
    monkeypatch.setenv("INGEST_LOG_LEVEL", "INFO")


class TestUsage:
    @pytest.mark.parametrize("argv", [[], ["decode"], ["unpack", "x.tar"]])
    def test_bad_arguments_exit_1(self, monkeypatch, capsysbinary, argv):
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", *argv])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert b"Usage" in capsysbinary.readouterr().err


class TestDecodeMode:
    def test_writes_decoded_blob_to_stdout(self, monkeypatch, capsysbinary, tmp_path):
        path = tmp_path / "msg.eml"
        path.write_bytes(EML)
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", "decode", str(path)])

        main()

        assert capsysbinary.readouterr().out == (
            b"From 1234@xxx Mon Jun 02 12:00:00 +0000 2025\r\n"
            b"From: a@example.com\r\n"
            b"Subject: Hi\r\n"
            b"Content-Type: text/plain\r\n"
            b"\r\n"
            b"Hello"
        )

    def test_header_whitelist_from_env(self, monkeypatch, capsysbinary, tmp_path):
        path = tmp_path / "msg.eml"
        path.write_bytes(EML)
        monkeypatch.setenv("DECODER_HEADERS", '["Subject"]')
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", "decode", str(path)])

        main()

        assert capsysbinary.readouterr().out == (
            b"From 1234@xxx Mon Jun 02 12:00:00 +0000 2025\r\nSubject: Hi\r\n\r\nHello"
        )

    def test_decode_failure_exit_2(self, monkeypatch, capsysbinary, tmp_path):
        path = tmp_path / "broken.eml"
        path.write_bytes(b"no line terminator at all")
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", "decode", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 2
        captured = capsysbinary.readouterr()
        assert captured.out == b""
        failures = [r for r in _events(captured.err) if r["event"] == "ingest_failed"]
        assert failures[0]["mode"] == "decode"
        assert failures[0]["input"] == str(path)


class TestListMode:
    def test_logs_each_entry(self, monkeypatch, capsysbinary, tmp_path, tar_factory):
        path = tmp_path / "export.tar.gz"
        path.write_bytes(gzip.compress(tar_factory([
            ("Takeout", None),
            ("Takeout/a.eml", EML),
        ])))
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", "list", str(path)])

        main()

        captured = capsysbinary.readouterr()
        assert captured.out == b""
        entries = [r for r in _events(captured.err) if r["event"] == "archive_entry"]
        assert [(r["name"], r["type"]) for r in entries] == [
            ("Takeout/", "5"),
            ("Takeout/a.eml", "0"),
        ]
        assert entries[1]["size"] == len(EML)
        assert {(r["mode"], r["input"]) for r in entries} == {("list", str(path))}

    def test_corrupt_archive_exit_2(self, monkeypatch, capsysbinary, tmp_path):
        path = tmp_path / "export.tar"
        path.write_bytes(b"\x01" * 512)
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", "list", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 2


class TestImportMode:
    def test_imports_and_decodes_emails(self, monkeypatch, capsysbinary, tmp_path, tar_factory):
        path = tmp_path / "export.tar"
        path.write_bytes(tar_factory([
            ("Takeout/a.eml", EML),
            ("Takeout/broken.eml", b"nothing useful"),
            ("Takeout/notes.txt", b"notes"),
        ]))
        monkeypatch.setattr(sys, "argv", ["takeout-ingest", "import", str(path)])

        main()

        records = _events(capsysbinary.readouterr().err)
        imported = [r["path"] for r in records if r["event"] == "file_imported"]
        assert imported == [
            "export.tar/Takeout/a.eml",
            "export.tar/Takeout/broken.eml",
            "export.tar/Takeout/notes.txt",
        ]
        decoded = [r for r in records if r["event"] == "email_decoded"]
        assert decoded[0]["headers"]["Subject"] == "Hi"
        failed = [r for r in records if r["event"] == "email_decode_failed"]
        assert [r["path"] for r in failed] == ["export.tar/Takeout/broken.eml"]
