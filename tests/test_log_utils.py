"""
Unit tests for file logging helpers
"""

import json

from ui import log_utils


def flush() -> None:
    log_utils._executor.submit(lambda: None).result()


class TestErrorLog:
    def test_error_entry_is_written(self, tmp_path):
        log_utils.write_error_log("product", 503, "Upstream timeout after 30000ms", log_root=tmp_path)
        flush()
        [entry] = (tmp_path / "errors").glob("*.json")
        data = json.loads(entry.read_text())
        assert data["route"] == "product"
        assert data["status"] == 503
        assert data["message"] == "Upstream timeout after 30000ms"
        assert "timestamp" in data

    def test_failed_write_is_reported(self, tmp_path, capsys):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        log_utils.write_error_log("user", 500, "boom", log_root=blocker)
        flush()
        assert "Log write failed" in capsys.readouterr().err
