"""Tests for root logger setup"""
import json
import logging

import pytest

from app.core import logging_config


@pytest.fixture
def fresh_root(monkeypatch):
    root = logging.getLogger()
    saved_level = root.level
    # Restored on teardown along with pytest's own capture handlers
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(logging_config, "_configured", False)
    yield root
    root.setLevel(saved_level)


class TestSetupLogging:

    def test_json_format_emits_parseable_lines(self, fresh_root, capsys):
        logging_config.setup_logging(level="info", log_format="json")
        logging.getLogger("image_tagger.test").info("[BatchProcessor b-1] Processing 2 images")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["message"] == "[BatchProcessor b-1] Processing 2 images"
        assert record["levelname"] == "INFO"
        assert fresh_root.level == logging.INFO

    def test_configures_only_once(self, fresh_root):
        logging_config.setup_logging(level="debug", log_format="text")
        handler = fresh_root.handlers[0]
        logging_config.setup_logging(level="error", log_format="json")

        assert fresh_root.handlers == [handler]
        assert fresh_root.level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.WARNING
