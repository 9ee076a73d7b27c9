import json

import structlog

from api_consolidator.log import configure_logging


class TestConfigureLogging:
    def test_json_logs_to_stderr(self, capsys):
        configure_logging("INFO", json_logs=True)
        structlog.get_logger("test").warning("reference_target_not_found", ref="#/x")
        record = json.loads(capsys.readouterr().err.strip())
        assert record["event"] == "reference_target_not_found"
        assert record["ref"] == "#/x"
        assert record["level"] == "warning"
        assert "timestamp" in record

    def test_level_filter(self, capsys):
        configure_logging("WARNING")
        logger = structlog.get_logger("test")
        logger.info("hidden")
        logger.warning("shown")
        err = capsys.readouterr().err
        assert "hidden" not in err
        assert "shown" in err
