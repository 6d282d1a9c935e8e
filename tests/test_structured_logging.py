import json

from issuecascade.logging import StructuredLogger, configure_logging, get_logger


def test_json_logging_goes_to_stderr(capsys):
    logger = StructuredLogger(name="issuecascade.test.json", json_logging=True, level="INFO")
    logger.log_operation("batch_update", applied=3)

    captured = capsys.readouterr()
    assert captured.out == ""
    entry = json.loads(captured.err.strip().splitlines()[-1])
    assert entry["message"] == "Operation: batch_update"
    assert entry["operation"] == "batch_update"
    assert entry["applied"] == 3
    assert entry["level"] == "INFO"


def test_plain_logging_respects_level(capsys):
    logger = StructuredLogger(name="issuecascade.test.plain", level="WARNING")
    logger.info("hidden")
    logger.warning("shown")
    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "WARNING shown" in err


def test_timed_operation_logs_performance(capsys):
    logger = StructuredLogger(name="issuecascade.test.timed", json_logging=True, level="INFO")
    with logger.timed_operation("collect", root=1):
        pass
    lines = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
    assert lines[0]["operation"] == "collect_start"
    assert lines[-1]["operation"] == "collect"
    assert "duration_ms" in lines[-1]


def test_env_level_overrides_configured_level(monkeypatch):
    monkeypatch.setenv("ISSUECASCADE_LOG_LEVEL", "DEBUG")
    logger = configure_logging(level="ERROR")
    assert logger.level == 10
    assert get_logger() is logger
