"""Tests for camp_spine.core.logging."""

import json

from camp_spine.core.logging import LogContext, clear_context, configure_logging, get_logger


def test_json_output_uses_ecs_names(capsys):
    configure_logging(level="INFO", json_format=True, service="camp-spine-test")
    get_logger("tests").info("job_completed", job_id="job_1")

    line = capsys.readouterr().err.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "job_completed"
    assert event["job_id"] == "job_1"
    assert event["log.level"] == "info"
    assert event["service.name"] == "camp-spine-test"
    assert "@timestamp" in event


def test_level_filtering(capsys):
    configure_logging(level="WARNING", json_format=True)
    get_logger("tests").info("hidden")
    assert "hidden" not in capsys.readouterr().err


def test_log_context_binds_and_unbinds(capsys):
    configure_logging(level="INFO", json_format=True)
    logger = get_logger("tests")
    with LogContext(run_id="seq_1"):
        logger.info("inside")
    logger.info("outside")
    clear_context()

    lines = [json.loads(x) for x in capsys.readouterr().err.strip().splitlines()]
    inside = next(e for e in lines if e["event"] == "inside")
    outside = next(e for e in lines if e["event"] == "outside")
    assert inside["run_id"] == "seq_1"
    assert "run_id" not in outside
