import io

import pytest

import utils


def test_color_text_wraps_ansi() -> None:
    text = utils.color_text("hello", "32")
    assert text.startswith("\033[32m")
    assert text.endswith("\033[0m")


def test_logger_filters_by_level_and_buffers_records() -> None:
    stream = io.StringIO()
    log = utils.BotLogger("WARN", stream=stream, colored=False)
    log.info("hidden")
    log.warn("shown")
    log.error("also shown")

    output = stream.getvalue().splitlines()
    assert len(output) == 2
    assert output[0].startswith("WARN")
    assert "shown" in output[0]
    assert [record[1:] for record in log.recent()] == [("WARN", "shown"), ("ERROR", "also shown")]


def test_logger_ring_buffer_keeps_latest_records() -> None:
    log = utils.BotLogger("DEBUG", stream=io.StringIO())
    for index in range(utils.MAX_LOG_BUFFER + 5):
        log.debug(f"line {index}")
    records = log.recent()
    assert len(records) == utils.MAX_LOG_BUFFER
    assert records[-1][2] == f"line {utils.MAX_LOG_BUFFER + 4}"
    assert [record[2] for record in log.recent(2)] == [
        f"line {utils.MAX_LOG_BUFFER + 3}",
        f"line {utils.MAX_LOG_BUFFER + 4}",
    ]


def test_logger_rejects_unknown_level() -> None:
    log = utils.BotLogger(stream=io.StringIO())
    with pytest.raises(ValueError):
        log.set_level("TRACE")
    log.set_level("debug")
    assert log.level == "DEBUG"
