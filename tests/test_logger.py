import io
import threading

import pytest
from loguru import logger

from hooksync.logger import resolve_level, setup_logger


@pytest.fixture
def stream():
    buffer = io.StringIO()
    yield buffer
    logger.remove()


def test_level_from_environment(monkeypatch):
    monkeypatch.delenv("HOOKSYNC_DEBUG", raising=False)
    assert resolve_level() == "INFO"
    monkeypatch.setenv("HOOKSYNC_DEBUG", "1")
    assert resolve_level() == "DEBUG"
    assert resolve_level("warning") == "WARNING"


def test_info_output_hides_debug(stream):
    setup_logger("INFO", sink=stream, enqueue=False, colorize=False)

    logger.debug("[更新] hidden")
    logger.info("[更新] shown")

    output = stream.getvalue()
    assert "shown" in output
    assert "hidden" not in output
    assert "MainThread" not in output


def test_debug_output_names_worker_thread(stream):
    setup_logger("DEBUG", sink=stream, enqueue=False, colorize=False)

    worker = threading.Thread(
        target=lambda: logger.info("[更新] from worker"), name="hooksync-update"
    )
    worker.start()
    worker.join()

    lines = [line for line in stream.getvalue().splitlines() if "from worker" in line]
    assert len(lines) == 1
    assert "| hooksync-update |" in lines[0]
