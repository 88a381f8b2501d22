import logging
from contextlib import contextmanager

from app.core import logging as app_logging


@contextmanager
def bare_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = []
    try:
        yield root
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def test_setup_logging_is_idempotent() -> None:
    with bare_root_logger() as root:
        app_logging.setup_logging(environment="development")
        app_logging.setup_logging(environment="development")

        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG


def test_production_adds_rotating_file(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(app_logging, "LOG_FILE", tmp_path / "logs" / "lifecycle.log")
    with bare_root_logger() as root:
        app_logging.setup_logging(environment="Production")

        kinds = sorted(type(h).__name__ for h in root.handlers)
        assert kinds == ["RotatingFileHandler", "StreamHandler"]
        assert root.level == logging.INFO
