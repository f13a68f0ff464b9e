"""Test logging configuration."""

import logging
from pathlib import Path

import structlog
from structlog.testing import LogCapture

from bore_control.common.logging import (
    configure_from_settings,
    get_logger,
    redact_secrets,
    setup_logging,
)
from bore_control.common.settings import ControlSettings


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Setup before each test - reset logging configuration."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def test_setup_logging_default(self) -> None:
        setup_logging()
        logger = get_logger("test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "error")
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_with_level(self) -> None:
        """Test logging setup with custom level."""
        setup_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_json_format(self) -> None:
        """Test logging setup with JSON format."""
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("tunnel started", entity_id=3)

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "tunnel started"
        assert cap.entries[0]["entity_id"] == 3

    def test_setup_logging_with_file(self, tmp_path: Path) -> None:
        """Test logging setup with file output."""
        log_file = tmp_path / "control.log"
        setup_logging(log_file=str(log_file))

        logging.getLogger("test_file").info("file message")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "file message" in log_file.read_text()

    def test_configure_from_settings(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        configure_from_settings(ControlSettings(log_level="WARNING"))
        assert logging.getLogger().level == logging.WARNING

    def test_get_logger_binds_initial_values(self) -> None:
        cap = LogCapture()
        structlog.configure(processors=[cap])

        get_logger("test", entity_kind="client").info("hello")

        assert cap.entries[0]["entity_kind"] == "client"


class TestRedactSecrets:
    """Test the secret-masking processor."""

    def test_masks_secret_fields(self) -> None:
        event = redact_secrets(
            None, "info", {"event": "starting", "secret": "supersecret1234", "port": 80}
        )

        assert event["secret"] == "***********1234"
        assert event["port"] == 80
        assert event["event"] == "starting"

    def test_redacts_in_pipeline(self) -> None:
        cap = LogCapture()
        structlog.configure(processors=[redact_secrets, cap])

        get_logger("test").info("connecting", auth_token="token-abcdef")

        assert cap.entries[0]["auth_token"] == "********cdef"
