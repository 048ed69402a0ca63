"""Tests for structured logging and the request context."""

import asyncio
import json

import pytest

from socialdb.logging import (
    clear_request_context,
    get_request_context,
    logger,
    request_context,
    set_request_context,
    setup_logging,
)


@pytest.fixture
def captured():
    """Collect JSON lines emitted through the patched logger."""
    lines: list[str] = []
    handler_id = logger.add(lines.append, format=lambda record: "{extra[json]}\n", level="DEBUG")
    clear_request_context()
    yield lines
    logger.remove(handler_id)
    clear_request_context()


class TestRequestContext:
    """Tests for the request context helpers."""

    def test_empty_by_default(self):
        clear_request_context()
        assert get_request_context() == {"request_id": None, "user_id": None, "operation": None}

    def test_merge_keeps_unset_keys(self):
        clear_request_context()
        set_request_context(request_id="r-1", user_id="u-1")
        set_request_context(operation="like_post")

        assert get_request_context() == {
            "request_id": "r-1",
            "user_id": "u-1",
            "operation": "like_post",
        }
        clear_request_context()

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self):
        """Test concurrent tasks keep their own context."""
        clear_request_context()

        async def handle(user_id: str) -> str | None:
            set_request_context(user_id=user_id)
            await asyncio.sleep(0)
            return get_request_context()["user_id"]

        results = await asyncio.gather(handle("u-1"), handle("u-2"))

        assert results == ["u-1", "u-2"]
        assert get_request_context()["user_id"] is None


class TestJsonRecords:
    """Tests for the JSON rendering of records."""

    def test_core_fields(self, captured):
        logger.info("Store opened")

        record = json.loads(captured[0])

        assert record["msg"] == "Store opened"
        assert record["level"] == "INFO"
        assert record["fn"] == "test_core_fields"
        assert "request_id" not in record

    def test_context_merged(self, captured):
        set_request_context(user_id="u-7", operation="send_message")

        logger.warning("Slow write")

        record = json.loads(captured[0])
        assert record["user_id"] == "u-7"
        assert record["operation"] == "send_message"

    def test_bound_extras_nested(self, captured):
        logger.bind(conversation_id="c-1").info("Message stored")

        record = json.loads(captured[0])

        assert record["extra"] == {"conversation_id": "c-1"}

    def test_exception_rendered(self, captured):
        try:
            raise ValueError("bad row")
        except ValueError:
            logger.exception("Mapping failed")

        record = json.loads(captured[0])

        assert record["error"]["type"] == "ValueError"
        assert record["error"]["message"] == "bad row"
        assert "Traceback" in record["error"]["stack"]


class TestSetupLogging:
    """Tests for sink configuration."""

    def test_file_sink(self, tmp_path):
        log_file = tmp_path / "logs" / "socialdb.log"

        configured = setup_logging(level="DEBUG", json_logs=True, log_file=log_file)
        configured.info("to file")
        configured.complete()

        assert log_file.exists()
        assert json.loads(log_file.read_text().splitlines()[0])["msg"] == "to file"


class TestScopedContext:
    """Tests for the request_context block."""

    def test_restores_on_exit(self):
        clear_request_context()
        set_request_context(request_id="r-1")

        with request_context(user_id="u-1"):
            set_request_context(operation="login")
            assert get_request_context() == {
                "request_id": "r-1",
                "user_id": "u-1",
                "operation": "login",
            }

        assert get_request_context() == {"request_id": "r-1", "user_id": None, "operation": None}
        clear_request_context()

    def test_restores_after_error(self):
        clear_request_context()

        with pytest.raises(RuntimeError):
            with request_context(user_id="u-1"):
                raise RuntimeError("boom")

        assert get_request_context()["user_id"] is None
