"""Tests for Prometheus metrics."""

import pytest

from socialdb.errors import ConstraintViolation
from socialdb.metrics import (
    generate_metrics_output,
    repository_operations_total,
    reset_metrics,
    sample_value,
    track_operation,
)


@track_operation("tracked")
async def tracked(fail: bool = False) -> str:
    if fail:
        raise ConstraintViolation("duplicate")
    return "ok"


class TestTrackOperation:
    """Tests for the track_operation decorator."""

    @pytest.mark.asyncio
    async def test_success_counted(self):
        assert await tracked() == "ok"

        assert sample_value(
            "repository_operations_total", {"operation": "tracked", "status": "success"}
        ) == 1.0
        assert sample_value(
            "repository_operation_duration_seconds_count", {"operation": "tracked"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_error_counted_and_reraised(self):
        with pytest.raises(ConstraintViolation):
            await tracked(fail=True)

        assert sample_value(
            "repository_operations_total", {"operation": "tracked", "status": "error"}
        ) == 1.0
        assert sample_value(
            "errors_total", {"error_type": "ConstraintViolation", "component": "repository"}
        ) == 1.0
        assert sample_value(
            "repository_operation_duration_seconds_count", {"operation": "tracked"}
        ) == 1.0

    def test_wraps_preserves_name(self):
        assert tracked.__name__ == "tracked"

    @pytest.mark.asyncio
    async def test_repository_methods_tracked(self, social, make_user):
        await make_user("alice")
        await social.get_user_by_username("alice")

        assert sample_value(
            "repository_operations_total", {"operation": "create_user", "status": "success"}
        ) == 1.0
        assert sample_value(
            "repository_operations_total",
            {"operation": "get_user_by_username", "status": "success"},
        ) == 1.0


class TestRegistry:
    """Tests for metric exposition and reset."""

    def test_unset_sample_is_zero(self):
        assert sample_value("repository_operations_total", {"operation": "x", "status": "y"}) == 0.0

    @pytest.mark.asyncio
    async def test_generate_metrics_output(self):
        await tracked()

        output = generate_metrics_output().decode()

        assert "repository_operations_total" in output
        assert 'operation="tracked"' in output
        assert "migrations_total" in output

    def test_reset_metrics(self):
        repository_operations_total.labels(operation="tracked", status="success").inc()

        reset_metrics()

        assert sample_value(
            "repository_operations_total", {"operation": "tracked", "status": "success"}
        ) == 0.0
