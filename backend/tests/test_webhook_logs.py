"""Processing logger tests"""
import pytest

from payhook.models import WebhookLog
from payhook.services.monitor_service import InMemoryMetricsSink, WebhookMonitor
from payhook.services.webhook_log_service import ProcessingLogger

from conftest import TestSessionLocal


def broken_session_factory():
    raise RuntimeError("database unavailable")


@pytest.fixture
def processing_logger(db_session, monitor):
    return ProcessingLogger(TestSessionLocal, monitor, timeout_ms=2000)


def _row(db_session, log_id) -> WebhookLog:
    db_session.expire_all()
    return db_session.get(WebhookLog, log_id)


@pytest.mark.critical
class TestProcessingLogger:
    """Test log row lifecycle"""

    @pytest.mark.asyncio
    async def test_start_creates_started_row(self, processing_logger, db_session):
        """Test log_start() writes a started row with context columns"""
        log_id = await processing_logger.log_start(
            "checkout.session.completed", "evt_1", {"preorder_id": "ord_42", "email": "a@example.com"}
        )

        row = _row(db_session, log_id)
        assert row.status == "started"
        assert row.provider_event_id == "evt_1"
        assert row.preorder_id == "ord_42"
        assert row.email == "a@example.com"
        assert row.attempt == 1

    @pytest.mark.asyncio
    async def test_success_merges_detail(self, processing_logger, db_session):
        """Test log_success() finalizes the row and merges detail"""
        log_id = await processing_logger.log_start("checkout.session.completed", "evt_1", {"delivery": 1})
        await processing_logger.update_detail(log_id, {"preorder_id": "ord_42"})

        await processing_logger.log_success(log_id, {"marketing": "success"})

        row = _row(db_session, log_id)
        assert row.status == "success"
        assert row.detail == {"delivery": 1, "preorder_id": "ord_42", "marketing": "success"}
        assert row.processed_at is not None

    @pytest.mark.asyncio
    async def test_failure_records_reason(self, processing_logger, db_session):
        """Test log_failure() stores the reason as the error"""
        log_id = await processing_logger.log_start("checkout.session.completed", "evt_1")

        await processing_logger.log_failure(log_id, "Preorder ord_9 not found", {"reason": "domain_not_found"})

        row = _row(db_session, log_id)
        assert row.status == "failure"
        assert row.error == "Preorder ord_9 not found"
        assert row.detail["reason"] == "domain_not_found"

    @pytest.mark.asyncio
    async def test_expired_status(self, processing_logger, db_session):
        """Test log_expired() sets the expired terminal status"""
        log_id = await processing_logger.log_start("checkout.session.expired", "evt_1")

        await processing_logger.log_expired(log_id, {"abandoned_cart": "success"})

        assert _row(db_session, log_id).status == "expired"

    @pytest.mark.asyncio
    async def test_one_row_per_attempt(self, processing_logger):
        """Test every attempt gets its own row"""
        first = await processing_logger.log_start("invoice.created", "evt_1", attempt=1)
        await processing_logger.log_failure(first, "timeout")
        second = await processing_logger.log_start("invoice.created", "evt_1", attempt=2)
        await processing_logger.log_success(second)

        logs = await processing_logger.find_by_event_id("evt_1")

        assert [(log["attempt"], log["status"]) for log in logs] == [(1, "failure"), (2, "success")]

    @pytest.mark.asyncio
    async def test_finish_without_start_row_writes_outcome(self, processing_logger):
        """Test a terminal status is still recorded when the started row is missing"""
        await processing_logger.log_failure(None, "boom", event_type="invoice.created", event_id="evt_9")

        logs = await processing_logger.find_by_event_id("evt_9")

        assert len(logs) == 1
        assert logs[0]["status"] == "failure"


@pytest.mark.critical
class TestProcessingLoggerFailures:
    """Test log writes never fail the caller"""

    @pytest.mark.asyncio
    async def test_write_errors_are_swallowed_and_reported(self):
        """Test a broken datastore returns None and counts a logging failure"""
        monitor = WebhookMonitor(InMemoryMetricsSink())
        processing_logger = ProcessingLogger(broken_session_factory, monitor, timeout_ms=1000)

        log_id = await processing_logger.log_start("invoice.created", "evt_1")
        await processing_logger.log_success(5, {"x": 1})
        await processing_logger.update_detail(5, {"x": 2})

        assert log_id is None
        summary = monitor.summary()
        assert summary["logging_failures"] == 3
        assert monitor.sink.count("logging_failures") == 3

    @pytest.mark.asyncio
    async def test_second_success_for_event_is_closed_as_failure(self, processing_logger, monitor):
        """Test a second success for an event still leaves a terminal row, never a started one"""
        first = await processing_logger.log_start("invoice.created", "evt_1")
        await processing_logger.log_success(first)
        second = await processing_logger.log_start("invoice.created", "evt_1", attempt=2)

        await processing_logger.log_success(second, {"status": "success"})

        logs = await processing_logger.find_by_event_id("evt_1")
        assert [log["status"] for log in logs] == ["success", "failure"]
        assert logs[1]["detail"]["duplicate_success"] is True
        assert logs[1]["error"] == "Event already has a success log"
        assert monitor.summary()["logging_failures"] == 0

    @pytest.mark.asyncio
    async def test_find_success(self, processing_logger):
        """Test find_success() returns the success row only"""
        failed = await processing_logger.log_start("invoice.created", "evt_1")
        await processing_logger.log_failure(failed, "timeout")
        assert await processing_logger.find_success("evt_1") is None

        succeeded = await processing_logger.log_start("invoice.created", "evt_1", attempt=2)
        await processing_logger.log_success(succeeded)

        assert await processing_logger.find_success("evt_1") == succeeded
        assert await processing_logger.find_success("evt_other") is None
