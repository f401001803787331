import pytest

from app.db.helpers import DuplicateError, PersistenceError, with_db_retry
from app.infrastructure.audit import audit_logger


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure():
    calls = []

    @with_db_retry(max_retries=2, base_delay=0)
    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise PersistenceError("connection reset", operation="select")
        return "rows"

    assert await flaky() == "rows"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_retries():
    calls = []

    @with_db_retry(max_retries=2, base_delay=0)
    async def down():
        calls.append(1)
        raise PersistenceError("connection refused", operation="select")

    with pytest.raises(PersistenceError):
        await down()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_duplicates_and_unrecoverable_errors_are_not_retried():
    calls = []

    @with_db_retry(max_retries=3, base_delay=0)
    async def duplicate():
        calls.append(1)
        raise DuplicateError("duplicate key", operation="insert")

    @with_db_retry(max_retries=3, base_delay=0)
    async def broken_sql():
        calls.append(1)
        raise PersistenceError("syntax error", operation="select", recoverable=False)

    with pytest.raises(DuplicateError):
        await duplicate()
    with pytest.raises(PersistenceError):
        await broken_sql()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_audit_logger_never_raises_without_database():
    logged = await audit_logger.log(
        "outbound_job_cancelled",
        actor_id="admin",
        input_redacted={"outbound_job_id": "job-1", "note": "mail jane@example.com"},
    )

    assert logged is False
