"""
Aggregate counts for the daily operational summary.
"""

from datetime import datetime

from app.db.helpers import fetch_val


class OperationalSummaryRepository:
    """Read-only counts over cases, outbound jobs and the inbox."""

    @staticmethod
    async def count_fraud_cases(start: datetime, end: datetime) -> int:
        query = """
            SELECT COUNT(*) FROM cases
            WHERE type = 'fraud' AND created_at >= %s AND created_at < %s
        """
        return await fetch_val(query, (start, end)) or 0

    @staticmethod
    async def count_outbound_jobs(status: str, start: datetime, end: datetime) -> int:
        query = """
            SELECT COUNT(*) FROM outbound_jobs
            WHERE status = %s AND created_at >= %s AND created_at < %s
        """
        return await fetch_val(query, (status, start, end)) or 0

    @staticmethod
    async def count_open_inbox_items() -> int:
        return await fetch_val("SELECT COUNT(*) FROM admin_inbox_items WHERE status = 'open'") or 0
