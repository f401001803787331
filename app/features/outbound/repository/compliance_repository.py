"""
Read-only lookups used by the outbound eligibility check.
"""

from typing import Any

from app.db.helpers import fetch_one


class ComplianceRepository:
    """Identity links and communication preferences."""

    @staticmethod
    async def get_identity_link(channel: str, address: str) -> dict[str, Any] | None:
        query = """
            SELECT bank_customer_id, is_verified
            FROM identity_links
            WHERE channel = %s AND address = %s
            LIMIT 1
        """
        return await fetch_one(query, (channel, address))

    @staticmethod
    async def get_comm_preferences(bank_customer_id: str) -> dict[str, Any] | None:
        query = """
            SELECT do_not_contact, allowed_channels, quiet_hours_start,
                   quiet_hours_end, timezone
            FROM comm_preferences
            WHERE bank_customer_id = %s
        """
        return await fetch_one(query, (bank_customer_id,))
