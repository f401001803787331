"""
Outbound API request models.
Used by the router for input validation; field names follow the dashboard's
camelCase contract.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InlineCampaign(_CamelModel):
    """Campaign created on the fly when no campaignId is given."""

    name: str = Field(..., min_length=1, max_length=200, description="Campaign name")
    purpose: str = Field(..., description="Campaign purpose")
    allowed_channels: list[str] | None = Field(
        default=None, alias="allowedChannels", description="Channels this campaign may use"
    )


class CreateOutboundJobRequest(_CamelModel):
    """Request for queueing an outbound job."""

    channel: str | None = Field(default=None, description="voice | sms | email | whatsapp")
    target_address: str | None = Field(default=None, alias="targetAddress", description="Recipient address")
    campaign_id: str | None = Field(default=None, alias="campaignId", description="Existing campaign")
    campaign: InlineCampaign | None = Field(default=None, description="Campaign to create")
    bank_customer_id: str | None = Field(default=None, alias="bankCustomerId")
    payload_json: dict[str, Any] | None = Field(default=None, alias="payloadJson", description="Message payload")
    scheduled_at: datetime | None = Field(default=None, alias="scheduledAt", description="Earliest send time")
    max_attempts: int | None = Field(default=None, alias="maxAttempts", ge=1, le=20)


class CancelOutboundJobRequest(_CamelModel):
    """Request for cancelling a job."""

    reason_code: str | None = Field(default=None, alias="reasonCode", max_length=100)
    reason_message: str | None = Field(default=None, alias="reasonMessage", max_length=1000)
    outcome_code: str | None = Field(default=None, alias="outcomeCode")


class RunOutboundJobsRequest(BaseModel):
    """Request for a manual runner invocation."""

    limit: int | None = Field(default=None, ge=1, le=200, description="Max jobs to process")
