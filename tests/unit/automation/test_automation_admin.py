import pytest

from app.core.errors import ValidationError
from app.features.automation.services.admin import AutomationAdminService


@pytest.fixture
def service(event_repo, inbox_repo, audit):
    return AutomationAdminService(events=event_repo, inbox=inbox_repo, audit=audit)


async def _item(inbox_repo, now, severity="warn"):
    return await inbox_repo.insert_item(
        type="otp_verification_stuck",
        severity=severity,
        title="OTP verification stuck",
        body="Stuck for 42 minutes",
        link_ref={"kind": "outbound_job", "id": "job-1"},
        dedupe_key=f"otp_stuck:job-{severity}",
        now=now,
    )


@pytest.mark.asyncio
async def test_inbox_actions_update_status_and_audit(service, inbox_repo, audit, now):
    item = await _item(inbox_repo, now)

    updated = await service.apply_inbox_action(item.id, "acknowledge", now, actor_id="admin")
    resolved = await service.apply_inbox_action(item.id, "resolve", now, actor_id="admin")

    assert updated.status == "acknowledged"
    assert resolved.status == "resolved"
    assert audit.types() == ["admin_inbox_item_updated", "admin_inbox_item_updated"]


@pytest.mark.asyncio
async def test_closed_items_do_not_reopen(service, inbox_repo, audit, now):
    item = await _item(inbox_repo, now)
    await service.apply_inbox_action(item.id, "resolve", now, actor_id="admin")

    again = await service.apply_inbox_action(item.id, "acknowledge", now, actor_id="admin")

    assert again.status == "resolved"
    assert inbox_repo.items[item.id].status == "resolved"
    assert audit.types() == ["admin_inbox_item_updated"]


@pytest.mark.asyncio
async def test_inbox_action_on_unknown_item(service, now):
    assert await service.apply_inbox_action("missing", "dismiss", now) is None


@pytest.mark.asyncio
async def test_unknown_inbox_action_is_rejected(service, inbox_repo, now):
    item = await _item(inbox_repo, now)

    with pytest.raises(ValidationError):
        await service.apply_inbox_action(item.id, "escalate", now)


@pytest.mark.asyncio
async def test_list_filters_are_validated(service, inbox_repo, now):
    await _item(inbox_repo, now, "warn")
    await _item(inbox_repo, now, "error")

    errors = await service.list_inbox(severity="error")

    assert [i.severity for i in errors] == ["error"]
    with pytest.raises(ValidationError):
        await service.list_inbox(severity="critical")
    with pytest.raises(ValidationError):
        await service.list_events(status="stuck")
    with pytest.raises(ValidationError):
        await service.list_events(event_type="legacy_event")
