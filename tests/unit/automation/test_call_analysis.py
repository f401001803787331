import pytest

from app.features.automation.services.call_analysis import CallAnalysis, CallAnalysisAutomation, flag_items


@pytest.fixture
def automation(outbox, inbox_repo):
    return CallAnalysisAutomation(outbox=outbox, inbox=inbox_repo)


def _analysis(**flags):
    return CallAnalysis(id="an-1", conversation_id="conv-1", provider_call_id="call-1", **flags)


def test_flags_map_to_items_most_urgent_first():
    items = flag_items(
        _analysis(
            escalation_required=True,
            compliance_verified=False,
            supervisor_review_needed=True,
            quality_score=4,
            customer_frustrated=True,
            issue_resolved=False,
            issue_type="card_block",
        )
    )

    assert [i.type for i in items] == [
        "call_escalation_required",
        "call_compliance_review",
        "call_supervisor_review",
        "call_qa_coaching",
        "call_customer_frustrated",
        "call_followup_required",
    ]
    assert items[3].body == "Quality score: 4/10. Review for coaching opportunities."
    assert items[5].body == "Issue not resolved: card_block. Follow-up needed."


def test_clean_call_has_no_flag_items():
    assert flag_items(_analysis(quality_score=9, issue_resolved=True, compliance_verified=True)) == []


def test_long_summary_is_truncated_in_preview():
    items = flag_items(_analysis(escalation_required=True, call_summary="x" * 150))

    assert items[0].body == "Call requires escalation. " + "x" * 100 + "..."


@pytest.mark.asyncio
async def test_process_emits_event_and_items_once(automation, event_repo, inbox_repo, now):
    analysis = _analysis(
        escalation_required=True,
        customer_frustrated=True,
        call_summary="Customer gave card 4111 1111 1111 1111 and was upset.",
    )

    first = await automation.process(analysis, now)
    second = await automation.process(analysis, now)

    assert first == {"event_created": True, "items_created": 2, "items_failed": 0}
    assert second == {"event_created": False, "items_created": 0, "items_failed": 0}
    assert event_repo.by_key("call_analysis_ready:an-1").event_type == "call_analysis_ready"

    keys = sorted(i.dedupe_key for i in inbox_repo.items.values())
    assert keys == ["call_escalation:conv-1:an-1", "call_frustrated:conv-1:an-1"]
    for item in inbox_repo.items.values():
        assert "4111" not in item.body
        assert item.link_ref == {"kind": "conversation", "id": "conv-1"}


@pytest.mark.asyncio
async def test_item_failure_is_counted_not_raised(automation, inbox_repo, now):
    inbox_repo.failures_remaining = 1

    result = await automation.process(_analysis(escalation_required=True, compliance_verified=False), now)

    assert result["items_failed"] == 1
    assert result["items_created"] == 1
