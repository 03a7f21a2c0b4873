import pytest
from datetime import datetime, timezone
from unittest import mock
from fastapi import HTTPException
from postgrest.exceptions import APIError
from callboard.services.outbound_service import OutboundService
from callboard.services.phone_number_service import PhoneNumberService


@pytest.fixture
def phone_number(supabase, workspace):
    supabase.seed("phone_numbers", {
        "id": "pn-1",
        "workspace_id": "ws-1",
        "phone_number": "+815011112222",
        "phone_number_sid": "PN1",
        "status": "active",
    })
    return supabase.tables["phone_numbers"][0]


@pytest.fixture
def twilio_client():
    with mock.patch("callboard.services.twilio_service.Client") as client_class:
        client = client_class.return_value
        client.calls.create.return_value.sid = "CA123"
        yield client


def test_initiate_call_dials_and_records_sid(db, supabase, agent, phone_number, twilio_client):
    result = OutboundService(db).initiate_call("ws-1", "agent-1", "+819012345678")

    assert result["success"] is True
    assert result["status"] == "initiated"
    assert result["callSid"] == "CA123"

    call = supabase.tables["outbound_calls"][0]
    assert call["status"] == "initiated"
    assert call["call_sid"] == "CA123"
    assert call["phone_number_id"] == "pn-1"

    params = twilio_client.calls.create.call_args.kwargs
    assert params["to"] == "+819012345678"
    assert params["from_"] == "+815011112222"
    assert f"outboundCallId={call['id']}" in params["url"]
    assert "agentId=agent-1" in params["url"]
    assert params["status_callback"].endswith(f"/twilio/call-status?outboundCallId={call['id']}")
    assert "record" not in params


def test_initiate_call_scheduled_does_not_dial(db, supabase, agent, phone_number, twilio_client):
    when = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
    result = OutboundService(db).initiate_call("ws-1", "agent-1", "+819012345678", scheduled_at=when)

    assert result["status"] == "scheduled"
    assert result["scheduledAt"] == when.isoformat()
    assert supabase.tables["outbound_calls"][0]["status"] == "scheduled"
    twilio_client.calls.create.assert_not_called()


@pytest.mark.parametrize("workspace_id, agent_id, to_number", [
    ("", "agent-1", "+819012345678"),
    ("ws-1", None, "+819012345678"),
    ("ws-1", "agent-1", ""),
])
def test_initiate_call_requires_fields(db, workspace_id, agent_id, to_number):
    with pytest.raises(HTTPException) as error:
        OutboundService(db).initiate_call(workspace_id, agent_id, to_number)
    assert error.value.status_code == 400


def test_initiate_call_validation_order(db, supabase, workspace):
    with pytest.raises(HTTPException) as error:
        OutboundService(db).initiate_call("missing", "agent-1", "+819012345678")
    assert error.value.status_code == 404

    with pytest.raises(HTTPException) as error:
        OutboundService(db).initiate_call("ws-1", "agent-1", "+819012345678")
    assert error.value.detail == "No active phone number found for this workspace"

    supabase.tables["workspaces"][0]["twilio_auth_token"] = None
    with pytest.raises(HTTPException) as error:
        OutboundService(db).initiate_call("ws-1", "agent-1", "+819012345678")
    assert error.value.status_code == 400
    assert "credentials" in error.value.detail


def test_initiate_call_unknown_agent(db, phone_number):
    with pytest.raises(HTTPException) as error:
        OutboundService(db).initiate_call("ws-1", "nobody", "+819012345678")
    assert error.value.status_code == 404


def test_twilio_failure_marks_call_failed(db, supabase, agent, phone_number, twilio_client):
    twilio_client.calls.create.side_effect = Exception("invalid number")

    with pytest.raises(HTTPException) as error:
        OutboundService(db).initiate_call("ws-1", "agent-1", "+819012345678")

    assert error.value.status_code == 500
    call = supabase.tables["outbound_calls"][0]
    assert call["status"] == "failed"
    assert "invalid number" in call["result"]


def test_batch_call_reports_each_number(db, supabase, agent, phone_number, twilio_client):
    twilio_client.calls.create.side_effect = [mock.Mock(sid="CA1"), Exception("busy line")]

    result = OutboundService(db).batch_call("ws-1", "agent-1", "+819011112222\n123\n+819033334444")

    assert result["total"] == 2
    assert result["successCount"] == 1
    assert result["failCount"] == 1
    assert [r["toNumber"] for r in result["results"]] == ["+819011112222", "+819033334444"]
    assert result["results"][1]["success"] is False


def test_batch_call_requires_published_agent(db, supabase, agent, phone_number):
    supabase.tables["agents"][0]["status"] = "draft"
    with pytest.raises(HTTPException) as error:
        OutboundService(db).batch_call("ws-1", "agent-1", "+819011112222")
    assert error.value.status_code == 400


def test_batch_call_without_valid_numbers(db, agent, phone_number):
    with pytest.raises(HTTPException) as error:
        OutboundService(db).batch_call("ws-1", "agent-1", "123, 456")
    assert error.value.detail == "No valid phone numbers"


def test_cancel_only_scheduled_calls(db, supabase):
    supabase.seed("outbound_calls", {"id": "s1", "status": "scheduled"}, {"id": "i1", "status": "initiated"})
    service = OutboundService(db)

    assert service.cancel_call("s1")["status"] == "canceled"
    with pytest.raises(HTTPException) as error:
        service.cancel_call("i1")
    assert error.value.status_code == 400
    with pytest.raises(HTTPException) as error:
        service.cancel_call("missing")
    assert error.value.status_code == 404


def test_process_scheduled_calls(db, supabase, agent, phone_number, twilio_client):
    supabase.seed(
        "outbound_calls",
        {"id": "due", "workspace_id": "ws-1", "agent_id": "agent-1", "to_number": "+819011112222",
         "phone_number_id": "pn-1", "status": "scheduled", "scheduled_at": "2024-03-01T00:00:00+00:00"},
        {"id": "no-number", "workspace_id": "ws-1", "agent_id": "agent-1", "to_number": "+819033334444",
         "phone_number_id": None, "status": "scheduled", "scheduled_at": "2024-03-01T01:00:00+00:00"},
        {"id": "later", "workspace_id": "ws-1", "agent_id": "agent-1", "to_number": "+819055556666",
         "phone_number_id": "pn-1", "status": "scheduled", "scheduled_at": "2030-01-01T00:00:00+00:00"},
    )

    result = OutboundService(db).process_scheduled_calls(now=datetime(2024, 3, 2, tzinfo=timezone.utc))

    assert result["processed"] == 2
    assert result["successCount"] == 1
    assert result["failCount"] == 1
    calls = {c["id"]: c for c in supabase.tables["outbound_calls"]}
    assert calls["due"]["status"] == "initiated"
    assert calls["no-number"]["status"] == "failed"
    assert calls["no-number"]["result"] == "Phone number not found"
    assert calls["later"]["status"] == "scheduled"
    assert twilio_client.calls.create.call_args.kwargs["record"] is True


def test_list_calls_joins_agent_and_conversation(db, supabase, agent):
    supabase.seed("conversations", {"id": "conv-1", "summary": "折り返し希望"})
    supabase.seed(
        "outbound_calls",
        {"id": "o1", "workspace_id": "ws-1", "agent_id": "agent-1", "conversation_id": "conv-1",
         "created_at": "2024-03-01T00:00:00+00:00"},
        {"id": "o2", "workspace_id": "ws-1", "agent_id": "agent-1", "created_at": "2024-03-02T00:00:00+00:00"},
    )
    calls = OutboundService(db).list_calls("ws-1")

    assert [c["id"] for c in calls] == ["o2", "o1"]
    assert calls[1]["conversation"]["summary"] == "折り返し希望"
    assert calls[0]["agent"]["name"] == "受付エージェント"

    groups = OutboundService(db).grouped_calls("ws-1")
    assert groups[0].total_calls == 2


def test_mark_all_as_read_per_agent(db, supabase):
    supabase.seed(
        "outbound_calls",
        {"id": "o1", "workspace_id": "ws-1", "agent_id": "agent-1", "is_read": False},
        {"id": "o2", "workspace_id": "ws-1", "agent_id": "agent-2", "is_read": False},
    )
    OutboundService(db).mark_all_as_read("ws-1", "agent-1")
    assert [c["is_read"] for c in supabase.tables["outbound_calls"]] == [True, False]


def test_phone_number_sync_inserts_missing_numbers(db, supabase, phone_number):
    with mock.patch("callboard.services.twilio_service.Client") as client_class:
        client_class.return_value.incoming_phone_numbers.list.return_value = [
            mock.Mock(sid="PN1", phone_number="+815011112222", friendly_name="Main", capabilities={"voice": True}),
            mock.Mock(sid="PN2", phone_number="+815033334444", friendly_name="Sales", capabilities={"voice": True, "sms": True}),
        ]
        result = PhoneNumberService(db).handle_action("list", "ws-1")

    numbers = {n["phone_number_sid"]: n for n in result["phoneNumbers"]}
    assert set(numbers) == {"PN1", "PN2"}
    assert numbers["PN2"]["label"] == "Sales"
    assert numbers["PN2"]["status"] == "active"


def test_phone_number_assign_routes_voice_url(db, supabase, agent, phone_number):
    with mock.patch("callboard.services.twilio_service.Client") as client_class:
        result = PhoneNumberService(db).handle_action("assign", "ws-1", "PN1", "agent-1")
        voice_update = client_class.return_value.incoming_phone_numbers.return_value.update

    assert result == {"success": True}
    assert supabase.tables["phone_numbers"][0]["agent_id"] == "agent-1"
    assert voice_update.call_args.kwargs["voice_url"].endswith("/twilio/voice?agentId=agent-1")


def test_phone_number_invalid_action(db, phone_number):
    with pytest.raises(HTTPException) as error:
        PhoneNumberService(db).handle_action("explode", "ws-1", "PN1")
    assert error.value.detail == "Invalid action"


def test_store_error_fails_only_that_scheduled_call(db, supabase, agent, phone_number, twilio_client):
    supabase.seed(
        "outbound_calls",
        {"id": "bad", "workspace_id": "ws-1", "agent_id": "agent-1", "to_number": "+819011112222",
         "phone_number_id": "not-a-uuid", "status": "scheduled", "scheduled_at": "2024-03-01T00:00:00+00:00"},
        {"id": "good", "workspace_id": "ws-1", "agent_id": "agent-1", "to_number": "+819033334444",
         "phone_number_id": "pn-1", "status": "scheduled", "scheduled_at": "2024-03-01T01:00:00+00:00"},
    )
    lookup = db.get

    def get(table, record_id):
        if table == "phone_numbers" and record_id == "not-a-uuid":
            raise APIError({"message": "invalid input syntax for type uuid", "code": "22P02"})
        return lookup(table, record_id)

    with mock.patch.object(db, "get", side_effect=get):
        result = OutboundService(db).process_scheduled_calls(now=datetime(2024, 3, 2, tzinfo=timezone.utc))

    assert result["successCount"] == 1
    assert result["failCount"] == 1
    calls = {c["id"]: c for c in supabase.tables["outbound_calls"]}
    assert calls["bad"]["status"] == "failed"
    assert calls["bad"]["result"]
    assert calls["good"]["status"] == "initiated"
