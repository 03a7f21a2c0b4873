import pytest
from datetime import datetime, timezone
from unittest import mock
from fastapi import HTTPException
from callboard.services.agent_service import AgentService, success_rate
from callboard.services.elevenlabs_service import ElevenLabsService, conversation_config
from callboard.services.knowledge_service import KnowledgeService


def vendor_response(payload=None, content=b""):
    response = mock.Mock(ok=True, status_code=200, content=content)
    response.json.return_value = payload or {}
    return response


def test_success_rate_rounds_half_up():
    assert success_rate([]) == 0
    assert success_rate(["completed", "failed"]) == 50
    assert success_rate(["completed", "failed", "failed"]) == 33
    assert success_rate(["completed", "completed", "failed"]) == 67
    assert success_rate(["completed"] * 5 + ["failed"] * 3) == 63


def test_create_agent_defaults_to_draft(db, workspace):
    agent = AgentService(db).create_agent("ws-1", {"name": "New"})
    assert agent["status"] == "draft"
    assert agent["workspace_id"] == "ws-1"


def test_get_missing_agent(db):
    with pytest.raises(HTTPException) as error:
        AgentService(db).get_agent("missing")
    assert error.value.status_code == 404


def test_sync_creates_vendor_agent(db, supabase, agent):
    supabase.tables["agents"][0]["elevenlabs_agent_id"] = None
    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response({"agent_id": "el-new"})) as request:
        synced = AgentService(db).sync_agent("agent-1")

    assert synced["elevenlabs_agent_id"] == "el-new"
    method, url = request.call_args.args
    assert method == "POST"
    assert url.endswith("/convai/agents/create")
    assert request.call_args.kwargs["headers"]["xi-api-key"] == "xi-key"


def test_sync_updates_existing_vendor_agent(db, agent):
    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response()) as request:
        AgentService(db).publish_agent("agent-1")
    method, url = request.call_args.args
    assert method == "PATCH"
    assert url.endswith("/convai/agents/el-agent-1")


def test_sync_requires_voice(db, supabase, agent):
    supabase.tables["agents"][0]["voice_id"] = None
    with pytest.raises(HTTPException) as error:
        AgentService(db).sync_agent("agent-1")
    assert error.value.status_code == 400


def test_conversation_config():
    config = conversation_config({"name": "受付", "voice_id": "v1", "max_call_duration": 300})
    assert config["agent"]["language"] == "ja"
    assert config["agent"]["prompt"]["prompt"].startswith("あなたは受付です。")
    assert config["tts"] == {"model_id": "eleven_turbo_v2_5", "voice_id": "v1"}
    assert config["conversation"] == {"max_duration_seconds": 300}


def test_vendor_requires_api_key(monkeypatch):
    monkeypatch.setattr("callboard.services.elevenlabs_service.settings.ELEVENLABS_API_KEY", None)
    with pytest.raises(HTTPException):
        ElevenLabsService.for_workspace({})


def test_list_voices_puts_cloned_first():
    voices = {"voices": [
        {"voice_id": "1", "name": "Rachel", "category": "premade"},
        {"voice_id": "2", "name": "Yuki", "category": "cloned"},
        {"voice_id": "3", "name": "Adam", "category": "premade"},
    ]}
    with mock.patch("callboard.services.elevenlabs_service.requests.request", return_value=vendor_response(voices)):
        result = ElevenLabsService("key").list_voices()
    assert [v["name"] for v in result] == ["Yuki", "Adam", "Rachel"]


def test_extraction_field_keys_are_unique(db, agent):
    service = AgentService(db)
    service.add_extraction_field("agent-1", {"field_name": "お名前", "field_key": "name"})
    with pytest.raises(HTTPException) as error:
        service.add_extraction_field("agent-1", {"field_name": "氏名", "field_key": "name"})
    assert error.value.status_code == 409
    assert [f["field_key"] for f in service.list_extraction_fields("agent-1")] == ["name"]


def test_dashboard_stats(db, supabase, agent):
    supabase.seed("agents", {"id": "agent-2", "workspace_id": "ws-1", "name": "Draft", "status": "draft",
                             "created_at": "2024-03-02T00:00:00+00:00"})
    supabase.seed(
        "conversations",
        {"agent_id": "agent-1", "status": "completed", "started_at": "2024-03-07T00:05:00+00:00"},
        {"agent_id": "agent-1", "status": "failed", "started_at": "2024-03-05T00:05:00+00:00"},
        {"agent_id": "agent-1", "status": "completed", "started_at": "2024-03-07T01:00:00+00:00",
         "metadata": {"call_type": "outbound"}},
    )
    supabase.seed(
        "outbound_calls",
        {"workspace_id": "ws-1", "status": "completed", "created_at": "2024-03-07T02:00:00+00:00"},
        {"workspace_id": "ws-1", "status": "failed", "created_at": "2024-03-01T02:00:00+00:00"},
    )
    now = datetime(2024, 3, 7, 3, 0, tzinfo=timezone.utc)

    stats = AgentService(db).dashboard_stats("ws-1", now)

    assert stats["today_count"] == 2
    assert stats["success_rate"] == 50
    assert stats["total_agents"] == 2
    assert stats["published_agents"] == 1
    assert [a["id"] for a in stats["recent_agents"]] == ["agent-2", "agent-1"]


def test_knowledge_base_lifecycle(db, supabase, agent):
    service = KnowledgeService(db)
    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response({"id": "doc"})):
        base = service.create_base("ws-1", {"name": "FAQ"})
        service.create_item(base["id"], {"title": "営業時間", "content": "9時から18時"})
        service.create_item(base["id"], {"title": "定休日", "content": "日曜日"})

        assert service.list_bases("ws-1")[0]["item_count"] == 2

        link = service.link("agent-1", base["id"])
        assert service.link("agent-1", base["id"])["id"] == link["id"]
        assert [b["name"] for b in service.agent_bases("agent-1")] == ["FAQ"]

        service.unlink("agent-1", base["id"])
        assert service.agent_bases("agent-1") == []

        service.delete_base(base["id"])
    assert supabase.tables["knowledge_items"] == []
    with pytest.raises(HTTPException):
        service.get_base(base["id"])


def test_workspace_key_wins_over_global_key(monkeypatch):
    monkeypatch.setattr("callboard.services.elevenlabs_service.settings.ELEVENLABS_API_KEY", "global-key")
    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response({"voices": []})) as request:
        ElevenLabsService.for_workspace({"elevenlabs_api_key": "ws-key"}).list_voices()
    assert request.call_args.kwargs["headers"]["xi-api-key"] == "ws-key"


def test_global_key_used_without_workspace_key(monkeypatch):
    monkeypatch.setattr("callboard.services.elevenlabs_service.settings.ELEVENLABS_API_KEY", "global-key")
    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response({"voices": []})) as request:
        ElevenLabsService.for_workspace({"elevenlabs_api_key": None}).list_voices()
    assert request.call_args.kwargs["headers"]["xi-api-key"] == "global-key"


def test_knowledge_item_is_pushed_and_agent_synced(db, supabase, agent):
    service = KnowledgeService(db)
    base = service.create_base("ws-1", {"name": "FAQ"})
    supabase.seed("agent_knowledge_bases", {"agent_id": "agent-1", "knowledge_base_id": base["id"]})

    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response({"id": "doc-1", "name": "営業時間"})) as request:
        item = service.create_item(base["id"], {"title": "営業時間", "content": "9時から18時"})

    assert item["elevenlabs_document_id"] == "doc-1"
    create, sync = request.call_args_list
    assert create.args == ("POST", "https://api.elevenlabs.io/v1/convai/knowledge-base/documents/text")
    assert create.kwargs["json"] == {"name": "営業時間", "text": "9時から18時"}
    assert sync.args == ("PATCH", "https://api.elevenlabs.io/v1/convai/agents/el-agent-1")
    assert sync.kwargs["json"]["conversation_config"]["agent"]["prompt"]["knowledge_base"] == [
        {"type": "text", "id": "doc-1", "name": "営業時間"}
    ]


def test_knowledge_item_update_replaces_document(db, supabase, agent):
    service = KnowledgeService(db)
    base = service.create_base("ws-1", {"name": "FAQ"})
    supabase.seed("knowledge_items", {"id": "item-1", "knowledge_base_id": base["id"], "title": "営業時間",
                                      "content": "9時から18時", "elevenlabs_document_id": "doc-old"})

    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response({"id": "doc-new"})) as request:
        item = service.update_item("item-1", {"content": "10時から19時"})

    assert item["elevenlabs_document_id"] == "doc-new"
    assert [c.args[0] for c in request.call_args_list] == ["DELETE", "POST"]
    assert request.call_args_list[0].args[1].endswith("/documents/doc-old")


def test_knowledge_vendor_failure_keeps_local_item(db, supabase, agent):
    service = KnowledgeService(db)
    base = service.create_base("ws-1", {"name": "FAQ"})
    failed = mock.Mock(ok=False, status_code=500, text="upstream error")
    with mock.patch("callboard.services.elevenlabs_service.requests.request", return_value=failed):
        item = service.create_item(base["id"], {"title": "定休日", "content": "日曜日"})
        service.delete_item(item["id"])

    assert "elevenlabs_document_id" not in item
    assert supabase.tables["knowledge_items"] == []


def test_agent_sync_carries_knowledge_documents(db, supabase, agent):
    supabase.seed("knowledge_bases", {"id": "kb-1", "workspace_id": "ws-1", "name": "FAQ"})
    supabase.seed("knowledge_items", {"knowledge_base_id": "kb-1", "title": "営業時間", "elevenlabs_document_id": "doc-1"},
                  {"knowledge_base_id": "kb-1", "title": "未同期"})
    supabase.seed("agent_knowledge_bases", {"agent_id": "agent-1", "knowledge_base_id": "kb-1"})
    with mock.patch("callboard.services.elevenlabs_service.requests.request",
                    return_value=vendor_response()) as request:
        AgentService(db).sync_agent("agent-1")

    prompt = request.call_args.kwargs["json"]["conversation_config"]["agent"]["prompt"]
    assert prompt["knowledge_base"] == [{"type": "text", "id": "doc-1", "name": "営業時間"}]


def test_agent_folders(db, supabase, agent):
    service = AgentService(db)
    clinic = service.create_folder("ws-1", {"name": "クリニック", "color": "#6366f1"})
    service.create_folder("ws-1", {"name": "営業"})
    assert [f["name"] for f in service.list_folders("ws-1")] == ["クリニック", "営業"]

    service.update_agent("agent-1", {"folder_id": clinic["id"]})
    assert service.update_folder(clinic["id"], {"color": "#22c55e"})["color"] == "#22c55e"

    service.delete_folder(clinic["id"])
    assert service.get_agent("agent-1")["folder_id"] is None
    assert [f["name"] for f in service.list_folders("ws-1")] == ["営業"]


def test_agent_folder_must_exist(db, agent):
    with pytest.raises(HTTPException) as error:
        AgentService(db).update_agent("agent-1", {"folder_id": "missing"})
    assert error.value.status_code == 404
    with pytest.raises(HTTPException) as error:
        AgentService(db).create_folder("ws-1", {"name": "  "})
    assert error.value.status_code == 400
