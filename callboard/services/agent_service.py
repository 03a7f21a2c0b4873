from fastapi import HTTPException
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo
import logging
import math
from callboard.config.settings import settings
from callboard.core.conversation_view import is_inbound
from callboard.core.database import Database
from callboard.services.elevenlabs_service import ElevenLabsService
from callboard.services.knowledge_service import KnowledgeService

logger = logging.getLogger(__name__)

RECENT_AGENTS = 4


def success_rate(statuses: List[Optional[str]]) -> int:
    """Percentage of completed calls, rounded half up"""
    if not statuses:
        return 0
    completed = sum(1 for s in statuses if s == "completed")
    return math.floor(completed / len(statuses) * 100 + 0.5)


class AgentService:
    def __init__(self, db: Database):
        self.db = db

    def list_agents(self, workspace_id: str) -> List[Dict[str, Any]]:
        return (
            self.db.table("agents").select("*")
            .eq("workspace_id", workspace_id)
            .order("created_at", desc=True)
            .execute().data
        ) or []

    def get_agent(self, agent_id: str) -> Dict[str, Any]:
        agent = self.db.get("agents", agent_id)
        if not agent:
            raise HTTPException(status_code=404, detail="Agent not found")
        return agent

    def create_agent(self, workspace_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self._check_folder(values)
        values = {**values, "workspace_id": workspace_id}
        values.setdefault("status", "draft")
        agent = self.db.insert("agents", values)
        logger.info(f"Created agent {agent.get('id')} in workspace {workspace_id}")
        return agent

    def update_agent(self, agent_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self.get_agent(agent_id)
        self._check_folder(values)
        values = {**values, "updated_at": datetime.now(timezone.utc).isoformat()}
        return self.db.update("agents", agent_id, values)

    def delete_agent(self, agent_id: str) -> None:
        agent = self.get_agent(agent_id)
        if agent.get("elevenlabs_agent_id"):
            workspace = self.db.get("workspaces", agent["workspace_id"])
            try:
                ElevenLabsService.for_workspace(workspace).delete_agent(agent["elevenlabs_agent_id"])
            except HTTPException as e:
                logger.error(f"Failed to delete ElevenLabs agent {agent['elevenlabs_agent_id']}: {e.detail}")
        self.db.delete("agents", agent_id)
        logger.info(f"Deleted agent {agent_id}")

    def sync_agent(self, agent_id: str) -> Dict[str, Any]:
        """Create or update the hosted voice agent and keep its id"""
        agent = self.get_agent(agent_id)
        if not agent.get("voice_id"):
            raise HTTPException(status_code=400, detail="Agent has no voice selected")
        workspace = self.db.get("workspaces", agent["workspace_id"])
        elevenlabs = ElevenLabsService.for_workspace(workspace)
        documents = KnowledgeService(self.db).agent_documents(agent_id)

        if agent.get("elevenlabs_agent_id"):
            elevenlabs.update_agent(agent["elevenlabs_agent_id"], agent, documents)
            return agent

        elevenlabs_agent_id = elevenlabs.create_agent(agent, documents)
        return self.db.update("agents", agent_id, {"elevenlabs_agent_id": elevenlabs_agent_id})

    def publish_agent(self, agent_id: str) -> Dict[str, Any]:
        agent = self.sync_agent(agent_id)
        return self.db.update("agents", agent["id"], {"status": "published"})

    def conversation_token(self, agent_id: str) -> Dict[str, Any]:
        agent = self.get_agent(agent_id)
        workspace = self.db.get("workspaces", agent["workspace_id"])
        return ElevenLabsService.for_workspace(workspace).conversation_token(agent.get("elevenlabs_agent_id"))

    # folders

    def list_folders(self, workspace_id: str) -> List[Dict[str, Any]]:
        return (
            self.db.table("agent_folders").select("*")
            .eq("workspace_id", workspace_id)
            .order("name")
            .execute().data
        ) or []

    def create_folder(self, workspace_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if not (values.get("name") or "").strip():
            raise HTTPException(status_code=400, detail="Folder name is required")
        return self.db.insert("agent_folders", {**values, "workspace_id": workspace_id})

    def update_folder(self, folder_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        folder = self.db.update("agent_folders", folder_id, {**values, "updated_at": datetime.now(timezone.utc).isoformat()})
        if not folder:
            raise HTTPException(status_code=404, detail="Folder not found")
        return folder

    def delete_folder(self, folder_id: str) -> None:
        """Agents in the folder move back to the top level"""
        self.db.table("agents").update({"folder_id": None}).eq("folder_id", folder_id).execute()
        self.db.delete("agent_folders", folder_id)
        logger.info(f"Deleted agent folder {folder_id}")

    def _check_folder(self, values: Dict[str, Any]) -> None:
        if values.get("folder_id") and not self.db.get("agent_folders", values["folder_id"]):
            raise HTTPException(status_code=404, detail="Folder not found")

    # extraction fields

    def list_extraction_fields(self, agent_id: str) -> List[Dict[str, Any]]:
        return (
            self.db.table("agent_extraction_fields").select("*")
            .eq("agent_id", agent_id)
            .order("created_at")
            .execute().data
        ) or []

    def add_extraction_field(self, agent_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self.get_agent(agent_id)
        existing = self.db.find("agent_extraction_fields", agent_id=agent_id, field_key=values["field_key"])
        if existing:
            raise HTTPException(status_code=409, detail=f"Field key already exists: {values['field_key']}")
        return self.db.insert("agent_extraction_fields", {**values, "agent_id": agent_id})

    def update_extraction_field(self, field_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        field = self.db.update("agent_extraction_fields", field_id, values)
        if not field:
            raise HTTPException(status_code=404, detail="Extraction field not found")
        return field

    def delete_extraction_field(self, field_id: str) -> None:
        self.db.delete("agent_extraction_fields", field_id)

    # dashboard

    def dashboard_stats(self, workspace_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        tz = ZoneInfo(settings.TIMEZONE)
        now = now or datetime.now(tz)
        today = now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
        today_iso = today.astimezone(timezone.utc).isoformat()

        agents = self.list_agents(workspace_id)
        agent_ids = [a["id"] for a in agents]

        conversations = [c for c in self.db.by_ids("conversations", agent_ids, column="agent_id") if is_inbound(c)]
        outbound = self.db.find("outbound_calls", workspace_id=workspace_id)

        today_inbound = (
            self.db.table("conversations").select("*")
            .in_("agent_id", agent_ids)
            .gte("started_at", today_iso)
            .execute().data
        ) if agent_ids else []
        today_outbound = (
            self.db.table("outbound_calls").select("*")
            .eq("workspace_id", workspace_id)
            .gte("created_at", today_iso)
            .execute().data
        ) or []

        return {
            "today_count": len([c for c in today_inbound or [] if is_inbound(c)]) + len(today_outbound),
            "success_rate": success_rate([c.get("status") for c in conversations + outbound]),
            "total_agents": len(agents),
            "published_agents": len([a for a in agents if a.get("status") == "published"]),
            "recent_agents": agents[:RECENT_AGENTS],
        }
