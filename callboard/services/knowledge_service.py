from fastapi import HTTPException
from typing import Any, Dict, List, Optional
import logging
from callboard.core.database import Database
from callboard.services.elevenlabs_service import ElevenLabsService

logger = logging.getLogger(__name__)

DOCUMENT_FIELDS = ("title", "content")


class KnowledgeService:
    """Knowledge bases, their items and the agents that use them.

    Items are mirrored to the voice vendor as text documents, and every agent
    linked to a base gets its vendor knowledge base replaced when the base's
    documents or links change. Vendor failures are logged and never undo the
    local write.
    """

    def __init__(self, db: Database):
        self.db = db

    def _vendor(self, workspace_id: str) -> Optional[ElevenLabsService]:
        try:
            return ElevenLabsService.for_workspace(self.db.get("workspaces", workspace_id))
        except HTTPException as e:
            logger.warning(f"Skipping knowledge sync for workspace {workspace_id}: {e.detail}")
            return None

    def list_bases(self, workspace_id: str) -> List[Dict[str, Any]]:
        bases = (
            self.db.table("knowledge_bases").select("*")
            .eq("workspace_id", workspace_id)
            .order("created_at", desc=True)
            .execute().data
        ) or []
        items = self.db.by_ids("knowledge_items", [b["id"] for b in bases], column="knowledge_base_id")
        for base in bases:
            base["item_count"] = sum(1 for i in items if i["knowledge_base_id"] == base["id"])
        return bases

    def get_base(self, base_id: str) -> Dict[str, Any]:
        base = self.db.get("knowledge_bases", base_id)
        if not base:
            raise HTTPException(status_code=404, detail="Knowledge base not found")
        return base

    def create_base(self, workspace_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return self.db.insert("knowledge_bases", {**values, "workspace_id": workspace_id})

    def update_base(self, base_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self.get_base(base_id)
        return self.db.update("knowledge_bases", base_id, values)

    def delete_base(self, base_id: str) -> None:
        base = self.get_base(base_id)
        agent_ids = [link["agent_id"] for link in self.db.find("agent_knowledge_bases", knowledge_base_id=base_id)]
        vendor = self._vendor(base["workspace_id"])
        for item in self.list_items(base_id):
            self._drop_document(vendor, item)
        self.db.table("agent_knowledge_bases").delete().eq("knowledge_base_id", base_id).execute()
        self.db.table("knowledge_items").delete().eq("knowledge_base_id", base_id).execute()
        self.db.delete("knowledge_bases", base_id)
        logger.info(f"Deleted knowledge base {base_id}")
        for agent_id in agent_ids:
            self.sync_agent(agent_id)

    def list_items(self, base_id: str) -> List[Dict[str, Any]]:
        return (
            self.db.table("knowledge_items").select("*")
            .eq("knowledge_base_id", base_id)
            .order("created_at", desc=True)
            .execute().data
        ) or []

    def _push_document(self, vendor: Optional[ElevenLabsService], item: Dict[str, Any]) -> Dict[str, Any]:
        if not vendor:
            return item
        try:
            document = vendor.create_text_document(item["title"], item.get("content"))
        except HTTPException as e:
            logger.error(f"Failed to push knowledge item {item['id']}: {e.detail}")
            return item
        return self.db.update("knowledge_items", item["id"], {"elevenlabs_document_id": document["id"]}) or item

    def _drop_document(self, vendor: Optional[ElevenLabsService], item: Dict[str, Any]) -> None:
        if not vendor or not item.get("elevenlabs_document_id"):
            return
        try:
            vendor.delete_document(item["elevenlabs_document_id"])
        except HTTPException as e:
            # the document may already be gone on the vendor side
            logger.warning(f"Could not delete document {item['elevenlabs_document_id']}: {e.detail}")

    def create_item(self, base_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        base = self.get_base(base_id)
        item = self.db.insert("knowledge_items", {**values, "knowledge_base_id": base_id})
        item = self._push_document(self._vendor(base["workspace_id"]), item)
        self._sync_base_agents(base_id)
        return item

    def update_item(self, item_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        existing = self.db.get("knowledge_items", item_id)
        if not existing:
            raise HTTPException(status_code=404, detail="Knowledge item not found")
        item = self.db.update("knowledge_items", item_id, values)
        if any(field in values for field in DOCUMENT_FIELDS):
            base = self.get_base(item["knowledge_base_id"])
            vendor = self._vendor(base["workspace_id"])
            self._drop_document(vendor, existing)
            item = self._push_document(vendor, item)
            self._sync_base_agents(base["id"])
        return item

    def delete_item(self, item_id: str) -> None:
        item = self.db.get("knowledge_items", item_id)
        if not item:
            return
        base = self.db.get("knowledge_bases", item["knowledge_base_id"])
        if base:
            self._drop_document(self._vendor(base["workspace_id"]), item)
        self.db.delete("knowledge_items", item_id)
        if base:
            self._sync_base_agents(base["id"])

    def agent_bases(self, agent_id: str) -> List[Dict[str, Any]]:
        links = self.db.find("agent_knowledge_bases", agent_id=agent_id)
        return self.db.by_ids("knowledge_bases", [link["knowledge_base_id"] for link in links])

    def agent_documents(self, agent_id: str) -> List[Dict[str, Any]]:
        """Vendor documents for every pushed item in the agent's linked bases"""
        bases = self.agent_bases(agent_id)
        items = self.db.by_ids("knowledge_items", [b["id"] for b in bases], column="knowledge_base_id")
        return [
            {"type": "text", "id": i["elevenlabs_document_id"], "name": i.get("title")}
            for i in items
            if i.get("elevenlabs_document_id")
        ]

    def sync_agent(self, agent_id: str) -> Dict[str, Any]:
        agent = self.db.get("agents", agent_id)
        if not agent or not agent.get("elevenlabs_agent_id"):
            return {"success": False, "documents_count": 0}
        vendor = self._vendor(agent["workspace_id"])
        if not vendor:
            return {"success": False, "documents_count": 0}
        try:
            count = vendor.sync_knowledge_base(agent["elevenlabs_agent_id"], self.agent_documents(agent_id))
        except HTTPException as e:
            logger.error(f"Failed to sync knowledge base for agent {agent_id}: {e.detail}")
            return {"success": False, "documents_count": 0}
        return {"success": True, "documents_count": count}

    def _sync_base_agents(self, base_id: str) -> None:
        for link in self.db.find("agent_knowledge_bases", knowledge_base_id=base_id):
            self.sync_agent(link["agent_id"])

    def link(self, agent_id: str, base_id: str) -> Dict[str, Any]:
        existing = self.db.find("agent_knowledge_bases", agent_id=agent_id, knowledge_base_id=base_id)
        if existing:
            return existing[0]
        self.get_base(base_id)
        link = self.db.insert("agent_knowledge_bases", {"agent_id": agent_id, "knowledge_base_id": base_id})
        self.sync_agent(agent_id)
        return link

    def unlink(self, agent_id: str, base_id: str) -> None:
        (
            self.db.table("agent_knowledge_bases").delete()
            .eq("agent_id", agent_id)
            .eq("knowledge_base_id", base_id)
            .execute()
        )
        self.sync_agent(agent_id)
