from fastapi import HTTPException
from typing import Dict, List, Optional
import logging
from callboard.core.database import Database
from callboard.core.twilio_handler import callback_url
from callboard.services.twilio_service import TwilioService

logger = logging.getLogger(__name__)

ACTIONS = ("list", "assign", "unassign", "updateLabel")

class PhoneNumberService:
    def __init__(self, db: Database):
        self.db = db

    def _twilio(self, workspace_id: str) -> TwilioService:
        workspace = self.db.get("workspaces", workspace_id)
        if not workspace:
            raise HTTPException(status_code=400, detail="Workspace not found")
        return TwilioService.for_workspace(workspace)

    def _update(self, workspace_id: str, phone_number_sid: str, values: Dict) -> None:
        (
            self.db.table("phone_numbers").update(values)
            .eq("phone_number_sid", phone_number_sid)
            .eq("workspace_id", workspace_id)
            .execute()
        )

    def sync_and_list(self, workspace_id: str) -> List[Dict]:
        """Copy numbers Twilio knows about into the workspace, then list them"""
        twilio_numbers = self._twilio(workspace_id).list_phone_numbers()
        existing = {n.get("phone_number_sid") for n in self.db.find("phone_numbers", workspace_id=workspace_id)}

        for number in twilio_numbers:
            if number["sid"] in existing:
                continue
            self.db.insert("phone_numbers", {
                "workspace_id": workspace_id,
                "phone_number": number["phone_number"],
                "phone_number_sid": number["sid"],
                "label": number["friendly_name"],
                "capabilities": number["capabilities"],
                "status": "active",
            })
            logger.info(f"Imported phone number {number['phone_number']} into workspace {workspace_id}")

        return self.list_numbers(workspace_id)

    def list_numbers(self, workspace_id: str) -> List[Dict]:
        numbers = (
            self.db.table("phone_numbers").select("*")
            .eq("workspace_id", workspace_id)
            .order("created_at", desc=True)
            .execute().data
        ) or []
        agents = {a["id"]: a for a in self.db.by_ids("agents", [n.get("agent_id") for n in numbers])}
        for number in numbers:
            agent = agents.get(number.get("agent_id"))
            number["agents"] = {"id": agent["id"], "name": agent.get("name")} if agent else None
        return numbers

    def assign(self, workspace_id: str, phone_number_sid: str, agent_id: str) -> None:
        """Assign a number to an agent and route its inbound calls there"""
        twilio = self._twilio(workspace_id)
        twilio.set_voice_url(phone_number_sid, callback_url("/twilio/voice", agentId=agent_id))
        self._update(workspace_id, phone_number_sid, {"agent_id": agent_id})

    def unassign(self, workspace_id: str, phone_number_sid: str) -> None:
        self._update(workspace_id, phone_number_sid, {"agent_id": None})

    def update_label(self, workspace_id: str, phone_number_sid: str, label: Optional[str]) -> None:
        self._update(workspace_id, phone_number_sid, {"label": label})

    def handle_action(self, action: str, workspace_id: str, phone_number_sid: Optional[str] = None,
                      agent_id: Optional[str] = None, label: Optional[str] = None) -> Dict:
        if action == "list":
            return {"phoneNumbers": self.sync_and_list(workspace_id)}
        if action not in ACTIONS:
            raise HTTPException(status_code=400, detail="Invalid action")
        if not phone_number_sid:
            raise HTTPException(status_code=400, detail="phoneNumberSid is required")
        if action == "assign":
            if not agent_id:
                raise HTTPException(status_code=400, detail="agentId is required")
            self.assign(workspace_id, phone_number_sid, agent_id)
        elif action == "unassign":
            self.unassign(workspace_id, phone_number_sid)
        else:
            self.update_label(workspace_id, phone_number_sid, label)
        return {"success": True}
