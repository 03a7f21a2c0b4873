from fastapi import HTTPException
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
from callboard.core.database import Database, utc_now
from callboard.core.twilio_handler import callback_url
from callboard.core import conversation_view
from callboard.services.twilio_service import TwilioService
from callboard.utils.helpers import parse_phone_numbers

logger = logging.getLogger(__name__)

SCHEDULED_BATCH_SIZE = 50

class OutboundService:
    def __init__(self, db: Database):
        self.db = db

    def _workspace(self, workspace_id: str) -> Dict:
        workspace = self.db.get("workspaces", workspace_id)
        if not workspace:
            raise HTTPException(status_code=404, detail="Workspace not found")
        if not workspace.get("twilio_account_sid") or not workspace.get("twilio_auth_token"):
            raise HTTPException(status_code=400, detail="Twilio credentials not configured for this workspace")
        return workspace

    def _active_number(self, workspace_id: str) -> Dict:
        rows = (
            self.db.table("phone_numbers").select("*")
            .eq("workspace_id", workspace_id)
            .eq("status", "active")
            .limit(1)
            .execute().data
        )
        if not rows:
            raise HTTPException(status_code=400, detail="No active phone number found for this workspace")
        return rows[0]

    def _dial(self, workspace: Dict, call: Dict, from_number: str, record: bool = False) -> str:
        twilio = TwilioService.for_workspace(workspace)
        voice_url = callback_url("/twilio/voice", agentId=call["agent_id"], outboundCallId=call["id"])
        status_url = callback_url("/twilio/call-status", outboundCallId=call["id"])
        recording_url = callback_url("/twilio/recording-status", outboundCallId=call["id"]) if record else None
        return twilio.make_call(call["to_number"], from_number, voice_url, status_url, recording_url)

    def initiate_call(self, workspace_id: str, agent_id: str, to_number: str,
                      scheduled_at: Optional[datetime] = None, metadata: Optional[Dict] = None) -> Dict:
        if not workspace_id or not agent_id or not to_number:
            raise HTTPException(status_code=400, detail="workspaceId, agentId, and toNumber are required")

        workspace = self._workspace(workspace_id)
        phone_number = self._active_number(workspace_id)

        if not self.db.get("agents", agent_id):
            raise HTTPException(status_code=404, detail="Agent not found")
        if scheduled_at and scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

        call = self.db.insert("outbound_calls", {
            "workspace_id": workspace_id,
            "agent_id": agent_id,
            "to_number": to_number,
            "phone_number_id": phone_number["id"],
            "scheduled_at": scheduled_at.isoformat() if scheduled_at else None,
            "metadata": metadata,
            "status": "scheduled" if scheduled_at else "initiating",
        })

        if scheduled_at:
            logger.info(f"Scheduled outbound call {call['id']} for {scheduled_at.isoformat()}")
            return {
                "success": True,
                "outboundCallId": call["id"],
                "status": "scheduled",
                "scheduledAt": scheduled_at.isoformat(),
            }

        try:
            call_sid = self._dial(workspace, call, phone_number["phone_number"])
        except HTTPException as e:
            self.db.update("outbound_calls", call["id"], {"status": "failed", "result": e.detail})
            raise HTTPException(status_code=500, detail=f"Failed to initiate Twilio call: {e.detail}")

        self.db.update("outbound_calls", call["id"], {
            "call_sid": call_sid,
            "status": "initiated",
            "started_at": utc_now(),
        })
        return {
            "success": True,
            "outboundCallId": call["id"],
            "callSid": call_sid,
            "status": "initiated",
        }

    def batch_call(self, workspace_id: str, agent_id: str, numbers_text: str) -> Dict:
        """Dial every number in a pasted list, one after another"""
        agent = self.db.get("agents", agent_id)
        if not agent or agent.get("status") != "published" or not agent.get("elevenlabs_agent_id"):
            raise HTTPException(status_code=400, detail="Agent must be published and synced to ElevenLabs")

        numbers = parse_phone_numbers(numbers_text)
        if not numbers:
            raise HTTPException(status_code=400, detail="No valid phone numbers")

        results = []
        for number in numbers:
            try:
                outcome = self.initiate_call(workspace_id, agent_id, number)
                results.append({"toNumber": number, "success": True, "outboundCallId": outcome["outboundCallId"]})
            except HTTPException as e:
                logger.error(f"Batch call to {number} failed: {e.detail}")
                results.append({"toNumber": number, "success": False, "error": e.detail})

        success_count = sum(1 for r in results if r["success"])
        return {
            "total": len(numbers),
            "successCount": success_count,
            "failCount": len(numbers) - success_count,
            "results": results,
        }

    def list_calls(self, workspace_id: str, agent_id: Optional[str] = None) -> List[Dict]:
        query = self.db.table("outbound_calls").select("*").eq("workspace_id", workspace_id)
        if agent_id:
            query = query.eq("agent_id", agent_id)
        calls = query.order("created_at", desc=True).execute().data or []

        agents = {a["id"]: a for a in self.db.by_ids("agents", [c.get("agent_id") for c in calls])}
        conversations = {c["id"]: c for c in self.db.by_ids("conversations", [c.get("conversation_id") for c in calls])}
        for call in calls:
            agent = agents.get(call.get("agent_id"))
            call["agent"] = {k: agent.get(k) for k in ("id", "name", "icon_name", "icon_color", "custom_icon_url")} if agent else None
            call["conversation"] = conversations.get(call.get("conversation_id"))
        return calls

    def grouped_calls(self, workspace_id: str) -> List[conversation_view.OutboundAgentInfo]:
        return conversation_view.group_outbound_by_agent(self.list_calls(workspace_id))

    def cancel_call(self, call_id: str) -> Dict:
        call = self.db.get("outbound_calls", call_id)
        if not call:
            raise HTTPException(status_code=404, detail="Outbound call not found")
        if call.get("status") != "scheduled":
            raise HTTPException(status_code=400, detail="Only scheduled calls can be canceled")
        return self.db.update("outbound_calls", call_id, {"status": "canceled"})

    def mark_as_read(self, call_id: str) -> None:
        self.db.update("outbound_calls", call_id, {"is_read": True})

    def mark_all_as_read(self, workspace_id: str, agent_id: Optional[str] = None) -> None:
        query = self.db.table("outbound_calls").update({"is_read": True}).eq("workspace_id", workspace_id).eq("is_read", False)
        if agent_id:
            query = query.eq("agent_id", agent_id)
        query.execute()

    def process_scheduled_calls(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Dial every scheduled call that is due"""
        now = now or datetime.now(timezone.utc)
        due = (
            self.db.table("outbound_calls").select("*")
            .eq("status", "scheduled")
            .lte("scheduled_at", now.isoformat())
            .order("scheduled_at")
            .limit(SCHEDULED_BATCH_SIZE)
            .execute().data
        ) or []

        logger.info(f"Found {len(due)} scheduled calls to process")
        results = []
        for call in due:
            try:
                self.db.update("outbound_calls", call["id"], {"status": "initiating"})
                workspace = self._workspace(call["workspace_id"])
                phone_number = (self.db.get("phone_numbers", call["phone_number_id"])
                                if call.get("phone_number_id") else None)
                if not phone_number:
                    raise HTTPException(status_code=400, detail="Phone number not found")

                call_sid = self._dial(workspace, call, phone_number["phone_number"], record=True)
                self.db.update("outbound_calls", call["id"], {
                    "call_sid": call_sid,
                    "status": "initiated",
                    "started_at": utc_now(),
                })
                results.append({"id": call["id"], "success": True, "callSid": call_sid})
            except Exception as e:
                error = e.detail if isinstance(e, HTTPException) else str(e)
                logger.error(f"Scheduled call {call['id']} failed: {error}")
                self.db.update("outbound_calls", call["id"], {"status": "failed", "result": error})
                results.append({"id": call["id"], "success": False, "error": error})

        success_count = sum(1 for r in results if r["success"])
        return {
            "success": True,
            "processed": len(results),
            "successCount": success_count,
            "failCount": len(results) - success_count,
            "results": results,
        }
