from fastapi import HTTPException
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging
from callboard.core import conversation_view
from callboard.core.database import Database
from callboard.core.storage import CloudStorage
from callboard.services.calendar_service import CalendarService
from callboard.services.email_service import EmailService
from callboard.services.openai_service import OpenAIService
from callboard.services.slack_service import SlackService
from callboard.services.spreadsheet_service import SpreadsheetService
from callboard.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)


def parse_transcript(raw: Optional[str]) -> List[Dict[str, Any]]:
    """Transcript form field as a message list; anything unparsable becomes []"""
    if not raw:
        return []
    try:
        transcript = json.loads(raw)
    except ValueError:
        logger.warning("Failed to parse transcript, storing empty list")
        return []
    return transcript if isinstance(transcript, list) else []


def event_type_for(status: Optional[str]) -> str:
    return "call_failed" if status == "failed" else "call_end"


class ConversationService:
    def __init__(self, db: Database, storage: Optional[CloudStorage] = None):
        self.db = db
        self.storage = storage

    def _agents(self, workspace_id: str) -> Dict[str, Dict[str, Any]]:
        agents = self.db.find("agents", workspace_id=workspace_id)
        return {a["id"]: a for a in agents}

    def _displays(self, conversations: List[Dict[str, Any]],
                  agents: Dict[str, Dict[str, Any]]) -> List[conversation_view.ConversationDisplay]:
        extracted = self.db.by_ids("conversation_extracted_data", [c["id"] for c in conversations],
                                   column="conversation_id")
        by_conversation: Dict[str, List[Dict[str, Any]]] = {}
        for row in extracted:
            by_conversation.setdefault(row["conversation_id"], []).append(
                {"field_key": row["field_key"], "field_value": row.get("field_value")}
            )
        return [
            conversation_view.to_display(c, agents.get(c.get("agent_id")), by_conversation.get(c["id"]))
            for c in conversations
        ]

    def list_conversations(self, workspace_id: str, query: Optional[str] = None, date_filter: str = "all",
                           status_filter: str = "all", grouped: bool = False,
                           now: Optional[datetime] = None) -> List[Any]:
        """Inbound call history for a workspace, newest first"""
        agents = self._agents(workspace_id)
        if not agents:
            return []
        rows = (
            self.db.table("conversations").select("*")
            .in_("agent_id", list(agents))
            .order("started_at", desc=True)
            .execute().data
        ) or []
        rows = [r for r in rows if conversation_view.is_inbound(r)]

        try:
            displays = conversation_view.filter_conversations(
                conversation_view.search(self._displays(rows, agents), query),
                date_filter,
                status_filter,
                now,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        displays.sort(key=lambda c: c.raw_date, reverse=True)

        if grouped:
            phone_numbers = self.db.find("phone_numbers", workspace_id=workspace_id)
            return conversation_view.group_by_agent(displays, agents, phone_numbers)

        separators = conversation_view.day_separators(displays, now)
        return [
            {
                **display.model_dump(),
                "relative_date": conversation_view.format_relative_date(display.raw_date, now),
                "day_separator": separator,
            }
            for display, separator in zip(displays, separators)
        ]

    def get_conversation(self, conversation_id: str) -> conversation_view.ConversationDisplay:
        conversation = self.db.get("conversations", conversation_id)
        if not conversation:
            raise HTTPException(status_code=404, detail="Conversation not found")
        agent = self.db.get("agents", conversation["agent_id"]) if conversation.get("agent_id") else None
        agents = {agent["id"]: agent} if agent else {}
        return self._displays([conversation], agents)[0]

    def share_text(self, conversation_id: str) -> Dict[str, str]:
        display = self.get_conversation(conversation_id)
        return {
            "title": conversation_view.share_title(display.agent),
            "text": conversation_view.build_share_text(display, display.agent),
        }

    def mark_as_read(self, conversation_id: str) -> None:
        self.db.update("conversations", conversation_id, {"is_read": True})

    def mark_all_as_read(self, workspace_id: str, agent_id: Optional[str] = None) -> None:
        agent_ids = [agent_id] if agent_id else list(self._agents(workspace_id))
        if not agent_ids:
            return
        (
            self.db.table("conversations").update({"is_read": True})
            .in_("agent_id", agent_ids)
            .eq("is_read", False)
            .execute()
        )
        logger.info(f"Marked conversations as read for {len(agent_ids)} agent(s)")

    def save_conversation(self, agent_id: str, phone_number: Optional[str], transcript: Optional[str],
                          duration_seconds: Optional[int], outcome: Optional[str], status: Optional[str],
                          audio: Optional[bytes] = None, audio_content_type: Optional[str] = None) -> Dict[str, Any]:
        """Store a finished browser call and its recording"""
        if not agent_id:
            raise HTTPException(status_code=400, detail="agentId is required")
        if not self.db.get("agents", agent_id):
            raise HTTPException(status_code=404, detail="Agent not found")

        audio_url = None
        if audio:
            if self.storage is None:
                raise HTTPException(status_code=500, detail="Recording storage is not configured")
            try:
                audio_url = self.storage.store_recording(agent_id, audio, audio_content_type)
            except Exception as e:
                logger.error(f"Failed to upload recording for agent {agent_id}: {str(e)}")
                raise HTTPException(status_code=500, detail=f"Failed to upload recording: {str(e)}")

        now = datetime.now(timezone.utc)
        duration = duration_seconds or 0
        started_at = now - timedelta(seconds=duration)
        conversation = self.db.insert("conversations", {
            "agent_id": agent_id,
            "phone_number": phone_number,
            "transcript": parse_transcript(transcript),
            "duration_seconds": duration,
            "outcome": outcome,
            "status": status or "completed",
            "audio_url": audio_url,
            "started_at": started_at.isoformat(),
            "ended_at": now.isoformat(),
            "is_read": False,
        })
        logger.info(f"Saved conversation {conversation.get('id')} for agent {agent_id}")
        return conversation

    def post_call_tasks(self, conversation: Dict[str, Any]) -> List[Tuple[str, Callable[[], Any]]]:
        conversation_id = conversation["id"]
        agent_id = conversation["agent_id"]
        event_type = event_type_for(conversation.get("status"))
        call_status = "failed" if event_type == "call_failed" else "completed"

        return [
            ("webhooks", lambda: WebhookService(self.db).send(conversation_id, agent_id)),
            ("summary", lambda: OpenAIService(self.db).generate_summary(conversation_id)),
            ("slack", lambda: SlackService(self.db).notify(conversation_id, agent_id, event_type)),
            ("email", lambda: EmailService(self.db).notify(conversation_id, agent_id, event_type)),
            ("spreadsheet", lambda: SpreadsheetService(self.db).export(conversation_id, agent_id, event_type)),
            ("calendar", lambda: CalendarService(self.db).create_events(
                agent_id,
                call_status,
                conversation.get("phone_number"),
                conversation.get("started_at"),
                (self.db.get("conversations", conversation_id) or {}).get("summary"),
                conversation_id,
            )),
        ]

    def run_post_call_tasks(self, conversation: Dict[str, Any]) -> Dict[str, bool]:
        """Fire every post-call integration once; a failure never stops the rest"""
        results = {}
        for name, task in self.post_call_tasks(conversation):
            try:
                task()
                results[name] = True
            except HTTPException as e:
                logger.error(f"Post-call {name} failed for {conversation['id']}: {e.detail}")
                results[name] = False
            except Exception as e:
                logger.error(f"Post-call {name} failed for {conversation['id']}: {str(e)}")
                results[name] = False
        return results
