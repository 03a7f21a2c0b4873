from fastapi import HTTPException
from datetime import datetime, timezone
from typing import Dict, List
import logging
import requests
from callboard.core.database import Database
from callboard.services.call_context import active_integrations, covers_agent, load_call, wants_event
from callboard.utils.helpers import format_duration_japanese, replace_template_variables, transcript_messages

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10

def transcript_text(transcript) -> str:
    return "\n".join(
        f"{'AI' if m.get('role') == 'agent' else 'お客様'}: {m.get('text') or ''}"
        for m in transcript_messages(transcript)
    )

class SlackService:
    """Posts call events to Slack workflow webhooks"""

    def __init__(self, db: Database):
        self.db = db

    def build_payload(self, integration: Dict, conversation: Dict, agent: Dict, event_type: str) -> Dict:
        duration = conversation.get("duration_seconds") or 0
        transcript = transcript_text(conversation.get("transcript"))
        now = datetime.now(timezone.utc).isoformat()
        variables = {
            "event_type": event_type,
            "agent_name": agent.get("name"),
            "phone_number": conversation.get("phone_number") or "不明",
            "duration_seconds": duration,
            "duration_formatted": format_duration_japanese(duration),
            "outcome": conversation.get("outcome") or "完了",
            "summary": conversation.get("summary") or "",
            "transcript": transcript,
            "timestamp": now,
            "conversation_id": conversation["id"],
        }
        payload = {
            "event_type": event_type,
            "agent_name": variables["agent_name"],
            "phone_number": variables["phone_number"],
            "duration_seconds": duration,
            "duration_formatted": variables["duration_formatted"],
            "outcome": variables["outcome"],
            "summary": (conversation.get("summary") or "") if integration.get("include_summary") else "",
            "transcript_text": transcript if integration.get("include_transcript") else "",
            "timestamp": now,
            "conversation_id": conversation["id"],
        }
        if integration.get("message_template"):
            payload["text"] = replace_template_variables(integration["message_template"], variables)
        return payload

    def deliver(self, integration: Dict, payload: Dict) -> Dict:
        result = {"integration_id": integration["id"], "integration_name": integration.get("name")}
        try:
            response = requests.post(integration["webhook_url"], json=payload, timeout=REQUEST_TIMEOUT)
            logger.info(f"Slack notification sent to {integration.get('name')}: {response.status_code}")
            result.update({"success": response.ok, "status_code": response.status_code})
        except requests.RequestException as e:
            logger.error(f"Error sending Slack notification to {integration.get('name')}: {str(e)}")
            result.update({"success": False, "error": str(e)})
        return result

    def notify(self, conversation_id: str, agent_id: str, event_type: str) -> List[Dict]:
        conversation, agent = load_call(self.db, conversation_id, agent_id)
        integrations = [
            i for i in active_integrations(self.db, "slack_integrations", agent["workspace_id"])
            if wants_event(i, event_type) and covers_agent(i, agent_id)
        ]
        if not integrations:
            logger.info(f"No Slack integrations configured for event type: {event_type}")
            return []
        return [
            self.deliver(i, self.build_payload(i, conversation, agent, event_type))
            for i in integrations
        ]

    def send_test(self, integration_id: str) -> Dict:
        integration = self.db.get("slack_integrations", integration_id)
        if not integration:
            raise HTTPException(status_code=404, detail="Slack integration not found")
        payload = {
            "event_type": "test",
            "agent_name": "テストエージェント",
            "phone_number": "+81-00-0000-0000",
            "duration_seconds": 0,
            "duration_formatted": format_duration_japanese(0),
            "outcome": "テスト",
            "summary": "",
            "transcript_text": "",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "conversation_id": "",
            "text": "Musa Voice AI からのテスト通知です",
        }
        return self.deliver(integration, payload)

    def share_call(self, webhook_url: str, blocks: List[Dict], fallback: str) -> None:
        """Post a Block Kit message to an incoming webhook"""
        response = requests.post(webhook_url, json={"text": fallback, "blocks": blocks}, timeout=REQUEST_TIMEOUT)
        if not response.ok:
            raise RuntimeError(f"Slack API error: {response.status_code} {response.text}")
