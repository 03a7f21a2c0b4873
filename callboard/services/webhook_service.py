from datetime import datetime, timezone
from typing import Dict, List
import logging
import requests
from callboard.core.database import Database, utc_now
from callboard.services.call_context import extracted_values, load_call

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10

class WebhookService:
    """Delivers the conversation_ended event to a workspace's own webhooks"""

    def __init__(self, db: Database):
        self.db = db

    def build_payload(self, conversation: Dict, agent: Dict, extracted: Dict[str, str]) -> Dict:
        return {
            "event_type": "conversation_ended",
            "conversation_id": conversation["id"],
            "agent_id": agent["id"],
            "agent_name": agent.get("name"),
            "phone_number": conversation.get("phone_number"),
            "duration_seconds": conversation.get("duration_seconds"),
            "outcome": conversation.get("outcome"),
            "transcript": conversation.get("transcript"),
            "summary": conversation.get("summary"),
            "key_points": conversation.get("key_points"),
            "extracted_data": extracted,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def send(self, conversation_id: str, agent_id: str) -> List[Dict]:
        conversation, agent = load_call(self.db, conversation_id, agent_id)
        webhooks = (
            self.db.table("webhooks").select("*")
            .eq("workspace_id", agent["workspace_id"])
            .eq("is_active", True)
            .eq("event_type", "conversation_ended")
            .execute().data
        ) or []
        if not webhooks:
            logger.info(f"No webhooks to send for conversation {conversation_id}")
            return []

        payload = self.build_payload(conversation, agent, extracted_values(self.db, conversation_id))
        results = []
        for webhook in webhooks:
            headers = {"Content-Type": "application/json"}
            headers.update(webhook.get("headers") or {})
            try:
                response = requests.post(webhook["url"], json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
                self.db.insert("webhook_logs", {
                    "webhook_id": webhook["id"],
                    "conversation_id": conversation_id,
                    "sent_at": utc_now(),
                    "status_code": response.status_code,
                    "response_body": response.text[:1000],
                })
                results.append({"webhook_id": webhook["id"], "success": response.ok, "status_code": response.status_code})
            except requests.RequestException as e:
                logger.error(f"Error sending webhook to {webhook.get('name')}: {str(e)}")
                self.db.insert("webhook_logs", {
                    "webhook_id": webhook["id"],
                    "conversation_id": conversation_id,
                    "sent_at": utc_now(),
                    "error_message": str(e),
                })
                results.append({"webhook_id": webhook["id"], "success": False, "error": str(e)})
        return results
