from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import quote
import logging
import requests
from callboard.core.database import Database
from callboard.services.call_context import extracted_values
from callboard.services.google_oauth_service import google_client
from callboard.utils.helpers import format_duration_japanese, parse_timestamp, replace_template_variables

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_URL = "https://www.googleapis.com/calendar/v3/calendars"
REQUEST_TIMEOUT = 15
TOKEN_FAILED = "Failed to refresh Google access token"


def should_create(integration: Dict, call_status: str) -> bool:
    if call_status == "completed":
        return bool(integration.get("create_on_call_end"))
    if call_status in ("failed", "missed"):
        return bool(integration.get("create_on_call_failed"))
    return False


class CalendarService:
    """Creates Google Calendar events for finished calls"""

    def __init__(self, db: Database):
        self.db = db

    def _access_token(self, client_id: str, client_secret: str, refresh_token: str) -> Optional[str]:
        try:
            response = requests.post(TOKEN_URL, data={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }, timeout=REQUEST_TIMEOUT)
            if not response.ok:
                logger.error(f"Google token refresh failed: {response.status_code} {response.text}")
                return None
            return response.json()["access_token"]
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.error(f"Google token refresh failed: {str(e)}")
            return None

    def create_events(self, agent_id: str, call_status: str, phone_number: Optional[str] = None,
                      started_at: Optional[str] = None, summary: Optional[str] = None,
                      conversation_id: Optional[str] = None) -> Dict:
        agent = self.db.get("agents", agent_id)
        if not agent:
            raise RuntimeError("Agent not found")

        integrations = [
            i for i in (
                self.db.table("calendar_integrations").select("*")
                .eq("workspace_id", agent["workspace_id"])
                .eq("is_active", True)
                .execute().data or []
            )
            if i.get("agent_id") in (None, agent_id)
        ]
        if not integrations:
            return {"message": "No active calendar integrations found"}

        workspace = self.db.get("workspaces", agent["workspace_id"]) or {}
        client_id, client_secret = google_client(workspace)
        # An integration authorized through OAuth carries its own refresh token
        shared_refresh_token = (workspace.get("settings") or {}).get("google_refresh_token")
        if not client_id or not client_secret or not (
            shared_refresh_token or any(i.get("google_refresh_token") for i in integrations)
        ):
            return {"message": "Google Cloud credentials not configured"}

        conversation = self.db.get("conversations", conversation_id) if conversation_id else None
        conversation = conversation or {}
        start = parse_timestamp(started_at) or datetime.now(timezone.utc)
        variables = {
            "agent_name": agent.get("name") or "",
            "phone_number": phone_number or "",
            "datetime": start.isoformat(),
            "summary": summary or "",
            "call_status": call_status,
            "duration": format_duration_japanese(conversation.get("duration_seconds")),
            "outcome": conversation.get("outcome") or call_status,
        }
        variables.update(extracted_values(self.db, conversation_id))

        tokens = {}
        created = []
        failed = []
        for integration in integrations:
            if not should_create(integration, call_status):
                continue
            refresh_token = integration.get("google_refresh_token") or shared_refresh_token
            if not refresh_token:
                failed.append({"integration_id": integration["id"], "error": "Integration is not authorized"})
                continue
            if refresh_token not in tokens:
                tokens[refresh_token] = self._access_token(client_id, client_secret, refresh_token)
            token = tokens[refresh_token]
            if not token:
                failed.append({"integration_id": integration["id"], "error": TOKEN_FAILED})
                continue

            end = start + timedelta(minutes=integration.get("event_duration_minutes") or 30)
            event = {
                "summary": replace_template_variables(integration.get("event_title_template") or "", variables),
                "description": replace_template_variables(integration.get("event_description_template") or "", variables),
                "start": {"dateTime": start.isoformat(), "timeZone": "Asia/Tokyo"},
                "end": {"dateTime": end.isoformat(), "timeZone": "Asia/Tokyo"},
            }
            calendar_id = integration.get("calendar_id") or "primary"
            try:
                response = requests.post(
                    f"{CALENDAR_URL}/{quote(calendar_id, safe='')}/events",
                    headers={"Authorization": f"Bearer {token}"},
                    json=event,
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                logger.error(f"Calendar request failed for integration {integration['id']}: {str(e)}")
                failed.append({"integration_id": integration["id"], "error": str(e)})
                continue
            if response.ok:
                body = response.json()
                created.append({"integration_id": integration["id"], "event_id": body.get("id"), "event_link": body.get("htmlLink")})
            else:
                logger.error(f"Failed to create calendar event for integration {integration['id']}: {response.text}")
                failed.append({"integration_id": integration["id"], "error": f"Calendar API error: {response.status_code}"})

        return {
            "success": True,
            "created_events": created,
            "failed_events": failed,
            "message": f"Created {len(created)} calendar event(s)",
        }
