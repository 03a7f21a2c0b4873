from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo
import logging
import requests
from callboard.core.database import Database
from callboard.services.call_context import covers_agent, extracted_values, load_call
from callboard.utils.helpers import format_duration_japanese, message_text, parse_timestamp, transcript_messages

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets"
REQUEST_TIMEOUT = 15
REFRESH_MARGIN = timedelta(minutes=5)
BASE_HEADERS = ["日時", "エージェント名", "電話番号", "通話時間", "結果", "ステータス"]
EXPORT_FLAGS = {"call_end": "export_on_call_end", "call_failed": "export_on_call_failed"}
TOKYO = ZoneInfo("Asia/Tokyo")


def format_transcript(transcript) -> str:
    return "\n".join(
        f"{'エージェント' if m.get('role') == 'agent' else 'ユーザー'}: {message_text(m)}"
        for m in transcript_messages(transcript)
    )


def format_export_time(value: datetime) -> str:
    local = value.astimezone(TOKYO)
    return f"{local.year}/{local.month}/{local.day} {local.hour}:{local.minute:02d}:{local.second:02d}"


def build_row(integration: Dict, event_type: str, agent_name: str, conversation: Dict,
              extracted: Dict[str, str], now: Optional[datetime] = None):
    """Header and value rows for one exported call"""
    headers = list(BASE_HEADERS)
    row = [
        format_export_time(now or datetime.now(timezone.utc)),
        agent_name,
        conversation.get("phone_number") or "-",
        format_duration_japanese(conversation.get("duration_seconds")),
        conversation.get("outcome") or "-",
        "失敗" if event_type == "call_failed" else "完了",
    ]
    if integration.get("include_summary"):
        headers.append("要約")
        row.append(conversation.get("summary") or "-")
    if integration.get("include_transcript"):
        headers.append("トランスクリプト")
        row.append(format_transcript(conversation.get("transcript")))
    if integration.get("include_extracted_data") and extracted:
        headers.append("抽出データ")
        row.append("\n".join(f"{k}: {v}" for k, v in extracted.items()))
    return headers, row


class SpreadsheetService:
    """Appends finished calls to Google Sheets"""

    def __init__(self, db: Database):
        self.db = db

    def refresh_access_token(self, integration: Dict, workspace: Dict) -> Optional[str]:
        if not integration.get("google_refresh_token") or not workspace.get("google_client_id") \
                or not workspace.get("google_client_secret"):
            return None
        try:
            response = requests.post(TOKEN_URL, data={
                "client_id": workspace["google_client_id"],
                "client_secret": workspace["google_client_secret"],
                "refresh_token": integration["google_refresh_token"],
                "grant_type": "refresh_token",
            }, timeout=REQUEST_TIMEOUT)
            tokens = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error refreshing token: {str(e)}")
            return None
        if tokens.get("error"):
            logger.error(f"Token refresh error: {tokens}")
            return None

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        self.db.update("spreadsheet_integrations", integration["id"], {
            "google_access_token": tokens["access_token"],
            "token_expires_at": expires_at.isoformat(),
        })
        return tokens["access_token"]

    def access_token(self, integration: Dict, workspace: Dict) -> Optional[str]:
        token = integration.get("google_access_token")
        expires_at = parse_timestamp(integration.get("token_expires_at"))
        if expires_at and expires_at - datetime.now(timezone.utc) < REFRESH_MARGIN:
            token = self.refresh_access_token(integration, workspace)
        return token

    def append_row(self, token: str, spreadsheet_id: str, sheet_name: str,
                   headers: List[str], row: List[str]) -> bool:
        auth = {"Authorization": f"Bearer {token}"}
        base = f"{SHEETS_URL}/{spreadsheet_id}/values"
        try:
            first_cell = requests.get(f"{base}/{quote(f'{sheet_name}!A1:A1')}", headers=auth, timeout=REQUEST_TIMEOUT)
            has_rows = first_cell.ok and bool(first_cell.json().get("values"))
            if not has_rows:
                header_response = requests.put(
                    f"{base}/{quote(f'{sheet_name}!A1')}",
                    params={"valueInputOption": "USER_ENTERED"},
                    headers=auth,
                    json={"values": [headers]},
                    timeout=REQUEST_TIMEOUT,
                )
                if not header_response.ok:
                    logger.error(f"Error adding header row: {header_response.status_code} {header_response.text}")

            response = requests.post(
                f"{base}/{quote(f'{sheet_name}!A:Z')}:append",
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                headers=auth,
                json={"values": [row]},
                timeout=REQUEST_TIMEOUT,
            )
            if not response.ok:
                logger.error(f"Google Sheets API error: {response.status_code} {response.text}")
                return False
            return True
        except requests.RequestException as e:
            logger.error(f"Error appending to sheet: {str(e)}")
            return False

    def export(self, conversation_id: str, agent_id: str, event_type: str) -> List[Dict]:
        conversation, agent = load_call(self.db, conversation_id, agent_id)
        integrations = (
            self.db.table("spreadsheet_integrations").select("*")
            .eq("workspace_id", agent["workspace_id"])
            .eq("is_active", True)
            .eq("is_authorized", True)
            .execute().data
        ) or []
        if not integrations:
            return []

        workspace = self.db.get("workspaces", agent["workspace_id"]) or {}
        extracted = extracted_values(self.db, conversation_id)
        results = []
        for integration in integrations:
            flag = EXPORT_FLAGS.get(event_type)
            if not flag or not integration.get(flag) or not covers_agent(integration, agent_id):
                continue
            if not integration.get("spreadsheet_id"):
                results.append({"integration_id": integration["id"], "success": False, "error": "No spreadsheet ID"})
                continue

            token = self.access_token(integration, workspace)
            if not token:
                logger.error(f"No valid access token for integration {integration['id']}")
                results.append({"integration_id": integration["id"], "success": False, "error": "No access token"})
                continue

            headers, row = build_row(integration, event_type, agent.get("name"), conversation, extracted)
            ok = self.append_row(token, integration["spreadsheet_id"], integration.get("sheet_name") or "Sheet1", headers, row)
            results.append({"integration_id": integration["id"], "success": ok} if ok
                           else {"integration_id": integration["id"], "success": False, "error": "Failed to append"})
        return results
