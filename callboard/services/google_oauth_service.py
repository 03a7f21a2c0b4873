from fastapi import HTTPException
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode
import base64
import json
import logging
import requests
from callboard.config.settings import settings
from callboard.core.database import Database

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets"
REQUEST_TIMEOUT = 15

SCOPES = {
    "calendar": [
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/calendar.events",
    ],
    "spreadsheet": [
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive.readonly",
    ],
}
TABLES = {"calendar": "calendar_integrations", "spreadsheet": "spreadsheet_integrations"}
SUCCESS_LABELS = {"calendar": "Google Calendar", "spreadsheet": "Google スプレッドシート"}


def google_client(workspace: Optional[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    """OAuth client id and secret: workspace columns first, then workspace settings"""
    workspace = workspace or {}
    workspace_settings = workspace.get("settings") or {}
    return (
        workspace.get("google_client_id") or workspace_settings.get("google_client_id"),
        workspace.get("google_client_secret") or workspace_settings.get("google_client_secret"),
    )


def encode_state(kind: str, integration_id: str, workspace_id: str) -> str:
    payload = json.dumps({"kind": kind, "integration_id": integration_id, "workspace_id": workspace_id})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state(state: str) -> Dict[str, str]:
    try:
        return json.loads(base64.urlsafe_b64decode(state.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeError):
        raise HTTPException(status_code=400, detail="Invalid OAuth state")


def redirect_uri() -> str:
    return f"{settings.api_base_url}/integrations/google/callback"


def callback_page(message: str, success: bool = False, kind: str = "", integration_id: str = "") -> str:
    script = "window.close();"
    if success:
        script = (
            f"window.opener?.postMessage({{ type: 'google-{kind}-oauth-success', "
            f"integration_id: '{escape(integration_id)}' }}, '*'); setTimeout(() => window.close(), 1000);"
        )
    return f"<html><body><script>{script}</script><h2>{escape(message)}</h2></body></html>"


class GoogleOAuthService:
    """Google OAuth for calendar and spreadsheet integrations"""

    def __init__(self, db: Database):
        self.db = db

    def _integration(self, kind: str, integration_id: str) -> Dict[str, Any]:
        if kind not in TABLES:
            raise HTTPException(status_code=400, detail=f"Unknown integration kind: {kind}")
        integration = self.db.get(TABLES[kind], integration_id)
        if not integration:
            raise HTTPException(status_code=404, detail="Integration not found")
        return integration

    def _client(self, workspace_id: str) -> Tuple[str, str]:
        client_id, client_secret = google_client(self.db.get("workspaces", workspace_id))
        if not client_id or not client_secret:
            raise HTTPException(status_code=400, detail="Google credentials not configured")
        return client_id, client_secret

    def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        try:
            tokens = requests.post(TOKEN_URL, data=data, timeout=REQUEST_TIMEOUT).json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Google token request failed: {str(e)}")
            raise HTTPException(status_code=502, detail=f"Google token request failed: {str(e)}")
        if tokens.get("error"):
            logger.error(f"Google token error: {tokens}")
            raise HTTPException(status_code=400, detail=tokens.get("error_description") or tokens["error"])
        return tokens

    def auth_url(self, kind: str, integration_id: str) -> Dict[str, str]:
        integration = self._integration(kind, integration_id)
        client_id, _ = self._client(integration["workspace_id"])
        query = urlencode({
            "client_id": client_id,
            "redirect_uri": redirect_uri(),
            "response_type": "code",
            "scope": " ".join(SCOPES[kind]),
            "access_type": "offline",
            "prompt": "consent",
            "state": encode_state(kind, integration_id, integration["workspace_id"]),
        })
        return {"auth_url": f"{AUTH_URL}?{query}"}

    def handle_callback(self, code: str, state: str) -> str:
        """Exchange the authorization code and store the tokens on the integration"""
        target = decode_state(state)
        kind = target.get("kind")
        integration_id = target.get("integration_id")
        try:
            integration = self._integration(kind, integration_id)
            client_id, client_secret = self._client(target.get("workspace_id"))
            tokens = self._token_request({
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri(),
                "grant_type": "authorization_code",
            })
        except HTTPException as e:
            logger.error(f"Google OAuth callback failed for {integration_id}: {e.detail}")
            return callback_page(f"認証エラー: {e.detail}")

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        self.db.update(TABLES[kind], integration_id, {
            "is_authorized": True,
            "google_access_token": tokens["access_token"],
            "google_refresh_token": tokens.get("refresh_token") or integration.get("google_refresh_token"),
            "token_expires_at": expires_at.isoformat(),
        })
        logger.info(f"Authorized {kind} integration {integration_id}")
        return callback_page(f"✅ {SUCCESS_LABELS[kind]}認証が完了しました！このウィンドウは自動的に閉じます。",
                             True, kind, integration_id)

    def refresh(self, kind: str, integration_id: str) -> Dict[str, Any]:
        integration = self._integration(kind, integration_id)
        if not integration.get("google_refresh_token"):
            raise HTTPException(status_code=400, detail="No refresh token")
        client_id, client_secret = self._client(integration["workspace_id"])
        tokens = self._token_request({
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": integration["google_refresh_token"],
            "grant_type": "refresh_token",
        })
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        self.db.update(TABLES[kind], integration_id, {
            "google_access_token": tokens["access_token"],
            "token_expires_at": expires_at.isoformat(),
        })
        return {"success": True}

    def revoke(self, kind: str, integration_id: str) -> Dict[str, Any]:
        integration = self._integration(kind, integration_id)
        if integration.get("google_access_token"):
            try:
                requests.post(REVOKE_URL, params={"token": integration["google_access_token"]}, timeout=REQUEST_TIMEOUT)
            except requests.RequestException as e:
                logger.warning(f"Google token revoke failed for {integration_id}: {str(e)}")
        self.db.update(TABLES[kind], integration_id, {
            "is_authorized": False,
            "google_access_token": None,
            "google_refresh_token": None,
            "token_expires_at": None,
        })
        return {"success": True}

    def _get(self, integration: Dict[str, Any], url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        if not integration.get("google_access_token"):
            raise HTTPException(status_code=400, detail="Integration is not authorized")
        try:
            response = requests.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {integration['google_access_token']}"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"Google API request failed: {str(e)}")
            raise HTTPException(status_code=502, detail=f"Google API error: {str(e)}")
        if not response.ok:
            logger.error(f"Google API error: {response.status_code} {response.text}")
            raise HTTPException(status_code=502, detail=f"Google API error: {response.status_code}")
        return response.json()

    def list_spreadsheets(self, integration_id: str) -> Dict[str, Any]:
        integration = self._integration("spreadsheet", integration_id)
        data = self._get(integration, DRIVE_FILES_URL, {
            "q": "mimeType='application/vnd.google-apps.spreadsheet' and trashed=false",
            "fields": "files(id,name)",
            "orderBy": "modifiedTime desc",
        })
        return {"spreadsheets": [{"id": f["id"], "name": f["name"]} for f in data.get("files") or []]}

    def list_sheets(self, integration_id: str, spreadsheet_id: str) -> Dict[str, Any]:
        integration = self._integration("spreadsheet", integration_id)
        data = self._get(integration, f"{SHEETS_URL}/{spreadsheet_id}", {"fields": "sheets.properties"})
        return {"sheets": [
            {"id": s["properties"].get("sheetId"), "title": s["properties"].get("title")}
            for s in data.get("sheets") or []
        ]}
