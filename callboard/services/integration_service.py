from fastapi import HTTPException
from enum import Enum
from typing import Any, Dict, List
import logging
from callboard.core.database import Database

logger = logging.getLogger(__name__)

SECRET_COLUMNS = ("google_access_token", "google_refresh_token")
WEBHOOK_LOG_LIMIT = 50


class IntegrationKind(str, Enum):
    slack = "slack-integrations"
    email = "email-notifications"
    spreadsheet = "spreadsheet-integrations"
    calendar = "calendar-integrations"
    webhook = "webhooks"


TABLES = {
    IntegrationKind.slack: "slack_integrations",
    IntegrationKind.email: "email_notifications",
    IntegrationKind.spreadsheet: "spreadsheet_integrations",
    IntegrationKind.calendar: "calendar_integrations",
    IntegrationKind.webhook: "webhooks",
}


def public_view(row: Dict[str, Any]) -> Dict[str, Any]:
    """Drops stored OAuth tokens from a row"""
    return {k: v for k, v in row.items() if k not in SECRET_COLUMNS}


class IntegrationService:
    """Workspace notification and export targets"""

    def __init__(self, db: Database, kind: IntegrationKind):
        self.db = db
        self.kind = IntegrationKind(kind)
        self.table = TABLES[self.kind]

    def list(self, workspace_id: str) -> List[Dict[str, Any]]:
        rows = (
            self.db.table(self.table).select("*")
            .eq("workspace_id", workspace_id)
            .order("created_at", desc=True)
            .execute().data
        ) or []
        return [public_view(r) for r in rows]

    def _row(self, integration_id: str) -> Dict[str, Any]:
        row = self.db.get(self.table, integration_id)
        if not row:
            raise HTTPException(status_code=404, detail="Integration not found")
        return row

    def get(self, integration_id: str) -> Dict[str, Any]:
        return public_view(self._row(integration_id))

    def create(self, workspace_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if not self.db.get("workspaces", workspace_id):
            raise HTTPException(status_code=404, detail="Workspace not found")
        row = self.db.insert(self.table, {**values, "workspace_id": workspace_id})
        logger.info(f"Created {self.table} row {row.get('id')} for workspace {workspace_id}")
        return public_view(row)

    def update(self, integration_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self._row(integration_id)
        if not values:
            raise HTTPException(status_code=400, detail="No fields to update")
        return public_view(self.db.update(self.table, integration_id, values))

    def delete(self, integration_id: str) -> None:
        self._row(integration_id)
        if self.kind == IntegrationKind.webhook:
            self.db.table("webhook_logs").delete().eq("webhook_id", integration_id).execute()
        self.db.delete(self.table, integration_id)
        logger.info(f"Deleted {self.table} row {integration_id}")

    def webhook_logs(self, webhook_id: str) -> List[Dict[str, Any]]:
        if self.kind != IntegrationKind.webhook:
            raise HTTPException(status_code=400, detail="Delivery logs exist only for webhooks")
        self._row(webhook_id)
        return (
            self.db.table("webhook_logs").select("*")
            .eq("webhook_id", webhook_id)
            .order("sent_at", desc=True)
            .limit(WEBHOOK_LOG_LIMIT)
            .execute().data
        ) or []
