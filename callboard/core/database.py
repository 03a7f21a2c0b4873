from supabase import create_client, Client
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
from callboard.config.settings import settings

logger = logging.getLogger(__name__)

def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()

class Database:
    """Thin wrapper around the Supabase client used by every service"""

    def __init__(self, client: Client = None):
        if client is None:
            if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
            logger.info("Supabase client initialized")
        self.client = client

    def table(self, name: str):
        return self.client.table(name)

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self.table(table).select("*").eq("id", record_id).limit(1).execute().data
        return rows[0] if rows else None

    def find(self, table: str, **filters) -> List[Dict[str, Any]]:
        query = self.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        return query.execute().data or []

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self.table(table).insert(values).execute().data
        return rows[0] if rows else values

    def update(self, table: str, record_id: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.table(table).update(values).eq("id", record_id).execute().data
        return rows[0] if rows else None

    def delete(self, table: str, record_id: str) -> None:
        self.table(table).delete().eq("id", record_id).execute()

    def by_ids(self, table: str, ids: List[str], column: str = "id") -> List[Dict[str, Any]]:
        ids = [i for i in dict.fromkeys(ids) if i]
        if not ids:
            return []
        return self.table(table).select("*").in_(column, ids).execute().data or []
