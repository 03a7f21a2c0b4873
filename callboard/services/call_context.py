from fastapi import HTTPException
from typing import Dict, List, Optional, Tuple
from callboard.core.database import Database

EVENT_FLAGS = {
    "call_start": "notify_on_call_start",
    "call_end": "notify_on_call_end",
    "call_failed": "notify_on_call_failed",
}

def load_call(db: Database, conversation_id: str, agent_id: str) -> Tuple[Dict, Dict]:
    """The conversation and its agent, or 404"""
    conversation = db.get("conversations", conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    agent = db.get("agents", agent_id)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return conversation, agent

def extracted_values(db: Database, conversation_id: Optional[str]) -> Dict[str, str]:
    if not conversation_id:
        return {}
    rows = db.find("conversation_extracted_data", conversation_id=conversation_id)
    return {row["field_key"]: row.get("field_value") or "" for row in rows}

def wants_event(integration: Dict, event_type: str) -> bool:
    flag = EVENT_FLAGS.get(event_type)
    return bool(flag and integration.get(flag))

def covers_agent(integration: Dict, agent_id: Optional[str]) -> bool:
    """An empty agent list means every agent"""
    agent_ids: List[str] = integration.get("agent_ids") or []
    return not agent_ids or agent_id in agent_ids

def active_integrations(db: Database, table: str, workspace_id: str) -> List[Dict]:
    return (
        db.table(table).select("*")
        .eq("workspace_id", workspace_id)
        .eq("is_active", True)
        .execute().data
    ) or []
