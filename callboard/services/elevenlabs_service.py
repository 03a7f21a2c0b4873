from fastapi import HTTPException
from typing import Any, Dict, List, Optional
import logging
import requests
from callboard.config.settings import settings

logger = logging.getLogger(__name__)

API_URL = "https://api.elevenlabs.io/v1"
TTS_MODEL = "eleven_turbo_v2_5"
FIRST_MESSAGE = "こんにちは！本日はどのようなご用件でしょうか？"
REQUEST_TIMEOUT = 30


def agent_prompt(agent: Dict[str, Any]) -> str:
    if agent.get("system_prompt"):
        return agent["system_prompt"]
    description = agent.get("description") or "お客様のサポートを行うAIアシスタントです。"
    return f"あなたは{agent['name']}です。{description}"


def conversation_config(agent: Dict[str, Any], knowledge_base: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    prompt = {"prompt": agent_prompt(agent)}
    if knowledge_base is not None:
        prompt["knowledge_base"] = knowledge_base
    config = {
        "agent": {
            "prompt": prompt,
            "first_message": FIRST_MESSAGE,
            "language": "ja",
        },
        "tts": {"model_id": TTS_MODEL, "voice_id": agent.get("voice_id")},
    }
    if agent.get("max_call_duration"):
        config["conversation"] = {"max_duration_seconds": agent["max_call_duration"]}
    return config


class ElevenLabsService:
    """Voice vendor API: voices, previews and hosted conversational agents"""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or settings.ELEVENLABS_API_KEY
        if not self.api_key:
            raise HTTPException(status_code=500, detail="ElevenLabs API key is not configured")

    @classmethod
    def for_workspace(cls, workspace: Optional[Dict[str, Any]]) -> "ElevenLabsService":
        return cls((workspace or {}).get("elevenlabs_api_key"))

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = {"xi-api-key": self.api_key}
        headers.update(kwargs.pop("headers", {}))
        try:
            response = requests.request(method, f"{API_URL}{path}", headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            logger.error(f"ElevenLabs request failed: {str(e)}")
            raise HTTPException(status_code=502, detail=f"ElevenLabs API error: {str(e)}")
        if not response.ok:
            logger.error(f"ElevenLabs API error: {response.status_code} {response.text}")
            raise HTTPException(status_code=502, detail=f"ElevenLabs API error: {response.status_code} - {response.text}")
        return response

    def list_voices(self) -> List[Dict[str, Any]]:
        """Cloned voices first, then by name"""
        data = self._request("GET", "/voices").json()
        voices = [
            {
                "id": v["voice_id"],
                "name": v["name"],
                "category": v.get("category"),
                "labels": v.get("labels"),
                "preview_url": v.get("preview_url"),
                "is_cloned": v.get("category") == "cloned",
            }
            for v in data.get("voices") or []
        ]
        voices.sort(key=lambda v: (not v["is_cloned"], v["name"]))
        logger.info(f"Fetched {len(voices)} voices")
        return voices

    def text_to_speech(self, voice_id: str, text: str) -> bytes:
        response = self._request(
            "POST",
            f"/text-to-speech/{voice_id}",
            headers={"Accept": "audio/mpeg"},
            json={"text": text, "model_id": TTS_MODEL},
        )
        return response.content

    def create_agent(self, agent: Dict[str, Any], knowledge_base: Optional[List[Dict[str, Any]]] = None) -> str:
        data = self._request(
            "POST",
            "/convai/agents/create",
            json={"name": agent["name"], "conversation_config": conversation_config(agent, knowledge_base)},
        ).json()
        logger.info(f"Created ElevenLabs agent {data.get('agent_id')} for {agent['name']}")
        return data["agent_id"]

    def update_agent(self, elevenlabs_agent_id: str, agent: Dict[str, Any],
                     knowledge_base: Optional[List[Dict[str, Any]]] = None) -> None:
        self._request(
            "PATCH",
            f"/convai/agents/{elevenlabs_agent_id}",
            json={"name": agent["name"], "conversation_config": conversation_config(agent, knowledge_base)},
        )
        logger.info(f"Updated ElevenLabs agent {elevenlabs_agent_id}")

    def delete_agent(self, elevenlabs_agent_id: str) -> None:
        self._request("DELETE", f"/convai/agents/{elevenlabs_agent_id}")

    def conversation_token(self, elevenlabs_agent_id: str) -> Dict[str, Any]:
        if not elevenlabs_agent_id:
            raise HTTPException(status_code=400, detail="Agent ID is required")
        return self._request("GET", "/convai/conversation/token", params={"agent_id": elevenlabs_agent_id}).json()

    def create_text_document(self, name: str, text: str) -> Dict[str, Any]:
        data = self._request(
            "POST",
            "/convai/knowledge-base/documents/text",
            json={"name": name, "text": text or ""},
        ).json()
        logger.info(f"Created knowledge document {data.get('id')} ({name})")
        return data

    def delete_document(self, document_id: str) -> None:
        self._request("DELETE", f"/convai/knowledge-base/documents/{document_id}")
        logger.info(f"Deleted knowledge document {document_id}")

    def sync_knowledge_base(self, elevenlabs_agent_id: str, documents: List[Dict[str, Any]]) -> int:
        """Replaces the agent's knowledge base with the given documents"""
        if not elevenlabs_agent_id:
            raise HTTPException(status_code=400, detail="ElevenLabs agent ID is required")
        knowledge_base = [
            {"type": d.get("type") or "text", "id": d["id"], "name": d.get("name")}
            for d in documents
        ]
        self._request(
            "PATCH",
            f"/convai/agents/{elevenlabs_agent_id}",
            json={"conversation_config": {"agent": {"prompt": {"knowledge_base": knowledge_base}}}},
        )
        logger.info(f"Synced {len(knowledge_base)} knowledge documents to agent {elevenlabs_agent_id}")
        return len(knowledge_base)
