from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from fastapi import HTTPException
from openai import OpenAI, APIStatusError, RateLimitError
import json
import logging
import re
from callboard.config.settings import settings
from callboard.core.database import Database
from callboard.utils.helpers import message_text, transcript_messages

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """あなたは通話内容を分析し、要約と重要ポイントを抽出するアシスタントです。
extract_summary 関数で回答してください。
{extraction_fields}
日本語で回答してください。通話内容に該当する情報がない場合は、その項目はnullにしてください。"""

FIELD_TYPES = {"number": "number", "boolean": "boolean"}

PROMPT_WRITER = {
    "ja": """あなたは、AIエージェントのシステムプロンプトを作成する専門家です。
ユーザーが提供する概要説明から、電話応対用のAI音声エージェントに最適なシステムプロンプトを生成してください。

以下の要素を含めてください：
1. エージェントの役割と目的を明確に定義
2. 応対時のトーンと話し方（丁寧、フレンドリー、プロフェッショナルなど）
3. 対応すべき主な質問やシナリオ
4. 回答できない場合の対処法
5. 会話を円滑に進めるためのガイドライン

日本語で、自然な会話ができるプロンプトを生成してください。
プロンプトのみを出力し、説明や前置きは不要です。""",
    "en": """You are an expert at creating system prompts for AI agents.
Generate an optimal system prompt for a voice AI agent based on the user's description.

Include:
1. Clear role and purpose definition
2. Tone and speaking style guidelines
3. Main scenarios to handle
4. Fallback behavior for unknown questions
5. Guidelines for smooth conversation flow

Output only the prompt, no explanations.""",
}

AGENT_DESIGNER = """あなたは音声AIエージェントの設計を支援するアシスタントです。
ユーザーとの会話を通じて、どのような音声AIエージェントを作りたいのかを理解し、最適な設定を提案します。

【あなたの役割】
1. ユーザーの業種やビジネスについて質問する
2. エージェントの用途（予約受付、問い合わせ対応、案内など）を明確にする
3. 対応すべき主なシナリオを洗い出す
4. 適切なトーン（フォーマル/カジュアル）を決める
5. 必要な情報が揃ったら、エージェントの設定を提案する

【対話の進め方】
- 1つの質問につき1-2個の具体的な質問をする
- ユーザーが答えやすいように選択肢を提示する
- 専門用語を避け、分かりやすい言葉で説明する

【設定が決まったら】
必要な情報が十分に集まったら、以下のJSON形式で設定を提案してください：
```json
{
  "ready": true,
  "config": {
    "name": "エージェント名",
    "description": "エージェントの説明（1-2文）",
    "systemPrompt": "詳細なシステムプロンプト",
    "maxCallDuration": 10,
    "voiceSpeed": 1.0
  }
}
```

まだ情報が不足している場合は、追加の質問をしてください。
JSONは設定が完全に決まった場合のみ出力してください。"""

CONFIG_BLOCK = re.compile(r"```json\s*(\{.*?\})\s*```", re.DOTALL)


def parse_agent_config(reply: str) -> Optional[Dict[str, Any]]:
    """The proposed config from a ```json block with "ready": true, if any"""
    match = CONFIG_BLOCK.search(reply or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        logger.warning("Agent config block is not valid JSON")
        return None
    if not isinstance(data, dict) or not data.get("ready"):
        return None
    return data.get("config")


def format_transcript(transcript: List[Dict[str, Any]]) -> str:
    return "\n".join(
        f"{'ユーザー' if entry.get('role') == 'user' else 'AI'}: {message_text(entry)}"
        for entry in transcript
    )


def extraction_prompt(fields: List[Dict[str, Any]]) -> str:
    if not fields:
        return ""
    lines = []
    for f in fields:
        line = f"- {f['field_name']} (キー: {f['field_key']}, タイプ: {f.get('field_type') or 'text'})"
        if f.get("description"):
            line += f": {f['description']}"
        if f.get("is_required"):
            line += " [必須]"
        lines.append(line)
    return "\n以下の情報も通話内容から抽出してください：\n" + "\n".join(lines) + "\n"


def summary_tool(fields: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Function schema that forces a structured summary"""
    extracted_properties = {
        f["field_key"]: {
            "type": FIELD_TYPES.get(f.get("field_type"), "string"),
            "description": f["field_name"] + (f" - {f['description']}" if f.get("description") else ""),
        }
        for f in fields
    }
    return {
        "type": "function",
        "function": {
            "name": "extract_summary",
            "description": "通話内容から要約と重要ポイント、カスタム情報を抽出する",
            "parameters": {
                "type": "object",
                "properties": {
                    "summary": {"type": "string", "description": "通話内容の簡潔な要約（2-3文）"},
                    "key_points": {"type": "array", "items": {"type": "string"}, "description": "重要なポイントのリスト"},
                    "sentiment": {"type": "string", "enum": ["positive", "neutral", "negative"], "description": "通話全体の感情分析"},
                    "action_items": {"type": "array", "items": {"type": "string"}, "description": "フォローアップが必要なアクションアイテム"},
                    "extracted_data": {"type": "object", "properties": extracted_properties, "description": "カスタム抽出データ"},
                },
                "required": ["summary", "key_points", "sentiment"],
            },
        },
    }


class OpenAIService:
    """Call summaries and agent drafting with the chat completions API"""

    def __init__(self, db: Database, client: Optional[OpenAI] = None):
        self.db = db
        self.model = settings.OPENAI_MODEL
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise ValueError("OPENAI_API_KEY not set in environment variables")
            client = OpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client

    def _chat(self, **kwargs):
        try:
            return self.client.chat.completions.create(model=self.model, **kwargs)
        except RateLimitError:
            logger.error("Rate limited by the AI API")
            raise HTTPException(status_code=429, detail="Rate limited")
        except APIStatusError as e:
            logger.error(f"AI API error: {e.status_code} - {str(e)}")
            if e.status_code == 402:
                raise HTTPException(status_code=402, detail="Payment required")
            raise HTTPException(status_code=500, detail=f"AI API error: {e.status_code}")

    def analyze(self, agent: Dict[str, Any], conversation: Dict[str, Any],
                transcript: List[Dict[str, Any]], fields: List[Dict[str, Any]]) -> Dict[str, Any]:
        user_prompt = (
            f"以下は「{agent.get('name') or 'AIエージェント'}」（{agent.get('description') or ''}）との通話記録です。"
            "この通話を分析してください。\n\n"
            f"--- 通話記録 ---\n{format_transcript(transcript)}\n--- 通話記録終了 ---\n\n"
            f"通話時間: {conversation.get('duration_seconds') or 0}秒\n"
            f"ステータス: {conversation.get('status')}"
        )
        response = self._chat(
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT.format(extraction_fields=extraction_prompt(fields))},
                {"role": "user", "content": user_prompt},
            ],
            tools=[summary_tool(fields)],
            tool_choice={"type": "function", "function": {"name": "extract_summary"}},
        )

        result = {"summary": "", "key_points": [], "sentiment": "neutral", "action_items": [], "extracted_data": {}}
        tool_calls = response.choices[0].message.tool_calls if response.choices else None
        if tool_calls:
            try:
                result.update(json.loads(tool_calls[0].function.arguments))
            except (TypeError, ValueError) as e:
                logger.error(f"Failed to parse tool call arguments: {str(e)}")
        return result

    def generate_summary(self, conversation_id: str) -> Dict[str, Any]:
        conversation = self.db.get("conversations", conversation_id)
        if not conversation:
            raise HTTPException(status_code=404, detail="Conversation not found")

        transcript = transcript_messages(conversation.get("transcript"))
        if not transcript:
            return {"success": True, "summary": None}

        agent = self.db.get("agents", conversation["agent_id"]) or {}
        fields = self.db.find("agent_extraction_fields", agent_id=conversation["agent_id"])
        data = self.analyze(agent, conversation, transcript, fields)
        extracted = data.get("extracted_data") or {}

        metadata = dict(conversation.get("metadata") or {})
        metadata.update({
            "sentiment": data.get("sentiment"),
            "action_items": data.get("action_items") or [],
            "extracted_data": extracted,
            "summarized_at": datetime.now(timezone.utc).isoformat(),
        })
        self.db.update("conversations", conversation_id, {
            "summary": data.get("summary"),
            "key_points": data.get("key_points") or [],
            "metadata": metadata,
        })

        rows = [
            {"conversation_id": conversation_id, "field_key": key,
             "field_value": str(value).lower() if isinstance(value, bool) else str(value)}
            for key, value in extracted.items()
            if value is not None and value != ""
        ]
        if rows:
            self.db.table("conversation_extracted_data").upsert(rows, on_conflict="conversation_id,field_key").execute()
            logger.info(f"Saved {len(rows)} extracted fields for conversation {conversation_id}")

        logger.info(f"Summary generated for conversation {conversation_id}")
        return {
            "success": True,
            "summary": data.get("summary"),
            "key_points": data.get("key_points"),
            "extracted_data": extracted,
        }

    def generate_agent_prompt(self, agent_name: Optional[str], description: Optional[str],
                              language: str = "ja") -> Dict[str, str]:
        if not description or not description.strip():
            raise HTTPException(status_code=400, detail="説明文を入力してください")
        if language == "ja":
            user_message = f"エージェント名: {agent_name or '未定'}\n概要: {description}"
        else:
            user_message = f"Agent name: {agent_name or 'Unnamed'}\nDescription: {description}"

        response = self._chat(
            messages=[
                {"role": "system", "content": PROMPT_WRITER.get(language, PROMPT_WRITER["en"])},
                {"role": "user", "content": user_message},
            ],
            temperature=0.7,
            max_tokens=1500,
        )
        prompt = response.choices[0].message.content if response.choices else None
        if not prompt:
            raise HTTPException(status_code=500, detail="Prompt generation returned no content")
        return {"prompt": prompt.strip()}

    def agent_config_chat(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """One turn of the agent design interview; config is set once the model proposes one"""
        if not messages:
            raise HTTPException(status_code=400, detail="Messages are required")
        response = self._chat(messages=[{"role": "system", "content": AGENT_DESIGNER}, *messages])
        reply = (response.choices[0].message.content if response.choices else None) or ""
        return {"reply": reply, "config": parse_agent_config(reply)}
