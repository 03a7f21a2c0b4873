from fastapi import HTTPException
from datetime import datetime, timezone
from html import escape
from typing import Any, Dict, List, Optional
import logging
import requests
from callboard.core.conversation_view import local_tz
from callboard.core.database import Database
from callboard.services.email_service import STYLE, EmailService
from callboard.services.slack_service import SlackService
from callboard.utils.helpers import format_duration_japanese, is_valid_email, parse_timestamp, transcript_messages

logger = logging.getLogger(__name__)

DEFAULT_SENDER = "Musa AI"
TRANSCRIPT_LIMIT = 2000

# share-only rules layered over the notification stylesheet
SHARE_STYLE = STYLE + """
.header { background: linear-gradient(135deg, #22c55e 0%, #16a34a 100%); }
.info-grid { display: grid; grid-template-columns: 1fr 1fr; gap: 12px; margin-bottom: 16px; }
.info-item { background: white; padding: 12px; border-radius: 8px; }
.info-label { color: #666; font-size: 12px; margin-bottom: 4px; }
.info-value { font-weight: 600; font-size: 14px; }
.section { background: white; padding: 16px; border-radius: 8px; margin-top: 16px; }
.section-title { font-size: 14px; font-weight: 600; color: #333; margin-bottom: 8px; }
.summary { border-left: 3px solid #22c55e; padding: 0 0 0 12px; margin-top: 0; }
.key-points { list-style: none; padding: 0; margin: 0; }
.key-points li { padding: 6px 0; border-bottom: 1px solid #eee; }
.extracted { background: none; border-left: 3px solid #8b5cf6; padding: 0 0 0 12px; margin-top: 0; }
.extracted-item { display: flex; justify-content: space-between; padding: 6px 0; border-bottom: 1px solid #f0f0f0; }
.extracted-key { color: #6b21a8; font-family: monospace; font-size: 12px; }
.transcript { background: #f5f5f5; padding: 12px; margin-top: 0; font-size: 13px; }
.transcript-line { padding: 4px 0; }
.role-ai { color: #22c55e; font-weight: 500; }
.role-user { color: #3b82f6; font-weight: 500; }
"""


def format_call_date(value: datetime) -> str:
    local = value.astimezone(local_tz())
    return f"{local.year}年{local.month}月{local.day}日 {local.strftime('%H:%M')}"


def share_transcript(transcript) -> str:
    return "\n".join(
        f"{'🤖 AI' if m.get('role') == 'agent' else '👤 ユーザー'}: {m.get('text') or ''}"
        for m in transcript_messages(transcript)
    )


def truncate(text: str, limit: int = TRANSCRIPT_LIMIT) -> str:
    return text[:limit] + "...(省略)" if len(text) > limit else text


class ShareService:
    """Sends one outbound call record to Slack or by email"""

    def __init__(self, db: Database, slack: Optional[SlackService] = None, email: Optional[EmailService] = None):
        self.db = db
        self.slack = slack or SlackService(db)
        self.email = email or EmailService(db)

    def load(self, call_id: str) -> Dict[str, Any]:
        call = self.db.get("outbound_calls", call_id)
        if not call:
            raise HTTPException(status_code=404, detail="Call not found")
        agent = self.db.get("agents", call.get("agent_id")) if call.get("agent_id") else None
        conversation = self.db.get("conversations", call["conversation_id"]) if call.get("conversation_id") else None
        extracted = self.db.find("conversation_extracted_data", conversation_id=conversation["id"]) if conversation else []
        return {
            "call": call,
            "agent_name": (agent or {}).get("name") or "エージェント",
            "conversation": conversation or {},
            "extracted": extracted,
            "duration": format_duration_japanese(call.get("duration_seconds")),
            "date": format_call_date(parse_timestamp(call.get("created_at")) or datetime.now(timezone.utc)),
        }

    def slack_blocks(self, record: Dict[str, Any], sender_name: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        call, conversation = record["call"], record["conversation"]
        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": f"📞 通話記録 - {record['agent_name']}", "emoji": True}},
            {"type": "section", "fields": [
                {"type": "mrkdwn", "text": f"*発信先:*\n{call['to_number']}"},
                {"type": "mrkdwn", "text": f"*日時:*\n{record['date']}"},
                {"type": "mrkdwn", "text": f"*通話時間:*\n{record['duration']}"},
                {"type": "mrkdwn", "text": f"*ステータス:*\n{call.get('status')}"},
            ]},
        ]
        if conversation.get("summary"):
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*📝 要約:*\n{conversation['summary']}"}})
        key_points = conversation.get("key_points") or []
        if key_points:
            points = "\n".join(f"{i}. {p}" for i, p in enumerate(key_points, start=1))
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*💡 重要ポイント:*\n{points}"}})
        if record["extracted"]:
            rows = "\n".join(f"• {r['field_key']}: {r.get('field_value') or '-'}" for r in record["extracted"])
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*📊 抽出データ:*\n{rows}"}})
        transcript = share_transcript(conversation.get("transcript"))
        if transcript:
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*💬 会話ログ:*\n```{truncate(transcript)}```"}})

        shared_at = format_call_date(now or datetime.now(timezone.utc))
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"共有者: {sender_name} | {shared_at}"}]})
        return blocks

    def email_html(self, record: Dict[str, Any], sender_name: str) -> str:
        call, conversation = record["call"], record["conversation"]
        info = "".join(
            f'<div class="info-item"><div class="info-label">{label}</div><div class="info-value">{escape(str(value))}</div></div>'
            for label, value in (
                ("発信先", call["to_number"]),
                ("日時", record["date"]),
                ("通話時間", record["duration"]),
                ("ステータス", call.get("status")),
            )
        )
        body = f'<div class="info-grid">{info}</div>'
        if conversation.get("summary"):
            body += f'<div class="section"><div class="section-title">📝 要約</div><div class="summary">{escape(conversation["summary"])}</div></div>'
        if conversation.get("key_points"):
            points = "".join(f"<li>• {escape(p)}</li>" for p in conversation["key_points"])
            body += f'<div class="section"><div class="section-title">💡 重要ポイント</div><ul class="key-points">{points}</ul></div>'
        if record["extracted"]:
            rows = "".join(
                f'<div class="extracted-item"><span class="extracted-key">{escape(r["field_key"])}</span>'
                f'<span>{escape(r.get("field_value") or "-")}</span></div>'
                for r in record["extracted"]
            )
            body += f'<div class="section"><div class="section-title">📊 抽出データ</div><div class="extracted">{rows}</div></div>'
        messages = transcript_messages(conversation.get("transcript"))
        if messages:
            lines = "".join(
                f'<div class="transcript-line"><span class="{"role-ai" if m.get("role") == "agent" else "role-user"}">'
                f'{"🤖 AI" if m.get("role") == "agent" else "👤 ユーザー"}:</span> {escape(m.get("text") or "")}</div>'
                for m in messages
            )
            body += f'<div class="section"><div class="section-title">💬 会話ログ</div><div class="transcript">{lines}</div></div>'

        return (
            '<!DOCTYPE html><html><head><meta charset="utf-8">'
            f"<style>{SHARE_STYLE}</style></head><body><div class=\"container\">"
            '<div class="header"><h1 style="margin: 0; font-size: 20px;">📞 通話記録が共有されました</h1>'
            f'<p style="margin: 8px 0 0; opacity: 0.9;">エージェント: {escape(record["agent_name"])}</p></div>'
            f'<div class="content">{body}</div>'
            f'<div class="footer"><p>共有者: {escape(sender_name)}</p><p>このメールはMusa Voice AIから送信されました</p></div>'
            "</div></body></html>"
        )

    def share(self, call_id: str, share_type: str, webhook_url: Optional[str] = None,
              recipient_email: Optional[str] = None, sender_name: Optional[str] = None) -> Dict[str, Any]:
        sender_name = sender_name or DEFAULT_SENDER
        if share_type not in ("slack", "email"):
            raise HTTPException(status_code=400, detail="Invalid shareType")
        if share_type == "slack" and not webhook_url:
            raise HTTPException(status_code=400, detail="Missing webhookUrl for Slack share")
        if share_type == "email" and not is_valid_email(recipient_email):
            raise HTTPException(status_code=400, detail="Missing or invalid recipientEmail for email share")

        record = self.load(call_id)
        if share_type == "slack":
            try:
                self.slack.share_call(webhook_url, self.slack_blocks(record, sender_name), f"📞 通話記録 - {record['agent_name']}")
            except RuntimeError as e:
                logger.error(f"Failed to share call {call_id} to Slack: {str(e)}")
                raise HTTPException(status_code=500, detail=str(e))
            return {"success": True, "message": "Slackに送信しました"}

        subject = f"[共有] 通話記録 - {record['agent_name']} ({record['call']['to_number']})"
        try:
            self.email.send_email([recipient_email], subject, self.email_html(record, sender_name))
        except HTTPException as e:
            logger.error(f"Failed to share call {call_id} by email: {e.detail}")
            raise
        except requests.RequestException as e:
            logger.error(f"Failed to share call {call_id} by email: {str(e)}")
            raise HTTPException(status_code=502, detail=f"Email delivery failed: {str(e)}")
        return {"success": True, "message": "メールを送信しました"}
