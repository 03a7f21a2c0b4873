from fastapi import HTTPException
from datetime import datetime, timezone
from html import escape
from typing import Dict, List, Optional
import logging
import requests
from callboard.config.settings import settings
from callboard.core.database import Database
from callboard.services.call_context import (
    active_integrations, covers_agent, extracted_values, load_call, wants_event,
)
from callboard.utils.helpers import (
    format_duration_japanese, message_text, replace_template_variables, transcript_messages,
)

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 10
TRANSCRIPT_LIMIT = 20

EVENT_TITLES = {
    "call_start": "📞 通話が開始されました",
    "call_end": "✅ 通話が終了しました",
    "call_failed": "❌ 通話が失敗しました",
}
SUBJECT_LABELS = {
    "call_start": "通話開始",
    "call_end": "通話終了",
    "call_failed": "通話失敗",
}
ROLE_LABELS = {"admin": "管理者", "member": "メンバー", "owner": "オーナー"}

STYLE = """
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }
.container { max-width: 600px; margin: 0 auto; padding: 20px; }
.header { background: linear-gradient(135deg, #1a1a1a 0%, #333 100%); color: white; padding: 24px; border-radius: 12px 12px 0 0; }
.content { background: #f9f9f9; padding: 24px; border-radius: 0 0 12px 12px; }
.info-row { display: flex; justify-content: space-between; padding: 12px 0; border-bottom: 1px solid #eee; }
.label { color: #666; font-size: 14px; }
.value { font-weight: 500; }
.summary { background: white; padding: 16px; border-radius: 8px; margin-top: 16px; border-left: 4px solid #333; }
.custom-message { background: white; padding: 16px; border-radius: 8px; margin-top: 16px; white-space: pre-wrap; }
.extracted { background: #f0f0ff; padding: 16px; border-radius: 8px; margin-top: 16px; border-left: 4px solid #8b5cf6; }
.transcript { background: white; padding: 16px; border-radius: 8px; margin-top: 16px; }
.footer { text-align: center; padding: 16px; color: #999; font-size: 12px; }
"""


def info_row(label: str, value) -> str:
    return f'<div class="info-row"><span class="label">{label}</span><span class="value">{escape(str(value))}</span></div>'


def wrap_document(title: str, subtitle: Optional[str], body: str) -> str:
    subtitle_html = f'<p style="margin: 8px 0 0; opacity: 0.8;">{escape(subtitle)}</p>' if subtitle else ""
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8">'
        f"<style>{STYLE}</style></head><body><div class=\"container\">"
        f'<div class="header"><h1 style="margin: 0; font-size: 20px;">{title}</h1>{subtitle_html}</div>'
        f'<div class="content">{body}</div>'
        '<div class="footer"><p>このメールはMusa Voice AIから自動送信されています</p></div>'
        "</div></body></html>"
    )


class EmailService:
    """Sends mail through the Resend HTTP API"""

    def __init__(self, db: Optional[Database] = None, api_key: Optional[str] = None):
        self.db = db
        self.api_key = api_key or settings.RESEND_API_KEY

    def send_email(self, to: List[str], subject: str, html: str, sender: Optional[str] = None) -> Dict:
        if not self.api_key:
            raise HTTPException(status_code=500, detail="RESEND_API_KEY is not configured")
        response = requests.post(
            RESEND_URL,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={"from": sender or settings.EMAIL_FROM, "to": to, "subject": subject, "html": html},
            timeout=REQUEST_TIMEOUT,
        )
        if not response.ok:
            logger.error(f"Resend API error: {response.status_code} {response.text}")
            raise HTTPException(status_code=500, detail=f"Email API error: {response.text}")
        return response.json()

    def build_notification_html(self, notification: Dict, event_type: str, conversation: Dict,
                                agent: Dict, extracted: Dict[str, str]) -> str:
        duration = conversation.get("duration_seconds")
        formatted_duration = format_duration_japanese(duration) if duration else None
        variables = {
            "event_type": event_type,
            "agent_name": agent.get("name") or "エージェント",
            "phone_number": conversation.get("phone_number") or "不明",
            "duration_seconds": duration or 0,
            "duration_formatted": formatted_duration or "-",
            "outcome": conversation.get("outcome") or "完了",
            "summary": conversation.get("summary") or "",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "conversation_id": conversation["id"],
        }

        body = ""
        if notification.get("message_template"):
            custom = replace_template_variables(notification["message_template"], variables, extracted)
            body += f'<div class="custom-message">{escape(custom).replace(chr(10), "<br>")}</div>'
        else:
            if conversation.get("phone_number"):
                body += info_row("電話番号", conversation["phone_number"])
            if formatted_duration:
                body += info_row("通話時間", formatted_duration)
            if conversation.get("outcome"):
                body += info_row("結果", conversation["outcome"])
            if notification.get("include_summary") and conversation.get("summary"):
                body += (
                    '<div class="summary"><h3 style="margin: 0 0 8px; font-size: 14px; color: #666;">📝 サマリー</h3>'
                    f'<p style="margin: 0;">{escape(conversation["summary"])}</p></div>'
                )
            if extracted:
                rows = "".join(info_row(escape(k), v or "-") for k, v in extracted.items())
                body += (
                    '<div class="extracted"><h3 style="margin: 0 0 12px; font-size: 14px; color: #6b21a8;">📊 抽出データ</h3>'
                    f"{rows}</div>"
                )

        messages = transcript_messages(conversation.get("transcript"))
        if notification.get("include_transcript") and messages:
            body += '<div class="transcript"><h3 style="margin: 0 0 12px; font-size: 14px; color: #666;">💬 トランスクリプト</h3>'
            for message in messages[:TRANSCRIPT_LIMIT]:
                role = "AI" if message.get("role") == "agent" else "ユーザー"
                body += f'<div class="message"><div class="role">{role}</div><div>{escape(message_text(message))}</div></div>'
            if len(messages) > TRANSCRIPT_LIMIT:
                body += f'<p style="color: #999; font-size: 12px;">...他 {len(messages) - TRANSCRIPT_LIMIT} 件のメッセージ</p>'
            body += "</div>"

        return wrap_document(EVENT_TITLES[event_type], f"エージェント: {agent.get('name')}" if agent.get("name") else None, body)

    def notify(self, conversation_id: str, agent_id: str, event_type: str) -> List[Dict]:
        conversation, agent = load_call(self.db, conversation_id, agent_id)
        notifications = [
            n for n in active_integrations(self.db, "email_notifications", agent["workspace_id"])
            if wants_event(n, event_type) and covers_agent(n, agent_id)
        ]
        if not notifications:
            logger.info(f"No active email notifications for event type: {event_type}")
            return []

        extracted = extracted_values(self.db, conversation_id)
        subject = f"[Musa] {SUBJECT_LABELS[event_type]}: {agent.get('name') or 'エージェント'}"
        results = []
        for notification in notifications:
            html = self.build_notification_html(notification, event_type, conversation, agent, extracted)
            try:
                sent = self.send_email([notification["recipient_email"]], subject, html)
                results.append({"notification_id": notification["id"], "success": True, "email_id": sent.get("id") or "sent"})
            except (HTTPException, requests.RequestException) as e:
                error = e.detail if isinstance(e, HTTPException) else str(e)
                logger.error(f"Failed to send email to {notification['recipient_email']}: {error}")
                results.append({"notification_id": notification["id"], "success": False, "error": error})
        return results

    def send_test(self, notification_id: str) -> Dict:
        notification = self.db.get("email_notifications", notification_id)
        if not notification:
            raise HTTPException(status_code=404, detail="Email notification not found")
        html = wrap_document("🔔 テスト通知", None, "<p>Musa Voice AI からのテスト通知です。</p>")
        sent = self.send_email([notification["recipient_email"]], "[Musa] テスト通知", html)
        return {"notification_id": notification_id, "success": True, "email_id": sent.get("id") or "sent"}

    def send_invitation(self, invitee_email: str, token: str, inviter_name: str,
                        workspace_name: str, role: str) -> Dict:
        invite_url = f"{settings.APP_URL.rstrip('/')}/invite/accept?token={token}"
        role_label = ROLE_LABELS.get(role, role)
        body = (
            f"<p><strong>{escape(inviter_name)}</strong>さんが、あなたを<strong>{escape(workspace_name)}</strong>ワークスペースに招待しました。</p>"
            + info_row("招待された役割", role_label)
            + f'<p><a href="{invite_url}">招待を承認する</a></p>'
            "<p>このリンクは7日間有効です。</p>"
            f'<p style="word-break: break-all; color: #666;">{invite_url}</p>'
        )
        html = wrap_document("ワークスペースへの招待", None, body)
        subject = f"{inviter_name}さんから{workspace_name}への招待が届いています"
        return self.send_email([invitee_email], subject, html)
