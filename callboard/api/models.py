from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Optional


class AgentCreate(BaseModel):
    name: str
    description: Optional[str] = None
    voice_id: Optional[str] = None
    system_prompt: Optional[str] = None
    icon_name: Optional[str] = None
    icon_color: Optional[str] = None
    custom_icon_url: Optional[str] = None
    folder_id: Optional[str] = None
    max_call_duration: Optional[int] = None


class AgentUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    voice_id: Optional[str] = None
    system_prompt: Optional[str] = None
    icon_name: Optional[str] = None
    icon_color: Optional[str] = None
    custom_icon_url: Optional[str] = None
    folder_id: Optional[str] = None
    max_call_duration: Optional[int] = None


class ExtractionFieldCreate(BaseModel):
    field_name: str
    field_key: str
    field_type: str = "text"
    description: Optional[str] = None
    is_required: bool = False


class ExtractionFieldUpdate(BaseModel):
    field_name: Optional[str] = None
    field_type: Optional[str] = None
    description: Optional[str] = None
    is_required: Optional[bool] = None


class SpeechPreviewRequest(BaseModel):
    voice_id: str
    text: str


class MarkAllReadRequest(BaseModel):
    workspace_id: str
    agent_id: Optional[str] = None


class SummaryRequest(BaseModel):
    conversationId: str


class OutboundCallRequest(BaseModel):
    workspaceId: Optional[str] = None
    agentId: Optional[str] = None
    toNumber: Optional[str] = None
    scheduledAt: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class BatchCallRequest(BaseModel):
    workspaceId: str
    agentId: str
    phoneNumbers: str


class PhoneNumberAction(BaseModel):
    action: str
    workspaceId: str
    phoneNumberSid: Optional[str] = None
    agentId: Optional[str] = None
    label: Optional[str] = None


class ShareCallRequest(BaseModel):
    callId: str
    shareType: str
    webhookUrl: Optional[str] = None
    recipientEmail: Optional[str] = None
    senderName: Optional[str] = None


class WorkspaceSettingsUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class RoleUpdate(BaseModel):
    role: str


class InviteRequest(BaseModel):
    email: str
    role: str = "member"
    invited_by: str


class AcceptInvitationRequest(BaseModel):
    token: str
    user_id: str


class KnowledgeBaseCreate(BaseModel):
    name: str
    description: Optional[str] = None


class KnowledgeBaseUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class KnowledgeItemCreate(BaseModel):
    title: str
    content: Optional[str] = None
    item_type: str = "text"
    source_url: Optional[str] = None


class KnowledgeItemUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    item_type: Optional[str] = None
    source_url: Optional[str] = None


class SlackIntegrationCreate(BaseModel):
    name: str
    webhook_url: str
    channel_name: Optional[str] = None
    is_active: bool = True
    notify_on_call_start: bool = False
    notify_on_call_end: bool = True
    notify_on_call_failed: bool = True
    include_transcript: bool = False
    include_summary: bool = True
    message_template: Optional[str] = None
    agent_ids: Optional[List[str]] = None


class SlackIntegrationUpdate(BaseModel):
    name: Optional[str] = None
    webhook_url: Optional[str] = None
    channel_name: Optional[str] = None
    is_active: Optional[bool] = None
    notify_on_call_start: Optional[bool] = None
    notify_on_call_end: Optional[bool] = None
    notify_on_call_failed: Optional[bool] = None
    include_transcript: Optional[bool] = None
    include_summary: Optional[bool] = None
    message_template: Optional[str] = None
    agent_ids: Optional[List[str]] = None


class EmailNotificationCreate(BaseModel):
    name: str
    recipient_email: str
    is_active: bool = True
    notify_on_call_start: bool = False
    notify_on_call_end: bool = True
    notify_on_call_failed: bool = True
    include_transcript: bool = False
    include_summary: bool = True
    message_template: Optional[str] = None
    agent_ids: Optional[List[str]] = None


class EmailNotificationUpdate(BaseModel):
    name: Optional[str] = None
    recipient_email: Optional[str] = None
    is_active: Optional[bool] = None
    notify_on_call_start: Optional[bool] = None
    notify_on_call_end: Optional[bool] = None
    notify_on_call_failed: Optional[bool] = None
    include_transcript: Optional[bool] = None
    include_summary: Optional[bool] = None
    message_template: Optional[str] = None
    agent_ids: Optional[List[str]] = None


class SpreadsheetIntegrationCreate(BaseModel):
    name: str
    spreadsheet_id: Optional[str] = None
    sheet_name: str = "Sheet1"
    is_active: bool = True
    export_on_call_end: bool = True
    export_on_call_failed: bool = False
    include_transcript: bool = False
    include_summary: bool = True
    include_extracted_data: bool = True
    agent_ids: Optional[List[str]] = None


class SpreadsheetIntegrationUpdate(BaseModel):
    name: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    sheet_name: Optional[str] = None
    is_active: Optional[bool] = None
    export_on_call_end: Optional[bool] = None
    export_on_call_failed: Optional[bool] = None
    include_transcript: Optional[bool] = None
    include_summary: Optional[bool] = None
    include_extracted_data: Optional[bool] = None
    agent_ids: Optional[List[str]] = None


class CalendarIntegrationCreate(BaseModel):
    name: str
    calendar_id: str = "primary"
    agent_id: Optional[str] = None
    is_active: bool = True
    create_on_call_end: bool = True
    create_on_call_failed: bool = False
    event_duration_minutes: int = 30
    event_title_template: str = "【通話】{{agent_name}} - {{phone_number}}"
    event_description_template: str = (
        "📅 日時: {{datetime}}\n📞 電話番号: {{phone_number}}\n⏱️ 通話時間: {{duration}}\n"
        "📊 結果: {{outcome}}\n\n{{summary}}"
    )


class CalendarIntegrationUpdate(BaseModel):
    name: Optional[str] = None
    calendar_id: Optional[str] = None
    agent_id: Optional[str] = None
    is_active: Optional[bool] = None
    create_on_call_end: Optional[bool] = None
    create_on_call_failed: Optional[bool] = None
    event_duration_minutes: Optional[int] = None
    event_title_template: Optional[str] = None
    event_description_template: Optional[str] = None


class WebhookCreate(BaseModel):
    name: str
    url: str
    headers: Dict[str, str] = {}
    event_type: str = "conversation_ended"
    is_active: bool = True


class WebhookUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    event_type: Optional[str] = None
    is_active: Optional[bool] = None


class AgentFolderCreate(BaseModel):
    name: str
    color: str = "#6366f1"


class AgentFolderUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class PromptGenerationRequest(BaseModel):
    agentName: Optional[str] = None
    description: Optional[str] = None
    language: str = "ja"


class ChatMessage(BaseModel):
    role: str
    content: str


class AgentConfigChatRequest(BaseModel):
    messages: List[ChatMessage]


def changes(model: BaseModel) -> Dict[str, Any]:
    """Fields the client actually sent"""
    return model.model_dump(exclude_unset=True)
