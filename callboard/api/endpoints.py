from fastapi import BackgroundTasks, Body, Depends, File, Form, HTTPException, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse
from pydantic import ValidationError
from typing import Any, Dict, Optional
import logging
from callboard.api.dependencies import get_db, get_storage
from callboard.api.models import (
    AcceptInvitationRequest,
    AgentConfigChatRequest,
    AgentCreate,
    AgentFolderCreate,
    AgentFolderUpdate,
    AgentUpdate,
    BatchCallRequest,
    CalendarIntegrationCreate,
    CalendarIntegrationUpdate,
    EmailNotificationCreate,
    EmailNotificationUpdate,
    ExtractionFieldCreate,
    ExtractionFieldUpdate,
    InviteRequest,
    KnowledgeBaseCreate,
    KnowledgeBaseUpdate,
    KnowledgeItemCreate,
    KnowledgeItemUpdate,
    MarkAllReadRequest,
    OutboundCallRequest,
    PhoneNumberAction,
    PromptGenerationRequest,
    RoleUpdate,
    ShareCallRequest,
    SlackIntegrationCreate,
    SlackIntegrationUpdate,
    SpeechPreviewRequest,
    SpreadsheetIntegrationCreate,
    SpreadsheetIntegrationUpdate,
    SummaryRequest,
    WebhookCreate,
    WebhookUpdate,
    WorkspaceSettingsUpdate,
    changes,
)
from callboard.core.database import Database
from callboard.core.twilio_handler import TwilioHandler, empty_twiml
from callboard.services.agent_service import AgentService
from callboard.services.conversation_service import ConversationService
from callboard.services.elevenlabs_service import ElevenLabsService
from callboard.services.email_service import EmailService
from callboard.services.google_oauth_service import GoogleOAuthService, callback_page
from callboard.services.integration_service import IntegrationKind, IntegrationService
from callboard.services.knowledge_service import KnowledgeService
from callboard.services.openai_service import OpenAIService
from callboard.services.outbound_service import OutboundService
from callboard.services.phone_number_service import PhoneNumberService
from callboard.services.share_service import ShareService
from callboard.services.slack_service import SlackService
from callboard.services.workspace_service import WorkspaceService

logger = logging.getLogger(__name__)


def twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


def health_check():
    return {"status": "healthy", "service": "callboard"}


# dashboard & agents

def dashboard_stats(workspace_id: str, db: Database = Depends(get_db)):
    return AgentService(db).dashboard_stats(workspace_id)


def list_agents(workspace_id: str, db: Database = Depends(get_db)):
    return AgentService(db).list_agents(workspace_id)


def create_agent(workspace_id: str, agent: AgentCreate, db: Database = Depends(get_db)):
    return AgentService(db).create_agent(workspace_id, changes(agent))


def get_agent(agent_id: str, db: Database = Depends(get_db)):
    return AgentService(db).get_agent(agent_id)


def update_agent(agent_id: str, agent: AgentUpdate, db: Database = Depends(get_db)):
    return AgentService(db).update_agent(agent_id, changes(agent))


def delete_agent(agent_id: str, db: Database = Depends(get_db)):
    AgentService(db).delete_agent(agent_id)
    return {"success": True}


def sync_agent(agent_id: str, db: Database = Depends(get_db)):
    return AgentService(db).sync_agent(agent_id)


def publish_agent(agent_id: str, db: Database = Depends(get_db)):
    return AgentService(db).publish_agent(agent_id)


def conversation_token(agent_id: str, db: Database = Depends(get_db)):
    return AgentService(db).conversation_token(agent_id)


def list_extraction_fields(agent_id: str, db: Database = Depends(get_db)):
    return AgentService(db).list_extraction_fields(agent_id)


def add_extraction_field(agent_id: str, field: ExtractionFieldCreate, db: Database = Depends(get_db)):
    return AgentService(db).add_extraction_field(agent_id, field.model_dump())


def update_extraction_field(field_id: str, field: ExtractionFieldUpdate, db: Database = Depends(get_db)):
    return AgentService(db).update_extraction_field(field_id, changes(field))


def delete_extraction_field(field_id: str, db: Database = Depends(get_db)):
    AgentService(db).delete_extraction_field(field_id)
    return {"success": True}


# voices

def list_voices(workspace_id: str, db: Database = Depends(get_db)):
    return {"voices": ElevenLabsService.for_workspace(db.get("workspaces", workspace_id)).list_voices()}


def preview_voice(workspace_id: str, preview: SpeechPreviewRequest, db: Database = Depends(get_db)):
    audio = ElevenLabsService.for_workspace(db.get("workspaces", workspace_id)).text_to_speech(
        preview.voice_id, preview.text
    )
    return Response(content=audio, media_type="audio/mpeg")


# conversations

def list_conversations(
    workspace_id: str,
    q: Optional[str] = None,
    date: str = "all",
    status: str = "all",
    grouped: bool = False,
    db: Database = Depends(get_db),
):
    return ConversationService(db).list_conversations(workspace_id, q, date, status, grouped)


def get_conversation(conversation_id: str, db: Database = Depends(get_db)):
    return ConversationService(db).get_conversation(conversation_id)


def conversation_share_text(conversation_id: str, db: Database = Depends(get_db)):
    return ConversationService(db).share_text(conversation_id)


def mark_conversation_read(conversation_id: str, db: Database = Depends(get_db)):
    ConversationService(db).mark_as_read(conversation_id)
    return {"success": True}


def mark_all_conversations_read(request: MarkAllReadRequest, db: Database = Depends(get_db)):
    ConversationService(db).mark_all_as_read(request.workspace_id, request.agent_id)
    return {"success": True}


async def save_conversation(
    background_tasks: BackgroundTasks,
    agentId: str = Form(...),
    phoneNumber: str = Form(None),
    transcript: str = Form(None),
    durationSeconds: int = Form(0),
    outcome: str = Form(None),
    status: str = Form("completed"),
    audio: UploadFile = File(None),
    db: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    """Store a finished browser call, then run the post-call integrations"""
    audio_bytes = await audio.read() if audio else None
    service = ConversationService(db, storage)
    conversation = service.save_conversation(
        agentId, phoneNumber, transcript, durationSeconds, outcome, status,
        audio_bytes, audio.content_type if audio else None,
    )
    background_tasks.add_task(service.run_post_call_tasks, conversation)
    return {"success": True, "conversation": conversation}


def generate_summary(request: SummaryRequest, db: Database = Depends(get_db)):
    return openai_service(db).generate_summary(request.conversationId)


# outbound calls

def initiate_outbound_call(request: OutboundCallRequest, db: Database = Depends(get_db)):
    return OutboundService(db).initiate_call(
        request.workspaceId, request.agentId, request.toNumber, request.scheduledAt, request.metadata
    )


def batch_outbound_calls(request: BatchCallRequest, db: Database = Depends(get_db)):
    return OutboundService(db).batch_call(request.workspaceId, request.agentId, request.phoneNumbers)


def list_outbound_calls(workspace_id: str, agent_id: Optional[str] = None, grouped: bool = False,
                        db: Database = Depends(get_db)):
    service = OutboundService(db)
    if grouped:
        return service.grouped_calls(workspace_id)
    return service.list_calls(workspace_id, agent_id)


def cancel_outbound_call(call_id: str, db: Database = Depends(get_db)):
    return OutboundService(db).cancel_call(call_id)


def mark_outbound_call_read(call_id: str, db: Database = Depends(get_db)):
    OutboundService(db).mark_as_read(call_id)
    return {"success": True}


def mark_all_outbound_calls_read(request: MarkAllReadRequest, db: Database = Depends(get_db)):
    OutboundService(db).mark_all_as_read(request.workspace_id, request.agent_id)
    return {"success": True}


def process_scheduled_calls(db: Database = Depends(get_db)):
    return OutboundService(db).process_scheduled_calls()


def share_outbound_call(request: ShareCallRequest, db: Database = Depends(get_db)):
    return ShareService(db).share(
        request.callId, request.shareType, request.webhookUrl, request.recipientEmail, request.senderName
    )


def manage_phone_numbers(request: PhoneNumberAction, db: Database = Depends(get_db)):
    return PhoneNumberService(db).handle_action(
        request.action, request.workspaceId, request.phoneNumberSid, request.agentId, request.label
    )


# twilio webhooks

def handle_twilio_voice(
    agentId: Optional[str] = None,
    outboundCallId: Optional[str] = None,
    CallSid: str = Form(None),
    From: str = Form(None),
    db: Database = Depends(get_db),
):
    return twiml(TwilioHandler(db).handle_voice_call(agentId, outboundCallId, CallSid, From))


def handle_call_status(
    outboundCallId: Optional[str] = None,
    CallStatus: str = Form(None),
    CallSid: str = Form(None),
    CallDuration: str = Form(None),
    db: Database = Depends(get_db),
):
    if not outboundCallId:
        logger.error("Missing outboundCallId on call status webhook")
        return Response(content="Missing outboundCallId", status_code=400)
    try:
        TwilioHandler(db).handle_call_status(outboundCallId, CallStatus, CallSid, CallDuration)
    except Exception as e:
        logger.error(f"Error handling call status for {outboundCallId}: {str(e)}")
    return twiml(empty_twiml())


def handle_recording_status(
    outboundCallId: Optional[str] = None,
    RecordingStatus: str = Form(None),
    RecordingUrl: str = Form(None),
    RecordingSid: str = Form(None),
    RecordingDuration: str = Form(None),
    CallSid: str = Form(None),
    db: Database = Depends(get_db),
):
    try:
        TwilioHandler(db).handle_recording_status(
            RecordingStatus, RecordingUrl, RecordingSid, RecordingDuration, outboundCallId, CallSid
        )
    except Exception as e:
        logger.error(f"Error handling recording status: {str(e)}")
    return twiml(empty_twiml())


# notification tests

def test_slack_integration(integration_id: str, db: Database = Depends(get_db)):
    return SlackService(db).send_test(integration_id)


def test_email_notification(notification_id: str, db: Database = Depends(get_db)):
    return EmailService(db).send_test(notification_id)


# workspace & team

def get_workspace_settings(workspace_id: str, db: Database = Depends(get_db)):
    return WorkspaceService(db).get_settings(workspace_id)


def update_workspace_settings(workspace_id: str, update: WorkspaceSettingsUpdate, db: Database = Depends(get_db)):
    return WorkspaceService(db).update_settings(workspace_id, changes(update))


def list_members(workspace_id: str, db: Database = Depends(get_db)):
    return WorkspaceService(db).list_members(workspace_id)


def update_member_role(workspace_id: str, member_id: str, update: RoleUpdate, db: Database = Depends(get_db)):
    return WorkspaceService(db).update_member_role(workspace_id, member_id, update.role)


def remove_member(workspace_id: str, member_id: str, db: Database = Depends(get_db)):
    WorkspaceService(db).remove_member(workspace_id, member_id)
    return {"success": True}


def list_invitations(workspace_id: str, db: Database = Depends(get_db)):
    return WorkspaceService(db).list_pending_invitations(workspace_id)


def invite_member(workspace_id: str, invite: InviteRequest, db: Database = Depends(get_db)):
    service = WorkspaceService(db, EmailService(db))
    return service.invite(workspace_id, invite.email, invite.role, invite.invited_by)


def revoke_invitation(workspace_id: str, invitation_id: str, db: Database = Depends(get_db)):
    WorkspaceService(db).revoke_invitation(workspace_id, invitation_id)
    return {"success": True}


def accept_invitation(request: AcceptInvitationRequest, db: Database = Depends(get_db)):
    return WorkspaceService(db).accept_invitation(request.token, request.user_id)


# knowledge bases

def list_knowledge_bases(workspace_id: str, db: Database = Depends(get_db)):
    return KnowledgeService(db).list_bases(workspace_id)


def create_knowledge_base(workspace_id: str, base: KnowledgeBaseCreate, db: Database = Depends(get_db)):
    return KnowledgeService(db).create_base(workspace_id, changes(base))


def get_knowledge_base(base_id: str, db: Database = Depends(get_db)):
    return KnowledgeService(db).get_base(base_id)


def update_knowledge_base(base_id: str, base: KnowledgeBaseUpdate, db: Database = Depends(get_db)):
    return KnowledgeService(db).update_base(base_id, changes(base))


def delete_knowledge_base(base_id: str, db: Database = Depends(get_db)):
    KnowledgeService(db).delete_base(base_id)
    return {"success": True}


def list_knowledge_items(base_id: str, db: Database = Depends(get_db)):
    return KnowledgeService(db).list_items(base_id)


def create_knowledge_item(base_id: str, item: KnowledgeItemCreate, db: Database = Depends(get_db)):
    return KnowledgeService(db).create_item(base_id, item.model_dump())


def update_knowledge_item(item_id: str, item: KnowledgeItemUpdate, db: Database = Depends(get_db)):
    return KnowledgeService(db).update_item(item_id, changes(item))


def delete_knowledge_item(item_id: str, db: Database = Depends(get_db)):
    KnowledgeService(db).delete_item(item_id)
    return {"success": True}


def list_agent_knowledge_bases(agent_id: str, db: Database = Depends(get_db)):
    return KnowledgeService(db).agent_bases(agent_id)


def link_knowledge_base(agent_id: str, base_id: str, db: Database = Depends(get_db)):
    return KnowledgeService(db).link(agent_id, base_id)


def unlink_knowledge_base(agent_id: str, base_id: str, db: Database = Depends(get_db)):
    KnowledgeService(db).unlink(agent_id, base_id)
    return {"success": True}


# integrations

CREATE_MODELS = {
    IntegrationKind.slack: SlackIntegrationCreate,
    IntegrationKind.email: EmailNotificationCreate,
    IntegrationKind.spreadsheet: SpreadsheetIntegrationCreate,
    IntegrationKind.calendar: CalendarIntegrationCreate,
    IntegrationKind.webhook: WebhookCreate,
}

UPDATE_MODELS = {
    IntegrationKind.slack: SlackIntegrationUpdate,
    IntegrationKind.email: EmailNotificationUpdate,
    IntegrationKind.spreadsheet: SpreadsheetIntegrationUpdate,
    IntegrationKind.calendar: CalendarIntegrationUpdate,
    IntegrationKind.webhook: WebhookUpdate,
}


def validated(model, body: Dict[str, Any]):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


def list_integrations(workspace_id: str, kind: IntegrationKind, db: Database = Depends(get_db)):
    return IntegrationService(db, kind).list(workspace_id)


def create_integration(workspace_id: str, kind: IntegrationKind, body: Dict[str, Any] = Body(...),
                       db: Database = Depends(get_db)):
    values = validated(CREATE_MODELS[kind], body).model_dump()
    return IntegrationService(db, kind).create(workspace_id, values)


def get_integration(kind: IntegrationKind, integration_id: str, db: Database = Depends(get_db)):
    return IntegrationService(db, kind).get(integration_id)


def update_integration(kind: IntegrationKind, integration_id: str, body: Dict[str, Any] = Body(...),
                       db: Database = Depends(get_db)):
    values = changes(validated(UPDATE_MODELS[kind], body))
    return IntegrationService(db, kind).update(integration_id, values)


def delete_integration(kind: IntegrationKind, integration_id: str, db: Database = Depends(get_db)):
    IntegrationService(db, kind).delete(integration_id)
    return {"success": True}


def list_webhook_logs(webhook_id: str, db: Database = Depends(get_db)):
    return IntegrationService(db, IntegrationKind.webhook).webhook_logs(webhook_id)


# google oauth

def google_auth_url(kind: str, integration_id: str, db: Database = Depends(get_db)):
    return GoogleOAuthService(db).auth_url(kind, integration_id)


def google_oauth_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None,
                          db: Database = Depends(get_db)):
    if error:
        logger.error(f"Google OAuth denied: {error}")
        return HTMLResponse(callback_page(f"認証エラー: {error}"))
    if not code or not state:
        return HTMLResponse(callback_page("認証パラメータが不足しています"), status_code=400)
    return HTMLResponse(GoogleOAuthService(db).handle_callback(code, state))


def refresh_google_token(kind: str, integration_id: str, db: Database = Depends(get_db)):
    return GoogleOAuthService(db).refresh(kind, integration_id)


def revoke_google_token(kind: str, integration_id: str, db: Database = Depends(get_db)):
    return GoogleOAuthService(db).revoke(kind, integration_id)


def list_google_spreadsheets(integration_id: str, db: Database = Depends(get_db)):
    return GoogleOAuthService(db).list_spreadsheets(integration_id)


def list_google_sheets(integration_id: str, spreadsheet_id: str, db: Database = Depends(get_db)):
    return GoogleOAuthService(db).list_sheets(integration_id, spreadsheet_id)


# agent folders

def list_agent_folders(workspace_id: str, db: Database = Depends(get_db)):
    return AgentService(db).list_folders(workspace_id)


def create_agent_folder(workspace_id: str, folder: AgentFolderCreate, db: Database = Depends(get_db)):
    return AgentService(db).create_folder(workspace_id, folder.model_dump())


def update_agent_folder(folder_id: str, folder: AgentFolderUpdate, db: Database = Depends(get_db)):
    return AgentService(db).update_folder(folder_id, changes(folder))


def delete_agent_folder(folder_id: str, db: Database = Depends(get_db)):
    AgentService(db).delete_folder(folder_id)
    return {"success": True}


def sync_agent_knowledge(agent_id: str, db: Database = Depends(get_db)):
    AgentService(db).get_agent(agent_id)
    return KnowledgeService(db).sync_agent(agent_id)


# agent drafting

def openai_service(db: Database) -> OpenAIService:
    try:
        return OpenAIService(db)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))


def generate_agent_prompt(request: PromptGenerationRequest, db: Database = Depends(get_db)):
    return openai_service(db).generate_agent_prompt(request.agentName, request.description, request.language)


def agent_config_chat(request: AgentConfigChatRequest, db: Database = Depends(get_db)):
    return openai_service(db).agent_config_chat([m.model_dump() for m in request.messages])
