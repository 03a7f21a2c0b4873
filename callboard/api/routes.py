from fastapi import APIRouter
from .endpoints import (
    accept_invitation,
    add_extraction_field,
    agent_config_chat,
    batch_outbound_calls,
    cancel_outbound_call,
    conversation_share_text,
    conversation_token,
    create_agent,
    create_agent_folder,
    create_integration,
    create_knowledge_base,
    create_knowledge_item,
    dashboard_stats,
    delete_agent,
    delete_agent_folder,
    delete_integration,
    delete_extraction_field,
    delete_knowledge_base,
    delete_knowledge_item,
    generate_agent_prompt,
    generate_summary,
    get_agent,
    get_conversation,
    get_integration,
    get_knowledge_base,
    get_workspace_settings,
    google_auth_url,
    google_oauth_callback,
    handle_call_status,
    handle_recording_status,
    handle_twilio_voice,
    health_check,
    initiate_outbound_call,
    invite_member,
    link_knowledge_base,
    list_agent_folders,
    list_agent_knowledge_bases,
    list_agents,
    list_conversations,
    list_extraction_fields,
    list_google_sheets,
    list_google_spreadsheets,
    list_integrations,
    list_invitations,
    list_knowledge_bases,
    list_knowledge_items,
    list_members,
    list_outbound_calls,
    list_voices,
    list_webhook_logs,
    manage_phone_numbers,
    mark_all_conversations_read,
    mark_all_outbound_calls_read,
    mark_conversation_read,
    mark_outbound_call_read,
    preview_voice,
    process_scheduled_calls,
    publish_agent,
    refresh_google_token,
    remove_member,
    revoke_google_token,
    revoke_invitation,
    save_conversation,
    share_outbound_call,
    sync_agent,
    sync_agent_knowledge,
    test_email_notification,
    test_slack_integration,
    unlink_knowledge_base,
    update_agent,
    update_agent_folder,
    update_extraction_field,
    update_integration,
    update_knowledge_base,
    update_knowledge_item,
    update_member_role,
    update_workspace_settings,
)

router = APIRouter()

router.add_api_route("/health", health_check, methods=["GET"])

# agents
router.add_api_route("/workspaces/{workspace_id}/dashboard", dashboard_stats, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/agents", list_agents, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/agents", create_agent, methods=["POST"])
router.add_api_route("/agents/{agent_id}", get_agent, methods=["GET"])
router.add_api_route("/agents/{agent_id}", update_agent, methods=["PATCH"])
router.add_api_route("/agents/{agent_id}", delete_agent, methods=["DELETE"])
router.add_api_route("/agents/{agent_id}/sync", sync_agent, methods=["POST"])
router.add_api_route("/agents/{agent_id}/publish", publish_agent, methods=["POST"])
router.add_api_route("/agents/{agent_id}/conversation-token", conversation_token, methods=["GET"])
router.add_api_route("/agents/{agent_id}/extraction-fields", list_extraction_fields, methods=["GET"])
router.add_api_route("/agents/{agent_id}/extraction-fields", add_extraction_field, methods=["POST"])
router.add_api_route("/extraction-fields/{field_id}", update_extraction_field, methods=["PATCH"])
router.add_api_route("/extraction-fields/{field_id}", delete_extraction_field, methods=["DELETE"])
router.add_api_route("/workspaces/{workspace_id}/voices", list_voices, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/voices/preview", preview_voice, methods=["POST"])
router.add_api_route("/workspaces/{workspace_id}/agent-folders", list_agent_folders, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/agent-folders", create_agent_folder, methods=["POST"])
router.add_api_route("/agent-folders/{folder_id}", update_agent_folder, methods=["PATCH"])
router.add_api_route("/agent-folders/{folder_id}", delete_agent_folder, methods=["DELETE"])
router.add_api_route("/agents/generate-prompt", generate_agent_prompt, methods=["POST"])
router.add_api_route("/agents/generate-config", agent_config_chat, methods=["POST"])

# conversations
router.add_api_route("/workspaces/{workspace_id}/conversations", list_conversations, methods=["GET"])
router.add_api_route("/conversations", save_conversation, methods=["POST"])
router.add_api_route("/conversations/read-all", mark_all_conversations_read, methods=["POST"])
router.add_api_route("/conversations/summary", generate_summary, methods=["POST"])
router.add_api_route("/conversations/{conversation_id}", get_conversation, methods=["GET"])
router.add_api_route("/conversations/{conversation_id}/share-text", conversation_share_text, methods=["GET"])
router.add_api_route("/conversations/{conversation_id}/read", mark_conversation_read, methods=["POST"])

# outbound calls
router.add_api_route("/outbound-calls", initiate_outbound_call, methods=["POST"])
router.add_api_route("/outbound-calls/batch", batch_outbound_calls, methods=["POST"])
router.add_api_route("/outbound-calls/share", share_outbound_call, methods=["POST"])
router.add_api_route("/outbound-calls/process-scheduled", process_scheduled_calls, methods=["POST"])
router.add_api_route("/outbound-calls/read-all", mark_all_outbound_calls_read, methods=["POST"])
router.add_api_route("/outbound-calls/{call_id}/cancel", cancel_outbound_call, methods=["POST"])
router.add_api_route("/outbound-calls/{call_id}/read", mark_outbound_call_read, methods=["POST"])
router.add_api_route("/workspaces/{workspace_id}/outbound-calls", list_outbound_calls, methods=["GET"])
router.add_api_route("/phone-numbers", manage_phone_numbers, methods=["POST"])

# twilio webhooks
router.add_api_route("/twilio/voice", handle_twilio_voice, methods=["POST"])
router.add_api_route("/twilio/call-status", handle_call_status, methods=["POST"])
router.add_api_route("/twilio/recording-status", handle_recording_status, methods=["POST"])

# integrations
router.add_api_route("/integrations/slack/{integration_id}/test", test_slack_integration, methods=["POST"])
router.add_api_route("/integrations/email/{notification_id}/test", test_email_notification, methods=["POST"])
router.add_api_route("/integrations/google/callback", google_oauth_callback, methods=["GET"])
router.add_api_route("/integrations/google/{kind}/{integration_id}/auth-url", google_auth_url, methods=["GET"])
router.add_api_route("/integrations/google/{kind}/{integration_id}/refresh", refresh_google_token, methods=["POST"])
router.add_api_route("/integrations/google/{kind}/{integration_id}/revoke", revoke_google_token, methods=["POST"])
router.add_api_route("/integrations/google/spreadsheet/{integration_id}/spreadsheets", list_google_spreadsheets, methods=["GET"])
router.add_api_route(
    "/integrations/google/spreadsheet/{integration_id}/spreadsheets/{spreadsheet_id}/sheets",
    list_google_sheets,
    methods=["GET"],
)
router.add_api_route("/integrations/webhooks/{webhook_id}/logs", list_webhook_logs, methods=["GET"])
router.add_api_route("/integrations/{kind}/{integration_id}", get_integration, methods=["GET"])
router.add_api_route("/integrations/{kind}/{integration_id}", update_integration, methods=["PATCH"])
router.add_api_route("/integrations/{kind}/{integration_id}", delete_integration, methods=["DELETE"])

# workspace & team
router.add_api_route("/workspaces/{workspace_id}/settings", get_workspace_settings, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/settings", update_workspace_settings, methods=["PATCH"])
router.add_api_route("/workspaces/{workspace_id}/members", list_members, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/members/{member_id}", update_member_role, methods=["PATCH"])
router.add_api_route("/workspaces/{workspace_id}/members/{member_id}", remove_member, methods=["DELETE"])
router.add_api_route("/workspaces/{workspace_id}/invitations", list_invitations, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/invitations", invite_member, methods=["POST"])
router.add_api_route("/workspaces/{workspace_id}/invitations/{invitation_id}", revoke_invitation, methods=["DELETE"])
router.add_api_route("/invitations/accept", accept_invitation, methods=["POST"])

# knowledge bases
router.add_api_route("/workspaces/{workspace_id}/knowledge-bases", list_knowledge_bases, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/knowledge-bases", create_knowledge_base, methods=["POST"])
router.add_api_route("/knowledge-bases/{base_id}", get_knowledge_base, methods=["GET"])
router.add_api_route("/knowledge-bases/{base_id}", update_knowledge_base, methods=["PATCH"])
router.add_api_route("/knowledge-bases/{base_id}", delete_knowledge_base, methods=["DELETE"])
router.add_api_route("/knowledge-bases/{base_id}/items", list_knowledge_items, methods=["GET"])
router.add_api_route("/knowledge-bases/{base_id}/items", create_knowledge_item, methods=["POST"])
router.add_api_route("/knowledge-items/{item_id}", update_knowledge_item, methods=["PATCH"])
router.add_api_route("/knowledge-items/{item_id}", delete_knowledge_item, methods=["DELETE"])
router.add_api_route("/agents/{agent_id}/knowledge-bases", list_agent_knowledge_bases, methods=["GET"])
router.add_api_route("/agents/{agent_id}/knowledge-bases/{base_id}", link_knowledge_base, methods=["PUT"])
router.add_api_route("/agents/{agent_id}/knowledge-bases/{base_id}", unlink_knowledge_base, methods=["DELETE"])
router.add_api_route("/agents/{agent_id}/knowledge-bases/sync", sync_agent_knowledge, methods=["POST"])

# workspace integration lists; registered last so the fixed workspace paths above match first
router.add_api_route("/workspaces/{workspace_id}/{kind}", list_integrations, methods=["GET"])
router.add_api_route("/workspaces/{workspace_id}/{kind}", create_integration, methods=["POST"])
