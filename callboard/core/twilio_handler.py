from twilio.twiml.voice_response import VoiceResponse, Connect, Start
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode
import logging
from callboard.config.settings import settings
from callboard.core.database import Database, utc_now

logger = logging.getLogger(__name__)

# Twilio CallStatus -> (status, result, terminal)
CALL_STATUS_MAP = {
    "queued": ("ringing", None, False),
    "ringing": ("ringing", None, False),
    "in-progress": ("in_progress", None, False),
    "completed": ("completed", "answered", True),
    "busy": ("completed", "busy", True),
    "no-answer": ("completed", "no_answer", True),
    "canceled": ("canceled", None, True),
    "failed": ("failed", "failed", True),
}

def map_call_status(call_status: str) -> Tuple[str, Optional[str], bool]:
    """Translate a Twilio call status into the outbound call status"""
    return CALL_STATUS_MAP.get(call_status, (call_status, None, False))

def empty_twiml() -> str:
    return str(VoiceResponse())

def error_twiml(message: str) -> str:
    response = VoiceResponse()
    response.say(message, language="ja-JP")
    response.hangup()
    return str(response)

def callback_url(path: str, **params) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    url = f"{settings.api_base_url}{path}"
    return f"{url}?{query}" if query else url

def media_stream_url() -> str:
    if settings.MEDIA_STREAM_URL:
        return settings.MEDIA_STREAM_URL
    base = settings.PUBLIC_BASE_URL.replace("https://", "wss://").replace("http://", "ws://")
    return f"{base.rstrip('/')}/media-stream"


class TwilioHandler:
    """Processes Twilio voice, call status and recording webhooks"""

    def __init__(self, db: Database):
        self.db = db

    def handle_voice_call(self, agent_id: Optional[str], outbound_call_id: Optional[str] = None,
                          call_sid: Optional[str] = None, from_number: Optional[str] = None) -> str:
        """TwiML that bridges the call to the agent's media stream"""
        try:
            if not agent_id:
                logger.error("Missing agentId parameter")
                return error_twiml("エラーが発生しました。エージェントIDが指定されていません。")

            agent = self.db.get("agents", agent_id)
            if not agent:
                logger.error(f"Agent not found: {agent_id}")
                return error_twiml("エラーが発生しました。エージェントが見つかりません。")

            if not agent.get("elevenlabs_agent_id"):
                logger.error(f"Agent {agent_id} has no ElevenLabs agent ID")
                return error_twiml("エラーが発生しました。このエージェントはまだElevenLabsに同期されていません。")

            if outbound_call_id:
                recording_callback = callback_url("/twilio/recording-status", outboundCallId=outbound_call_id)
            else:
                recording_callback = callback_url("/twilio/recording-status", callSid=call_sid or "", agentId=agent_id)

            response = VoiceResponse()
            start = Start()
            start.add_child(
                "Recording",
                recording_status_callback=recording_callback,
                recording_status_callback_event="completed",
                recording_status_callback_method="POST",
            )
            response.append(start)

            connect = Connect()
            stream = connect.stream(url=media_stream_url())
            stream.parameter(name="agentId", value=agent_id)
            stream.parameter(name="outboundCallId", value=outbound_call_id or "")
            stream.parameter(name="callSid", value=call_sid or "")
            stream.parameter(name="fromNumber", value=from_number or "")
            response.append(connect)

            logger.info(f"Connecting call {call_sid} to agent {agent['name']}")
            return str(response)

        except Exception as e:
            logger.error(f"Critical error in voice call handler: {str(e)}")
            return error_twiml("アプリケーションエラーが発生しました。しばらくしてからもう一度お試しください。")

    def handle_call_status(self, outbound_call_id: str, call_status: str, call_sid: Optional[str],
                           call_duration: Optional[str] = None) -> Dict:
        status, result, terminal = map_call_status(call_status)
        update = {"status": status, "call_sid": call_sid}
        if result:
            update["result"] = result
        if terminal:
            update["ended_at"] = utc_now()
        if call_duration:
            update["duration_seconds"] = int(call_duration)

        logger.info(f"Outbound call {outbound_call_id}: {call_status} -> {status}")
        self.db.update("outbound_calls", outbound_call_id, update)
        return update

    def handle_recording_status(self, recording_status: Optional[str], recording_url: Optional[str],
                                recording_sid: Optional[str] = None, recording_duration: Optional[str] = None,
                                outbound_call_id: Optional[str] = None, call_sid: Optional[str] = None) -> Optional[str]:
        """Attach a finished recording to its call. Returns the playable URL."""
        if recording_status != "completed" or not recording_url:
            return None

        audio_url = f"{recording_url}.mp3"

        if outbound_call_id:
            call = self.db.get("outbound_calls", outbound_call_id)
        elif call_sid:
            matches = self.db.find("outbound_calls", call_sid=call_sid)
            call = matches[0] if matches else None
        else:
            call = None

        if not call:
            logger.warning(f"No outbound call for recording {recording_sid}")
            return audio_url

        if call.get("conversation_id"):
            self.db.update("conversations", call["conversation_id"], {"audio_url": audio_url})
            logger.info(f"Stored recording on conversation {call['conversation_id']}")
        else:
            metadata = dict(call.get("metadata") or {})
            metadata.update({
                "recording_url": audio_url,
                "recording_sid": recording_sid,
                "recording_duration": recording_duration,
            })
            self.db.update("outbound_calls", call["id"], {"metadata": metadata})
            logger.info(f"Stored recording on outbound call {call['id']}")

        return audio_url
