from twilio.rest import Client
from fastapi import HTTPException
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]

class TwilioService:
    """Twilio REST calls made with a workspace's own credentials"""

    def __init__(self, account_sid: str, auth_token: str):
        if not account_sid or not auth_token:
            raise HTTPException(status_code=400, detail="Twilio credentials not configured")
        self.account_sid = account_sid
        self.client = Client(account_sid, auth_token)

    @classmethod
    def for_workspace(cls, workspace: Dict) -> "TwilioService":
        return cls(workspace.get("twilio_account_sid"), workspace.get("twilio_auth_token"))

    def make_call(self, to_number: str, from_number: str, url: str, status_callback: str,
                  recording_callback: Optional[str] = None) -> str:
        """Place an outbound call and return its SID"""
        params = {
            "to": to_number,
            "from_": from_number,
            "url": url,
            "status_callback": status_callback,
            "status_callback_event": STATUS_CALLBACK_EVENTS,
            "status_callback_method": "POST",
        }
        if recording_callback:
            params.update({
                "record": True,
                "recording_status_callback": recording_callback,
                "recording_status_callback_event": ["completed"],
                "recording_channels": "dual",
            })
        try:
            call = self.client.calls.create(**params)
            logger.info(f"Created call {call.sid} to {to_number}")
            return call.sid
        except Exception as e:
            logger.error(f"Twilio call to {to_number} failed: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Twilio API error: {str(e)}")

    def list_phone_numbers(self) -> List[Dict]:
        try:
            numbers = self.client.incoming_phone_numbers.list()
        except Exception as e:
            logger.error(f"Failed to list Twilio numbers: {str(e)}")
            raise HTTPException(status_code=400, detail=f"Twilio API error: {str(e)}")

        result = []
        for number in numbers:
            capabilities = number.capabilities or {}
            result.append({
                "sid": number.sid,
                "phone_number": number.phone_number,
                "friendly_name": number.friendly_name,
                "capabilities": {
                    "voice": bool(capabilities.get("voice")),
                    "sms": bool(capabilities.get("sms")),
                },
            })
        return result

    def set_voice_url(self, phone_number_sid: str, voice_url: str) -> None:
        """Route inbound calls on a number to the given webhook"""
        try:
            self.client.incoming_phone_numbers(phone_number_sid).update(
                voice_url=voice_url,
                voice_method="POST",
            )
        except Exception as e:
            logger.error(f"Failed to update voice URL for {phone_number_sid}: {str(e)}")
            raise HTTPException(status_code=400, detail=f"Twilio API error: {str(e)}")
