import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_SEPARATORS = re.compile(r"[\n,;]")
PHONE_JUNK = re.compile(r"[^\d+]")
EXTRACTED_PLACEHOLDER = re.compile(r"\{\{\s*extracted\.\w+\s*\}\}")

def format_duration(seconds: Optional[int]) -> str:
    """Clock style duration, e.g. 125 -> '2:05'"""
    if not seconds:
        return "0:00"
    seconds = int(seconds)
    return f"{seconds // 60}:{seconds % 60:02d}"

def format_duration_japanese(seconds: Optional[int]) -> str:
    """125 -> '2分5秒'"""
    seconds = int(seconds or 0)
    return f"{seconds // 60}分{seconds % 60}秒"

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the database into an aware datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace("Z", "+00:00")
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email))

def normalize_email(email: str) -> str:
    return email.strip().lower()

def clean_phone_number(raw: str) -> str:
    return PHONE_JUNK.sub("", raw or "")

def parse_phone_numbers(text: str) -> List[str]:
    """Split a pasted list of numbers and drop anything too short to dial"""
    numbers = []
    for chunk in PHONE_SEPARATORS.split(text or ""):
        cleaned = clean_phone_number(chunk.strip())
        if len(cleaned) >= 10:
            numbers.append(cleaned)
    return numbers

def replace_template_variables(template: str, variables: Dict[str, Any],
                               extracted: Optional[Dict[str, Any]] = None) -> str:
    """Fill {{ name }} placeholders.

    When ``extracted`` is given, {{ extracted.key }} placeholders are filled
    from it and any that remain unknown are cleared.
    """
    result = template or ""
    for key, value in variables.items():
        pattern = re.compile(r"\{\{\s*" + re.escape(key) + r"\s*\}\}")
        result = pattern.sub(lambda _m: "" if value is None else str(value), result)

    if extracted is not None:
        for key, value in extracted.items():
            pattern = re.compile(r"\{\{\s*extracted\." + re.escape(key) + r"\s*\}\}")
            result = pattern.sub(lambda _m: str(value or ""), result)
        result = EXTRACTED_PLACEHOLDER.sub("", result)

    return result

def display_name(full_name: Optional[str], email: Optional[str]) -> str:
    if full_name:
        return full_name
    if email:
        return email.split("@")[0]
    return "Unknown"

def initials(name: str) -> str:
    return (name or "")[:2].upper()

def transcript_messages(transcript: Any) -> List[Dict[str, Any]]:
    """Stored transcripts are lists; anything else counts as empty"""
    return transcript if isinstance(transcript, list) else []

def message_text(message: Dict[str, Any]) -> str:
    return message.get("text") or message.get("message") or message.get("content") or ""
