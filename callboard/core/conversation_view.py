"""
Conversation list logic for the console: display records, filters,
grouping by agent and the share text of a single call.

Every function here is pure. Times are rendered in the configured
timezone; callers pass ``now`` so results stay deterministic.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo
from pydantic import BaseModel, Field
from callboard.config.settings import settings
from callboard.utils.helpers import format_duration, parse_timestamp, transcript_messages

UNKNOWN_PHONE = "不明"
UNKNOWN_AGENT = "不明なエージェント"
DEFAULT_ICON_NAME = "Bot"
DEFAULT_ICON_COLOR = "#6366f1"
WEEKDAYS = ["月曜日", "火曜日", "水曜日", "木曜日", "金曜日", "土曜日", "日曜日"]
SHORT_WEEKDAYS = ["月", "火", "水", "木", "金", "土", "日"]
DATE_FILTERS = ("all", "today", "week", "month")
RULE = "━━━━━━━━━━━━━━━"


class TranscriptMessage(BaseModel):
    role: str
    text: str = ""


class ExtractedDataItem(BaseModel):
    field_key: str
    field_value: Optional[str] = None
    field_name: Optional[str] = None


class ConversationDisplay(BaseModel):
    id: str
    phone: str
    agent: str
    agent_id: Optional[str] = None
    duration: str
    duration_seconds: int = 0
    status: str
    outcome: str
    date: str
    raw_date: datetime
    transcript: List[TranscriptMessage] = Field(default_factory=list)
    audio_url: Optional[str] = None
    summary: Optional[str] = None
    key_points: List[str] = Field(default_factory=list)
    sentiment: Optional[str] = None
    action_items: List[str] = Field(default_factory=list)
    icon_name: str = DEFAULT_ICON_NAME
    icon_color: str = DEFAULT_ICON_COLOR
    is_read: bool = False
    extracted_data: List[ExtractedDataItem] = Field(default_factory=list)


class AgentConversations(BaseModel):
    agent_id: str
    agent_name: str
    conversations: List[ConversationDisplay]
    last_conversation: ConversationDisplay
    total_conversations: int
    unread_count: int
    icon_name: str = DEFAULT_ICON_NAME
    icon_color: str = DEFAULT_ICON_COLOR
    custom_icon_url: Optional[str] = None
    phone_number: Optional[str] = None


class OutboundAgentInfo(BaseModel):
    agent_id: str
    agent_name: str
    calls: List[Dict[str, Any]]
    last_call: Dict[str, Any]
    total_calls: int
    unread_count: int
    icon_name: str = DEFAULT_ICON_NAME
    icon_color: str = DEFAULT_ICON_COLOR
    custom_icon_url: Optional[str] = None


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def _local(value: datetime, tz=None) -> datetime:
    return value.astimezone(tz or local_tz())


def is_inbound(conversation: Dict[str, Any]) -> bool:
    metadata = conversation.get("metadata") or {}
    return not (isinstance(metadata, dict) and metadata.get("call_type") == "outbound")


def to_display(conversation: Dict[str, Any], agent: Optional[Dict[str, Any]] = None,
               extracted: Optional[List[Dict[str, Any]]] = None, tz=None) -> ConversationDisplay:
    """Build the console record for a stored conversation row"""
    agent = agent or conversation.get("agent") or {}
    metadata = conversation.get("metadata") if isinstance(conversation.get("metadata"), dict) else {}
    started = (parse_timestamp(conversation.get("started_at"))
               or parse_timestamp(conversation.get("created_at"))
               or datetime.now(timezone.utc))
    local_started = _local(started, tz)
    key_points = conversation.get("key_points")
    action_items = metadata.get("action_items")

    return ConversationDisplay(
        id=conversation["id"],
        phone=conversation.get("phone_number") or UNKNOWN_PHONE,
        agent=agent.get("name") or UNKNOWN_AGENT,
        agent_id=conversation.get("agent_id"),
        duration=format_duration(conversation.get("duration_seconds")),
        duration_seconds=conversation.get("duration_seconds") or 0,
        status=conversation.get("status") or "completed",
        outcome=conversation.get("outcome") or "-",
        date=local_started.strftime("%Y-%m-%d %H:%M"),
        raw_date=started,
        transcript=[
            TranscriptMessage(role=m.get("role", "user"), text=m.get("text") or "")
            for m in transcript_messages(conversation.get("transcript"))
            if isinstance(m, dict)
        ],
        audio_url=conversation.get("audio_url"),
        summary=conversation.get("summary"),
        key_points=key_points if isinstance(key_points, list) else [],
        sentiment=metadata.get("sentiment"),
        action_items=action_items if isinstance(action_items, list) else [],
        icon_name=agent.get("icon_name") or DEFAULT_ICON_NAME,
        icon_color=agent.get("icon_color") or DEFAULT_ICON_COLOR,
        is_read=bool(conversation.get("is_read")),
        extracted_data=[ExtractedDataItem(**row) for row in (extracted or conversation.get("extracted_data") or [])],
    )


def search(conversations: Iterable[ConversationDisplay], query: Optional[str]) -> List[ConversationDisplay]:
    if not query:
        return list(conversations)
    lowered = query.lower()
    return [c for c in conversations if query in c.phone or lowered in c.agent.lower()]


def _minus_one_month(value: datetime) -> datetime:
    year, month = (value.year, value.month - 1) if value.month > 1 else (value.year - 1, 12)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def date_bucket_start(bucket: str, now: datetime, tz=None) -> Optional[datetime]:
    """Earliest start time for a date filter, or None for 'all'"""
    if bucket not in DATE_FILTERS:
        raise ValueError(f"Unknown date filter: {bucket}")
    if bucket == "all":
        return None
    today = _local(now, tz).replace(hour=0, minute=0, second=0, microsecond=0)
    if bucket == "today":
        return today
    if bucket == "week":
        return today - timedelta(days=7)
    return _minus_one_month(today)


def filter_conversations(conversations: Iterable[ConversationDisplay], date_filter: str = "all",
                         status_filter: str = "all", now: Optional[datetime] = None,
                         tz=None) -> List[ConversationDisplay]:
    now = now or datetime.now(tz or local_tz())
    start = date_bucket_start(date_filter, now, tz)
    return [
        c for c in conversations
        if (start is None or c.raw_date >= start)
        and (status_filter == "all" or c.status == status_filter)
    ]


def unread_count(conversations: Iterable[Any]) -> int:
    count = 0
    for item in conversations:
        is_read = item.get("is_read") if isinstance(item, dict) else item.is_read
        if not is_read:
            count += 1
    return count


def group_by_agent(conversations: Iterable[ConversationDisplay],
                   agents: Optional[Dict[str, Dict[str, Any]]] = None,
                   phone_numbers: Optional[List[Dict[str, Any]]] = None) -> List[AgentConversations]:
    """One group per agent, newest activity first"""
    agents = agents or {}
    numbers_by_agent = {}
    for number in phone_numbers or []:
        if number.get("agent_id") and number["agent_id"] not in numbers_by_agent:
            numbers_by_agent[number["agent_id"]] = number.get("phone_number")

    buckets: Dict[str, List[ConversationDisplay]] = {}
    for conversation in conversations:
        buckets.setdefault(conversation.agent_id or "", []).append(conversation)

    groups = []
    for agent_id, items in buckets.items():
        items = sorted(items, key=lambda c: c.raw_date, reverse=True)
        latest = items[0]
        agent = agents.get(agent_id, {})
        groups.append(AgentConversations(
            agent_id=agent_id,
            agent_name=agent.get("name") or latest.agent,
            conversations=items,
            last_conversation=latest,
            total_conversations=len(items),
            unread_count=unread_count(items),
            icon_name=agent.get("icon_name") or latest.icon_name,
            icon_color=agent.get("icon_color") or latest.icon_color,
            custom_icon_url=agent.get("custom_icon_url"),
            phone_number=numbers_by_agent.get(agent_id),
        ))

    groups.sort(key=lambda g: g.last_conversation.raw_date, reverse=True)
    return groups


def group_outbound_by_agent(calls: Iterable[Dict[str, Any]],
                            agents: Optional[Dict[str, Dict[str, Any]]] = None) -> List[OutboundAgentInfo]:
    agents = agents or {}
    buckets: Dict[str, List[Dict[str, Any]]] = {}
    for call in calls:
        buckets.setdefault(call.get("agent_id") or "", []).append(call)

    def created(call):
        return parse_timestamp(call.get("created_at"))

    groups = []
    for agent_id, items in buckets.items():
        items = sorted(items, key=created, reverse=True)
        agent = agents.get(agent_id) or items[0].get("agent") or {}
        groups.append(OutboundAgentInfo(
            agent_id=agent_id,
            agent_name=agent.get("name") or UNKNOWN_AGENT,
            calls=items,
            last_call=items[0],
            total_calls=len(items),
            unread_count=unread_count(items),
            icon_name=agent.get("icon_name") or DEFAULT_ICON_NAME,
            icon_color=agent.get("icon_color") or DEFAULT_ICON_COLOR,
            custom_icon_url=agent.get("custom_icon_url"),
        ))

    groups.sort(key=lambda g: created(g.last_call), reverse=True)
    return groups


def format_relative_date(date: datetime, now: Optional[datetime] = None, tz=None) -> str:
    """Compact list timestamp: time today, '昨日', weekday this week, else M/D"""
    tz = tz or local_tz()
    now = _local(now or datetime.now(tz), tz)
    local = _local(date, tz)
    today = now.date()
    day = local.date()

    if day == today:
        return local.strftime("%H:%M")
    if day == today - timedelta(days=1):
        return "昨日"
    # weeks start on Sunday
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    if week_start <= day < week_start + timedelta(days=7):
        return WEEKDAYS[local.weekday()]
    return f"{local.month}/{local.day}"


def day_label(date: datetime, now: Optional[datetime] = None, tz=None) -> str:
    tz = tz or local_tz()
    today = _local(now or datetime.now(tz), tz).date()
    local = _local(date, tz)
    if local.date() == today:
        return "今日"
    if local.date() == today - timedelta(days=1):
        return "昨日"
    return f"{local.month}月{local.day}日（{SHORT_WEEKDAYS[local.weekday()]}）"


def day_separators(conversations: List[ConversationDisplay], now: Optional[datetime] = None,
                   tz=None) -> List[Optional[str]]:
    """Label for each record that opens a new calendar day, None otherwise"""
    tz = tz or local_tz()
    labels = []
    previous = None
    for conversation in conversations:
        day = _local(conversation.raw_date, tz).date()
        labels.append(day_label(conversation.raw_date, now, tz) if day != previous else None)
        previous = day
    return labels


def build_share_text(conversation: ConversationDisplay, agent_name: str, tz=None) -> str:
    local = _local(conversation.raw_date, tz)
    call_date = f"{local.year}年{local.month}月{local.day}日 {local.strftime('%H:%M')}"

    text = "📞 受電記録\n"
    text += f"{RULE}\n"
    text += f"エージェント: {agent_name}\n"
    text += f"発信者: {conversation.phone}\n"
    text += f"日時: {call_date}\n"
    text += f"通話時間: {conversation.duration}\n"
    text += f"{RULE}\n\n"

    if conversation.summary:
        text += f"📝 要約\n{conversation.summary}\n\n"

    if conversation.key_points:
        text += "💡 重要ポイント\n"
        for i, point in enumerate(conversation.key_points, start=1):
            text += f"  {i}. {point}\n"
        text += "\n"

    if conversation.transcript:
        text += "💬 会話ログ\n"
        for message in conversation.transcript:
            role = "🤖 AI" if message.role == "agent" else "👤 お客様"
            text += f"{role}: {message.text}\n"

    return text


def share_title(agent_name: str) -> str:
    return f"受電記録 - {agent_name}"
