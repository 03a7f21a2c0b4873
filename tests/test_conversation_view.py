import pytest
from datetime import datetime
from zoneinfo import ZoneInfo
from callboard.core import conversation_view
from callboard.core.conversation_view import (
    build_share_text,
    date_bucket_start,
    day_separators,
    filter_conversations,
    format_relative_date,
    group_by_agent,
    group_outbound_by_agent,
    is_inbound,
    search,
    to_display,
)

TOKYO = ZoneInfo("Asia/Tokyo")
# Thursday
NOW = datetime(2024, 3, 7, 12, 0, tzinfo=TOKYO)

AGENTS = {
    "agent-1": {"id": "agent-1", "name": "受付エージェント", "icon_name": "Phone", "icon_color": "#ff0000"},
    "agent-2": {"id": "agent-2", "name": "Sales Bot"},
}


def conversation(id, agent_id="agent-1", started_at="2024-03-07T00:05:00+00:00", **fields):
    row = {
        "id": id,
        "agent_id": agent_id,
        "phone_number": "+819012345678",
        "status": "completed",
        "duration_seconds": 125,
        "started_at": started_at,
        "is_read": False,
    }
    row.update(fields)
    return row


def displays(*rows):
    return [to_display(row, AGENTS.get(row.get("agent_id")), tz=TOKYO) for row in rows]


def test_to_display_defaults():
    display = to_display({"id": "c1", "started_at": "2024-03-07T00:05:00+00:00", "transcript": "oops"}, tz=TOKYO)
    assert display.phone == "不明"
    assert display.agent == "不明なエージェント"
    assert display.duration == "0:00"
    assert display.outcome == "-"
    assert display.date == "2024-03-07 09:05"
    assert display.transcript == []
    assert display.icon_name == "Bot"
    assert display.icon_color == "#6366f1"
    assert display.is_read is False


def test_to_display_reads_metadata_and_agent():
    row = conversation(
        "c1",
        summary="予約の確認",
        key_points=["明日10時"],
        metadata={"sentiment": "positive", "action_items": ["折り返し"]},
        transcript=[{"role": "agent", "text": "こんにちは"}, {"role": "user", "text": "予約です"}],
    )
    display = to_display(row, AGENTS["agent-1"], [{"field_key": "name", "field_value": "山田"}], tz=TOKYO)
    assert display.agent == "受付エージェント"
    assert display.duration == "2:05"
    assert display.sentiment == "positive"
    assert display.action_items == ["折り返し"]
    assert display.key_points == ["明日10時"]
    assert display.icon_name == "Phone"
    assert [m.role for m in display.transcript] == ["agent", "user"]
    assert display.extracted_data[0].field_value == "山田"


def test_is_inbound():
    assert is_inbound({"metadata": None})
    assert is_inbound({"metadata": {"call_type": "inbound"}})
    assert not is_inbound({"metadata": {"call_type": "outbound"}})


def test_search_by_phone_or_agent_name():
    items = displays(
        conversation("c1", phone_number="+819011112222"),
        conversation("c2", agent_id="agent-2", phone_number="+819033334444"),
    )
    assert [c.id for c in search(items, "1111")] == ["c1"]
    assert [c.id for c in search(items, "sales")] == ["c2"]
    assert len(search(items, "")) == 2


def test_date_bucket_start():
    assert date_bucket_start("all", NOW, TOKYO) is None
    assert date_bucket_start("today", NOW, TOKYO) == datetime(2024, 3, 7, tzinfo=TOKYO)
    assert date_bucket_start("week", NOW, TOKYO) == datetime(2024, 2, 29, tzinfo=TOKYO)
    assert date_bucket_start("month", NOW, TOKYO) == datetime(2024, 2, 7, tzinfo=TOKYO)


def test_month_bucket_clamps_day():
    end_of_march = datetime(2024, 3, 31, 9, 0, tzinfo=TOKYO)
    assert date_bucket_start("month", end_of_march, TOKYO) == datetime(2024, 2, 29, tzinfo=TOKYO)


def test_unknown_date_bucket():
    with pytest.raises(ValueError):
        date_bucket_start("year", NOW, TOKYO)


def test_filter_conversations():
    items = displays(
        conversation("today", started_at="2024-03-07T00:05:00+00:00"),
        conversation("yesterday", started_at="2024-03-06T01:00:00+00:00", status="failed"),
        conversation("old", started_at="2024-01-01T01:00:00+00:00"),
    )
    assert [c.id for c in filter_conversations(items, "today", "all", NOW, TOKYO)] == ["today"]
    assert [c.id for c in filter_conversations(items, "week", "failed", NOW, TOKYO)] == ["yesterday"]
    assert len(filter_conversations(items, "all", "all", NOW, TOKYO)) == 3


def test_group_by_agent():
    items = displays(
        conversation("a1-old", started_at="2024-03-05T01:00:00+00:00", is_read=True),
        conversation("a2", agent_id="agent-2", started_at="2024-03-06T01:00:00+00:00"),
        conversation("a1-new", started_at="2024-03-07T00:05:00+00:00"),
    )
    numbers = [{"agent_id": "agent-1", "phone_number": "+815011112222"}]
    groups = group_by_agent(items, AGENTS, numbers)

    assert [g.agent_id for g in groups] == ["agent-1", "agent-2"]
    first = groups[0]
    assert [c.id for c in first.conversations] == ["a1-new", "a1-old"]
    assert first.last_conversation.id == "a1-new"
    assert first.total_conversations == 2
    assert first.unread_count == 1
    assert first.icon_color == "#ff0000"
    assert first.phone_number == "+815011112222"
    assert groups[1].phone_number is None


def test_group_outbound_by_agent():
    calls = [
        {"id": "o1", "agent_id": "agent-2", "created_at": "2024-03-06T01:00:00+00:00", "is_read": True},
        {"id": "o2", "agent_id": "agent-1", "created_at": "2024-03-05T01:00:00+00:00", "is_read": False},
        {"id": "o3", "agent_id": "agent-2", "created_at": "2024-03-07T01:00:00+00:00", "is_read": False},
    ]
    groups = group_outbound_by_agent(calls, AGENTS)
    assert [g.agent_id for g in groups] == ["agent-2", "agent-1"]
    assert groups[0].last_call["id"] == "o3"
    assert groups[0].total_calls == 2
    assert groups[0].unread_count == 1
    assert groups[1].agent_name == "受付エージェント"


@pytest.mark.parametrize("moment, expected", [
    (datetime(2024, 3, 7, 9, 5, tzinfo=TOKYO), "09:05"),
    (datetime(2024, 3, 6, 18, 0, tzinfo=TOKYO), "昨日"),
    (datetime(2024, 3, 4, 10, 0, tzinfo=TOKYO), "月曜日"),
    (datetime(2024, 3, 3, 10, 0, tzinfo=TOKYO), "日曜日"),
    (datetime(2024, 3, 2, 10, 0, tzinfo=TOKYO), "3/2"),
])
def test_format_relative_date(moment, expected):
    assert format_relative_date(moment, NOW, TOKYO) == expected


def test_day_separators():
    items = displays(
        conversation("c1", started_at="2024-03-07T02:00:00+00:00"),
        conversation("c2", started_at="2024-03-07T00:05:00+00:00"),
        conversation("c3", started_at="2024-03-06T01:00:00+00:00"),
        conversation("c4", started_at="2024-03-05T01:00:00+00:00"),
    )
    assert day_separators(items, NOW, TOKYO) == ["今日", None, "昨日", "3月5日（火）"]


def test_build_share_text():
    row = conversation(
        "c1",
        summary="予約の確認",
        key_points=["明日10時", "2名"],
        transcript=[{"role": "agent", "text": "こんにちは"}, {"role": "user", "text": "予約です"}],
    )
    display = to_display(row, AGENTS["agent-1"], tz=TOKYO)
    text = build_share_text(display, "受付エージェント", TOKYO)
    rule = conversation_view.RULE

    assert text == (
        "📞 受電記録\n"
        f"{rule}\n"
        "エージェント: 受付エージェント\n"
        "発信者: +819012345678\n"
        "日時: 2024年3月7日 09:05\n"
        "通話時間: 2:05\n"
        f"{rule}\n\n"
        "📝 要約\n予約の確認\n\n"
        "💡 重要ポイント\n  1. 明日10時\n  2. 2名\n\n"
        "💬 会話ログ\n🤖 AI: こんにちは\n👤 お客様: 予約です\n"
    )


def test_share_text_without_optional_sections():
    display = to_display(conversation("c1"), AGENTS["agent-1"], tz=TOKYO)
    text = build_share_text(display, "受付エージェント", TOKYO)
    assert text.endswith(f"{conversation_view.RULE}\n\n")
    assert "要約" not in text
