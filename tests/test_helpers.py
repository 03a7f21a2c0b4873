from datetime import datetime, timezone
from callboard.utils.helpers import (
    display_name,
    format_duration,
    format_duration_japanese,
    initials,
    is_valid_email,
    normalize_email,
    parse_phone_numbers,
    parse_timestamp,
    replace_template_variables,
    transcript_messages,
)

def test_format_duration():
    assert format_duration(None) == "0:00"
    assert format_duration(0) == "0:00"
    assert format_duration(5) == "0:05"
    assert format_duration(125) == "2:05"

def test_format_duration_japanese():
    assert format_duration_japanese(125) == "2分5秒"
    assert format_duration_japanese(None) == "0分0秒"

def test_parse_timestamp():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("2024-03-05T10:00:00Z") == datetime(2024, 3, 5, 10, tzinfo=timezone.utc)
    naive = parse_timestamp("2024-03-05T10:00:00")
    assert naive.tzinfo == timezone.utc

def test_email_validation():
    assert is_valid_email("user@example.com")
    assert not is_valid_email("user@example")
    assert not is_valid_email("user @example.com")
    assert not is_valid_email(None)
    assert normalize_email("  User@Example.COM ") == "user@example.com"

def test_parse_phone_numbers():
    text = "+81 90-1234-5678\n090 1234 5678, 12345;+1 (555) 010-9999"
    assert parse_phone_numbers(text) == ["+819012345678", "09012345678", "+15550109999"]
    assert parse_phone_numbers("") == []

def test_replace_template_variables():
    template = "{{agent_name}} / {{ phone_number }} / {{missing}}"
    result = replace_template_variables(template, {"agent_name": "受付", "phone_number": None})
    assert result == "受付 /  / {{missing}}"

def test_replace_extracted_variables():
    template = "名前: {{ extracted.name }} 予約: {{extracted.date}}"
    result = replace_template_variables(template, {}, {"name": "山田"})
    assert result == "名前: 山田 予約: "

def test_extracted_left_alone_without_data():
    assert replace_template_variables("{{ extracted.name }}", {}) == "{{ extracted.name }}"

def test_display_name_and_initials():
    assert display_name("Taro Yamada", "taro@example.com") == "Taro Yamada"
    assert display_name(None, "hanako@example.com") == "hanako"
    assert display_name(None, None) == "Unknown"
    assert initials("hanako") == "HA"

def test_transcript_messages():
    assert transcript_messages("not a list") == []
    assert transcript_messages([{"role": "agent", "text": "hi"}]) == [{"role": "agent", "text": "hi"}]
