"""
Tests for schedule request expansion and channel strategies.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from loqui.core.errors import ExpansionError
from loqui.features.scheduling.channels import CHANNEL_STRATEGIES, Channel, parse_channel, render_email
from loqui.features.scheduling.expander import ScheduleExpander
from loqui.features.scheduling.requests import ScheduleRequest, SingleScheduleRequest


UTC = timezone.utc
START = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

request_adapter = TypeAdapter(ScheduleRequest)


def _request(**body):
    body.setdefault("scheduled_at", START.isoformat())
    return request_adapter.validate_python(body)


@pytest.fixture
def expander(registry):
    return ScheduleExpander(registry)


def test_every_channel_has_a_strategy():
    assert set(CHANNEL_STRATEGIES) == set(Channel)


def test_parse_channel():
    assert parse_channel("LinkedIn") == Channel.LINKEDIN
    with pytest.raises(ExpansionError):
        parse_channel("myspace")


def test_kind_defaults_to_single():
    request = _request(channel="twitter", content="hello")
    assert isinstance(request, SingleScheduleRequest)


def test_naive_timestamps_are_utc():
    request = _request(channel="twitter", content="hello", scheduled_at="2026-03-01T09:00:00")
    assert request.scheduled_at == START


def test_unknown_fields_are_rejected():
    with pytest.raises(PydanticValidationError):
        _request(channel="twitter", content="hello", colour="blue")


def test_single(expander):
    drafts = expander.expand("tenant-1", _request(channel="linkedin", content="New episode", title="Ep 12"))

    assert len(drafts) == 1
    assert drafts[0].channel == "linkedin"
    assert drafts[0].content == "New episode"
    assert drafts[0].scheduled_at == START
    assert drafts[0].meta["group_id"]


def test_thread_parts_land_on_consecutive_days(expander):
    parts = [f"part {i}" for i in range(1, 6)]
    drafts = expander.expand("tenant-1", _request(kind="thread", channel="twitter", parts=parts))

    assert [d.scheduled_at for d in drafts] == [START + timedelta(days=i) for i in range(5)]
    assert [d.content for d in drafts] == parts
    assert [d.meta["thread_index"] for d in drafts] == [1, 2, 3, 4, 5]
    assert {d.meta["thread_total"] for d in drafts} == {5}
    assert len({d.meta["group_id"] for d in drafts}) == 1


def test_empty_thread_is_rejected():
    with pytest.raises(PydanticValidationError):
        _request(kind="thread", channel="twitter", parts=[])


def test_series_sorted_by_day_keeping_input_order(expander):
    request = _request(
        kind="series",
        channel="linkedin",
        items=[
            {"day": 3, "content": "c"},
            {"day": 2, "content": "b1"},
            {"day": 1, "content": "a"},
            {"day": 2, "content": "b2", "platform": "twitter"},
        ],
    )

    drafts = expander.expand("tenant-1", request)

    assert [d.content for d in drafts] == ["a", "b1", "b2", "c"]
    assert [d.meta["series_index"] for d in drafts] == [3, 2, 4, 1]
    assert [d.scheduled_at for d in drafts] == [START, START + timedelta(days=1), START + timedelta(days=1), START + timedelta(days=2)]
    assert [d.channel for d in drafts] == ["linkedin", "linkedin", "twitter", "linkedin"]


def test_series_day_must_be_positive():
    with pytest.raises(PydanticValidationError):
        _request(kind="series", channel="twitter", items=[{"day": 0, "content": "x"}])


def test_series_invalid_platform(expander):
    request = _request(kind="series", channel="twitter", items=[{"day": 1, "content": "x", "platform": "myspace"}])
    with pytest.raises(ExpansionError):
        expander.expand("tenant-1", request)


def test_render_email():
    assert render_email("Hello", "Body") == "Subject: Hello\n\nBody"
    assert render_email(None, "Body") == "Body"


def test_tag_trigger_provider_stores_tag_without_sending(expander, transport):
    request = _request(
        kind="series",
        channel="email",
        provider="Kit",
        trigger_tag="episode-12",
        items=[{"day": 1, "content": "Welcome", "subject": "Hi"}],
    )

    [draft] = expander.expand("tenant-1", request)

    assert draft.provider == "kit"
    assert draft.content == "episode-12"
    assert draft.meta["dispatch"] == "tag_trigger"
    assert draft.meta["trigger_tag"] == "episode-12"
    assert draft.meta["payload_preview"] == "Subject: Hi\n\nWelcome"
    assert transport.requests == []


def test_tag_trigger_without_tag(expander):
    with pytest.raises(ExpansionError, match="trigger tag"):
        expander.expand("tenant-1", _request(channel="email", provider="mailchimp", content="x"))


def test_send_provider_stores_rendered_email(expander):
    request = _request(channel="email", provider="sendgrid", content="Body", title="Subject line", audience_id="list-1")
    [draft] = expander.expand("tenant-1", request)

    assert draft.content == "Subject: Subject line\n\nBody"
    assert draft.meta["dispatch"] == "send"
    assert draft.meta["audience_id"] == "list-1"


def test_manual_provider_is_flagged(expander):
    [draft] = expander.expand("tenant-1", _request(channel="email", provider="beehiiv", content="Body"))

    assert draft.meta["dispatch"] == "manual"
    assert "beehiiv" in draft.meta["manual_message"].lower()


def test_email_requires_known_provider(expander):
    with pytest.raises(ExpansionError):
        expander.expand("tenant-1", _request(channel="email", content="Body"))
    with pytest.raises(ExpansionError, match="Unknown provider"):
        expander.expand("tenant-1", _request(channel="email", provider="aweber", content="Body"))


def test_request_meta_is_carried(expander):
    [draft] = expander.expand("tenant-1", _request(channel="tiktok", content="clip", meta={"campaign": "launch"}))
    assert draft.meta["campaign"] == "launch"
