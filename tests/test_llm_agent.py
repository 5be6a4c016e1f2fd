"""
Tests for the LLM context, system prompt and OpenAI call.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookingbot import llm_agent
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.services import AppointmentService
from conftest import NOW

CUSTOMER = "+972501234567"


def make_client(content="שלום! איך אפשר לעזור?", side_effect=None):
    """OpenAI client double whose chat.completions.create is awaitable."""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = content

    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=mock_response, side_effect=side_effect)
    return client


def test_build_context_lists_free_slots_and_legend(db, business):
    context = llm_agent.build_context(db, business, CUSTOMER, now=NOW)

    assert context["now"] == NOW
    assert len(context["days_legend"]) == 7
    assert "2030-03-04" in context["days_legend"][0]
    assert len(context["free"]) == 8
    assert context["free"][0] == datetime(2030, 3, 4, 9, 0)
    assert context["existing"] is None


def test_build_context_includes_busy_and_existing(ctx, db, business):
    appt = asyncio.run(AppointmentService.create(ctx, CUSTOMER, datetime(2030, 3, 4, 9, 0), customer_name="דנה"))

    context = llm_agent.build_context(db, business, CUSTOMER, now=NOW)

    assert context["busy"] == [datetime(2030, 3, 4, 9, 0)]
    assert datetime(2030, 3, 4, 9, 0) not in context["free"]
    assert context["existing"].id == appt.id


def test_system_prompt_teaches_directives_with_exact_timestamps(ctx, db, business):
    appt = asyncio.run(AppointmentService.create(ctx, CUSTOMER, datetime(2030, 3, 5, 11, 0), customer_name="דנה"))
    prompt = llm_agent.build_system_prompt(llm_agent.build_context(db, business, CUSTOMER, now=NOW))

    assert business.name in prompt
    assert "CONFIRM:" in prompt
    assert "CANCEL:" in prompt
    assert "RESCHEDULE:" in prompt
    assert "2030-03-04T09:00:00" in prompt
    assert appt.id in prompt
    assert business.owner_phone in prompt
    assert "עברית" in prompt


def test_system_prompt_without_free_slots(db, business):
    context = llm_agent.build_context(db, business, CUSTOMER, now=NOW)
    context["free"] = []
    context["busy"] = []
    prompt = llm_agent.build_system_prompt(context)
    assert "אין זמנים פנויים" in prompt
    assert "אין תורים תפוסים" in prompt


def test_time_annotation():
    assert llm_agent.time_annotation(NOW) == "[[SYS:now=2030-03-04T08:00:00]]"


def test_generate_reply_sends_history_in_order():
    client = make_client("מתי נוח לך?")
    history = [
        {"role": "user", "content": "היי"},
        {"role": "assistant", "content": "שלום! מה שמך?"},
    ]

    reply = asyncio.run(llm_agent.generate_reply("SYSTEM", history, "דנה", client=client))

    assert reply == "מתי נוח לך?"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["max_tokens"] == 400
    assert kwargs["temperature"] == pytest.approx(0.7)
    assert [m["role"] for m in kwargs["messages"]] == ["system", "user", "assistant", "user"]
    assert kwargs["messages"][-1]["content"] == "דנה"


def test_generate_reply_wraps_api_errors():
    client = make_client(side_effect=RuntimeError("rate limited"))
    with pytest.raises(CollaboratorUnavailable):
        asyncio.run(llm_agent.generate_reply("SYSTEM", [], "היי", client=client))


def test_generate_reply_rejects_empty_completion():
    client = make_client(content="   ")
    with pytest.raises(CollaboratorUnavailable):
        asyncio.run(llm_agent.generate_reply("SYSTEM", [], "היי", client=client))


def test_generate_reply_without_key(monkeypatch):
    from bookingbot.config import Config, config

    monkeypatch.setattr(Config, "OPENAI_API_KEY", "")
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    with pytest.raises(CollaboratorUnavailable):
        asyncio.run(llm_agent.generate_reply("SYSTEM", [], "היי"))
