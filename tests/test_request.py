"""Request validation boundary tests."""

from __future__ import annotations

import json

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.errors import ValidationError
from castor.models import ModelCatalog
from castor.request import MAX_SYSTEM_PROMPT_CHARS, validate_chat_request
from tests.helpers import FLEX_MODEL, PLATFORM_MODEL, chat_payload

pytestmark = pytest.mark.unit


def test_valid_payload_produces_turn_request(catalog) -> None:
    req = validate_chat_request(
        chat_payload(
            model="o4-mini",
            enableSearch=True,
            reasoningEffort="high",
            userInfo={"timezone": "Europe/Paris"},
        ),
        catalog,
    )

    assert req.chat_id == "chat_1"
    assert req.model.id == "o4-mini"
    assert req.enable_search is True
    assert req.reasoning_effort == "high"
    assert req.timezone == "Europe/Paris"
    assert req.last_message.text == "Hello"


def test_json_bytes_are_decoded(catalog) -> None:
    raw = json.dumps(chat_payload()).encode()

    req = validate_chat_request(raw, catalog)

    assert req.model.id == "gpt-4o-mini"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        (b"{not json", "Invalid JSON payload."),
        ("[1, 2]", "Invalid JSON payload."),
        ({"chatId": "c", "model": "gpt-4o-mini"}, "'messages' must be a non-empty array."),
        ({"messages": [], "chatId": "c", "model": "gpt-4o-mini"}, "'messages' must be a non-empty array."),
        (chat_payload(chatId="   "), "'chatId' must be a non-empty string."),
        (chat_payload(chatId=12), "'chatId' must be a non-empty string."),
        (chat_payload(model="no-such-model"), "Invalid 'model' provided."),
        (chat_payload(enableSearch="false"), "'enableSearch' must be a boolean."),
        (chat_payload(enableSearch=1), "'enableSearch' must be a boolean."),
    ],
)
def test_invalid_payloads_raise_fixed_messages(catalog, payload, message) -> None:
    with pytest.raises(ValidationError) as exc:
        validate_chat_request(payload, catalog)
    assert str(exc.value) == message


def test_first_failing_check_wins(catalog) -> None:
    """Missing messages is reported even when chatId and model are also bad."""
    with pytest.raises(ValidationError, match="'messages'"):
        validate_chat_request({"messages": None, "chatId": "", "model": "x"}, catalog)


def test_system_prompt_length_is_bounded(catalog) -> None:
    ok = validate_chat_request(
        chat_payload(systemPrompt="x" * MAX_SYSTEM_PROMPT_CHARS), catalog
    )
    assert ok.system_prompt is not None

    with pytest.raises(ValidationError, match="systemPrompt"):
        validate_chat_request(
            chat_payload(systemPrompt="x" * (MAX_SYSTEM_PROMPT_CHARS + 1)), catalog
        )


def test_unknown_reasoning_effort_is_rejected(catalog) -> None:
    with pytest.raises(ValidationError, match="reasoningEffort"):
        validate_chat_request(chat_payload(reasoningEffort="extreme"), catalog)


def test_malformed_message_is_rejected(catalog) -> None:
    payload = chat_payload()
    payload["messages"] = [{"role": "robot", "parts": []}]

    with pytest.raises(ValidationError, match="malformed"):
        validate_chat_request(payload, catalog)


def test_defaults_are_applied(catalog) -> None:
    req = validate_chat_request(chat_payload(), catalog)

    assert req.enable_search is False
    assert req.reasoning_effort is None
    assert req.system_prompt is None
    assert req.reload_assistant_message_id is None
    assert req.timezone is None


def test_validation_has_no_side_effects(catalog) -> None:
    payload = chat_payload(model="nope")
    snapshot = json.dumps(payload, sort_keys=True)

    with pytest.raises(ValidationError):
        validate_chat_request(payload, catalog)

    assert json.dumps(payload, sort_keys=True) == snapshot


_json_scalars = st.none() | st.booleans() | st.integers() | st.text(max_size=20)
_json_values = st.recursive(
    _json_scalars,
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(st.text(max_size=8), children, max_size=3),
    max_leaves=10,
)


@given(
    payload=st.one_of(
        _json_values,
        st.binary(max_size=40),
        st.fixed_dictionaries(
            {
                "messages": _json_values,
                "chatId": _json_values,
                "model": st.sampled_from(["gpt-4o-mini", "o4-mini", "nope"]) | _json_values,
            },
            optional={
                "systemPrompt": _json_values,
                "reasoningEffort": _json_values,
                "reloadAssistantMessageId": _json_values,
                "userInfo": _json_values,
            },
        ),
    )
)
@settings(max_examples=200, deadline=None, derandomize=True)
def test_validator_is_total(payload) -> None:
    """Property: any payload either validates or raises ValidationError."""
    catalog = ModelCatalog([PLATFORM_MODEL, FLEX_MODEL])
    try:
        req = validate_chat_request(payload, catalog)
    except ValidationError:
        return
    assert req.messages
    assert req.model in (PLATFORM_MODEL, FLEX_MODEL)
