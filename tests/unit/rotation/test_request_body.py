"""Tests for request body classification and header detection."""

import orjson
import pytest

from copilot_rotator.rotation.request_body import (
    ChatMessages,
    Initiator,
    InputItems,
    UnknownBody,
    classify_body,
    detect_initiator,
    has_vision_content,
)


COMPLETIONS_URL = "https://api.githubcopilot.com/chat/completions"
MESSAGES_URL = "https://api.githubcopilot.com/v1/messages"
RESPONSES_URL = "https://api.githubcopilot.com/responses"


def body(**payload) -> bytes:
    return orjson.dumps(payload)


@pytest.mark.unit
class TestClassifyBody:
    """classify_body"""

    def test_messages_array(self):
        parsed = classify_body(body(messages=[{"role": "user", "content": "hi"}]))
        assert parsed == ChatMessages([{"role": "user", "content": "hi"}])

    def test_input_array(self):
        parsed = classify_body(body(input=[{"role": "user", "content": []}]))
        assert isinstance(parsed, InputItems)
        assert len(parsed.items) == 1

    def test_non_dict_entries_dropped(self):
        parsed = classify_body(body(messages=["junk", {"role": "user"}]))
        assert parsed == ChatMessages([{"role": "user"}])

    @pytest.mark.parametrize(
        "content",
        [None, b"", b"not json", b"[1, 2]", body(prompt="hi"), body(messages="x")],
    )
    def test_unknown_shapes(self, content):
        assert classify_body(content) == UnknownBody()

    def test_accepts_str(self):
        assert isinstance(classify_body('{"messages": []}'), ChatMessages)


@pytest.mark.unit
class TestVisionDetection:
    """has_vision_content"""

    def test_chat_image_url_part(self):
        parsed = classify_body(
            body(
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": "what is this?"},
                            {"type": "image_url", "image_url": {"url": "data:..."}},
                        ],
                    }
                ]
            )
        )
        assert has_vision_content(parsed) is True

    def test_messages_api_image_part(self):
        parsed = classify_body(
            body(messages=[{"role": "user", "content": [{"type": "image"}]}])
        )
        assert has_vision_content(parsed) is True

    def test_input_image_item(self):
        parsed = classify_body(
            body(input=[{"role": "user", "content": [{"type": "input_image"}]}])
        )
        assert has_vision_content(parsed) is True

    def test_text_only(self):
        parsed = classify_body(body(messages=[{"role": "user", "content": "hello"}]))
        assert has_vision_content(parsed) is False

    def test_unknown_body(self):
        assert has_vision_content(UnknownBody()) is False


@pytest.mark.unit
class TestInitiatorDetection:
    """detect_initiator"""

    def test_completions_last_user(self):
        parsed = classify_body(
            body(
                messages=[
                    {"role": "assistant", "content": "ok"},
                    {"role": "user", "content": "next"},
                ]
            )
        )
        assert detect_initiator(parsed, COMPLETIONS_URL) == Initiator.USER

    @pytest.mark.parametrize("role", ["assistant", "tool", "system"])
    def test_completions_last_not_user(self, role):
        parsed = classify_body(body(messages=[{"role": role, "content": "x"}]))
        assert detect_initiator(parsed, COMPLETIONS_URL) == Initiator.AGENT

    def test_messages_api_tool_results_only(self):
        parsed = classify_body(
            body(
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "tool_result", "tool_use_id": "t1"},
                            {"type": "tool_result", "tool_use_id": "t2"},
                        ],
                    }
                ]
            )
        )
        assert detect_initiator(parsed, MESSAGES_URL) == Initiator.AGENT

    def test_messages_api_user_text(self):
        parsed = classify_body(
            body(
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "tool_result", "tool_use_id": "t1"},
                            {"type": "text", "text": "also do this"},
                        ],
                    }
                ]
            )
        )
        assert detect_initiator(parsed, MESSAGES_URL) == Initiator.USER

    def test_messages_api_plain_string(self):
        parsed = classify_body(body(messages=[{"role": "user", "content": "hi"}]))
        assert detect_initiator(parsed, MESSAGES_URL) == Initiator.USER

    def test_messages_api_assistant_last(self):
        parsed = classify_body(body(messages=[{"role": "assistant", "content": "x"}]))
        assert detect_initiator(parsed, MESSAGES_URL) == Initiator.AGENT

    def test_responses_last_user(self):
        parsed = classify_body(body(input=[{"role": "user", "content": "hi"}]))
        assert detect_initiator(parsed, RESPONSES_URL) == Initiator.USER

    def test_responses_tool_output_last(self):
        parsed = classify_body(
            body(
                input=[
                    {"role": "user", "content": "hi"},
                    {"type": "function_call_output", "output": "{}"},
                ]
            )
        )
        assert detect_initiator(parsed, RESPONSES_URL) == Initiator.AGENT

    @pytest.mark.parametrize(
        "content", [None, b"garbage", body(messages=[]), body(input=[])]
    )
    def test_conservative_default(self, content):
        assert detect_initiator(classify_body(content), COMPLETIONS_URL) == Initiator.USER
