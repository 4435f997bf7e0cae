"""Tests for context compression."""

from codeloop.core.compression import (
    SUMMARY_HEADER,
    CompressionManager,
    build_summary_prompt,
    summary_message,
)
from codeloop.core.events import (
    CompressionFailed,
    CompressionStarted,
    CompressionSucceeded,
    EventBus,
    TokenUsage,
    TokenUsageUpdate,
)
from codeloop.core.llm import LLMAbortError

from conftest import EventRecorder, FakeLLMClient, partial_response, run, text_response

SYSTEM = {"role": "system", "content": "You are a coding assistant."}
HISTORY = [
    SYSTEM,
    {"role": "user", "content": "Fix the login bug"},
    {"role": "assistant", "content": "Looking at auth.py"},
]


class TestShouldCompress:

    def test_threshold_is_exclusive(self):
        manager = CompressionManager(FakeLLMClient(), threshold=100)
        assert not manager.should_compress(TokenUsage(total_tokens=100))
        assert manager.should_compress(TokenUsage(total_tokens=101))

    def test_no_usage_never_compresses(self):
        assert not CompressionManager(FakeLLMClient(), threshold=0).should_compress(None)


class TestSummaryPrompt:

    def test_wraps_each_message_in_role_tags(self):
        prompt = build_summary_prompt(HISTORY[1:])
        assert "<user>\nFix the login bug\n</user>" in prompt
        assert "<assistant>\nLooking at auth.py\n</assistant>" in prompt
        assert "Pending Tasks" in prompt

    def test_non_text_content_becomes_empty(self):
        prompt = build_summary_prompt([{"role": "assistant", "content": None, "tool_calls": []}])
        assert "<assistant>\n\n</assistant>" in prompt

    def test_summary_message_format(self):
        assert summary_message("S") == {"role": "user", "content": f"{SUMMARY_HEADER}\n\nS"}


class TestCompress:

    def test_replaces_history_with_summary(self):
        usage = TokenUsage(prompt_tokens=50, completion_tokens=20, total_tokens=70)
        client = FakeLLMClient([partial_response("The user"), text_response("The user wants a fix.", usage=usage)])
        bus = EventBus()
        recorder = EventRecorder(bus)

        outcome = run(CompressionManager(client, 10).compress(HISTORY, bus))

        assert outcome.compressed
        assert outcome.messages == [SYSTEM, summary_message("The user wants a fix.")]
        assert outcome.usage == usage
        assert recorder.of_type(TokenUsageUpdate)[0].usage == usage
        started = recorder.of_type(CompressionStarted)[0]
        assert started.call_id.startswith("/compact_auto_")
        assert recorder.of_type(CompressionSucceeded)[0].call_id == started.call_id

    def test_summary_request_excludes_system_message(self):
        client = FakeLLMClient([text_response("summary")])

        run(CompressionManager(client, 10).compress(HISTORY, EventBus()))

        sent = client.requests[0]
        assert len(sent) == 1
        assert sent[0]["role"] == "user"
        assert "You are a coding assistant." not in sent[0]["content"]

    def test_missing_usage_resets_to_zero(self):
        client = FakeLLMClient([text_response("summary")])

        outcome = run(CompressionManager(client, 10).compress(HISTORY, EventBus()))

        assert outcome.usage == TokenUsage()

    def test_failure_keeps_original_messages(self):
        old_usage = TokenUsage(total_tokens=500)
        client = FakeLLMClient([RuntimeError("server exploded")])
        bus = EventBus()
        recorder = EventRecorder(bus)

        outcome = run(CompressionManager(client, 10).compress(HISTORY, bus, usage=old_usage))

        assert not outcome.compressed
        assert outcome.messages == HISTORY
        assert outcome.usage == old_usage
        assert outcome.error == "server exploded"
        assert recorder.of_type(CompressionFailed)[0].error == "server exploded"
        assert recorder.of_type(TokenUsageUpdate) == []

    def test_cancelled_summary_is_reported_as_canceled(self):
        client = FakeLLMClient([LLMAbortError()])

        outcome = run(CompressionManager(client, 10).compress(HISTORY, EventBus()))

        assert outcome.error == "compaction canceled"

    def test_nothing_to_compact(self):
        client = FakeLLMClient()

        outcome = run(CompressionManager(client, 10).compress([SYSTEM], EventBus()))

        assert not outcome.compressed
        assert outcome.error == "No messages to compact"
        assert client.requests == []

    def test_manual_compaction_id(self):
        client = FakeLLMClient([text_response("summary")])
        bus = EventBus()
        recorder = EventRecorder(bus)

        run(CompressionManager(client, 10).compress(HISTORY[1:], bus, auto_triggered=False))

        started = recorder.of_type(CompressionStarted)[0]
        assert started.auto_triggered is False
        assert started.call_id.startswith("/compact_")
        assert not started.call_id.startswith("/compact_auto_")
