"""Context window builder: sliding window + running summary."""

from __future__ import annotations

import pytest

from conftest import make_messages
from tenantchat.chat.window import (
    SUMMARIZE_THRESHOLD,
    SUMMARY_TEMPLATE,
    WINDOW,
    build_context_window,
)


class TestBelowThreshold:
    """Up to SUMMARIZE_THRESHOLD messages the history goes out verbatim."""

    @pytest.mark.parametrize("n", [0, 1, 8, 14, 15])
    def test_full_history_verbatim(self, n):
        messages = make_messages(n)
        window = build_context_window(messages)
        assert window.turns() == [m.to_turn() for m in messages]
        assert not window.needs_summary
        assert window.summary_cursor_target is None

    def test_scenario_a_fifteen_messages(self):
        messages = make_messages(15)
        window = build_context_window(messages, -1)
        assert len(window.turns()) == 15
        assert window.to_summarize == []

    def test_stored_summary_not_prepended_below_threshold(self):
        messages = make_messages(10)
        window = build_context_window(messages, 2, "old summary")
        assert all("Previous conversation summary" not in t["content"] for t in window.turns())


class TestAboveThreshold:
    """Above the threshold: last WINDOW verbatim, older folded into the summary."""

    @pytest.mark.parametrize("n", [16, 18, 25, 40])
    def test_exactly_last_window_messages(self, n):
        messages = make_messages(n)
        window = build_context_window(messages)
        assert window.keep == messages[-WINDOW:]
        assert len(window.keep) == WINDOW

    def test_scenario_b_eighteen_messages(self):
        messages = make_messages(18)
        window = build_context_window(messages, -1)
        assert [m.content for m in window.to_summarize] == [f"m{i}" for i in range(10)]
        assert [m.content for m in window.keep] == [f"m{i}" for i in range(10, 18)]
        assert window.summary_cursor_target == 9
        assert window.needs_summary

    def test_only_unsummarized_messages_are_folded_in(self):
        messages = make_messages(20)
        window = build_context_window(messages, 9, "S")
        assert [m.content for m in window.to_summarize] == ["m10", "m11"]
        assert window.summary_cursor_target == 11
        assert window.summary == "S"

    def test_nothing_new_to_summarize_keeps_summary(self):
        # cutoff = 18 - 8 = 10; cursor 9 already covers m0..m9
        messages = make_messages(18)
        window = build_context_window(messages, 9, "S")
        assert not window.needs_summary
        assert window.summary_cursor_target is None
        turns = window.turns()
        assert turns[0] == {"role": "assistant", "content": SUMMARY_TEMPLATE.format(summary="S")}
        assert len(turns) == WINDOW + 1

    def test_plain_truncation_without_summary(self):
        messages = make_messages(18)
        window = build_context_window(messages, 9, None)
        turns = window.turns()
        assert len(turns) == WINDOW
        assert turns[0]["content"] == "m10"

    def test_fresh_summary_overrides_stored_one(self):
        messages = make_messages(18)
        window = build_context_window(messages, -1, None)
        turns = window.turns("fresh")
        assert turns[0] == {"role": "assistant", "content": "[Previous conversation summary: fresh]"}
        assert [t["content"] for t in turns[1:]] == [f"m{i}" for i in range(10, 18)]

    def test_synthetic_turn_excluded_from_verbatim_count(self):
        for n in (SUMMARIZE_THRESHOLD + 1, 30):
            window = build_context_window(make_messages(n), -1, "S")
            turns = window.turns()
            assert len([t for t in turns if not t["content"].startswith("[Previous")]) == WINDOW


class TestIdempotence:
    def test_same_input_same_output(self):
        messages = make_messages(23)
        first = build_context_window(messages, 4, "S")
        second = build_context_window(messages, 4, "S")
        assert first == second
        assert first.turns() == second.turns()

    def test_input_list_not_mutated(self):
        messages = make_messages(20)
        snapshot = list(messages)
        build_context_window(messages, -1)
        assert messages == snapshot
