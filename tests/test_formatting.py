"""Tests for Telegram output formatting."""

import re

from switchboard.bridges.telegram.formatting import (
    TELEGRAM_MAX_LENGTH,
    confirm_keyboard,
    escape_html,
    extract_ask_user_question,
    extract_text,
    extract_tool_actions,
    format_ask_user_question,
    format_duration,
    format_pinned_status,
    format_project_list,
    format_result,
    format_tool_action,
    model_keyboard,
    paginate,
    prepare_chunks,
    project_keyboard,
    session_actions_keyboard,
    split_message,
    strip_html,
    timeout_keyboard,
    to_telegram_html,
)
from switchboard.models import ChatSessionMapping, ProjectProfile
from switchboard.runtime.base import ResultEvent, RuntimeState


def _prose(length: int) -> str:
    paragraph = ("The quick brown fox jumps over the lazy dog again and again. " * 7).strip()
    text = ""
    while len(text) < length:
        text += paragraph + "\n\n"
    return text[:length]


class TestToTelegramHtml:
    """Markdown to Telegram HTML conversion."""

    def test_inline_code_is_not_reformatted(self) -> None:
        """Markup inside inline code stays literal."""
        assert to_telegram_html("`x**bold**y`") == "<code>x**bold**y</code>"

    def test_bold_italic_strike(self) -> None:
        """Emphasis markers map to HTML tags."""
        assert to_telegram_html("**b** and *i* and ~~s~~") == "<b>b</b> and <i>i</i> and <s>s</s>"

    def test_bold_inside_word(self) -> None:
        """Bold markers work without surrounding spaces."""
        assert to_telegram_html("x**bold**y") == "x<b>bold</b>y"

    def test_html_is_escaped_outside_code(self) -> None:
        """Angle brackets and ampersands are escaped."""
        assert to_telegram_html("a < b & c > d") == "a &lt; b &amp; c &gt; d"

    def test_fenced_code_block_with_language(self) -> None:
        """Fenced blocks become pre/code with a language class and escaped body."""
        out = to_telegram_html("```python\nif a < b:\n    pass\n```")
        assert out == '<pre><code class="language-python">if a &lt; b:\n    pass</code></pre>'

    def test_heading_and_link(self) -> None:
        """Headings turn bold and links become anchors."""
        out = to_telegram_html("# Title\nsee [docs](https://example.com)")
        assert out == '<b>Title</b>\nsee <a href="https://example.com">docs</a>'

    def test_collapses_blank_lines(self) -> None:
        """Three or more newlines collapse to two."""
        assert to_telegram_html("a\n\n\n\nb") == "a\n\nb"


class TestSplitMessage:
    """Chunking oversized messages."""

    def test_short_text_is_single_chunk(self) -> None:
        """Text within the limit is returned unchanged."""
        assert split_message("hello") == ["hello"]

    def test_chunks_concatenate_to_input(self) -> None:
        """Chunks are exact slices of the input."""
        text = _prose(9000)
        chunks = split_message(text)
        assert "".join(chunks) == text
        assert all(len(c) <= TELEGRAM_MAX_LENGTH for c in chunks)

    def test_prefers_paragraph_boundary(self) -> None:
        """A paragraph break beyond 30% of the limit is used as the cut."""
        text = "a" * 60 + "\n\n" + "b" * 60
        chunks = split_message(text, max_len=100)
        assert chunks[0] == "a" * 60 + "\n\n"

    def test_does_not_cut_inside_tag(self) -> None:
        """A cut landing inside an HTML tag backs up to the tag start."""
        text = "x" * 95 + "<code>y</code>"
        chunks = split_message(text, max_len=100)
        assert "".join(chunks) == text
        assert chunks[0] == "x" * 95
        assert chunks[1].startswith("<code>")

    def test_does_not_cut_inside_early_long_tag(self) -> None:
        """A tag opening in the first part of the chunk still moves the cut back."""
        text = "x" * 10 + '<a href="' + "u" * 200 + '">link</a>'
        chunks = split_message(text, max_len=100)
        assert chunks[0] == "x" * 10
        assert chunks[1].startswith('<a href="')
        assert "".join(chunks) == text

    def test_hard_cut_without_boundaries(self) -> None:
        """Text without any boundary is cut at the limit."""
        chunks = split_message("z" * 250, max_len=100)
        assert [len(c) for c in chunks] == [100, 100, 50]


class TestPagination:
    """Page prefixes for long replies."""

    def test_two_chunks_have_no_prefix(self) -> None:
        """Pagination only kicks in above two chunks."""
        assert paginate(["a", "b"]) == ["a", "b"]

    def test_nine_thousand_chars_become_three_pages(self) -> None:
        """9,000 characters of prose produce three prefixed chunks within the limit."""
        chunks = prepare_chunks(_prose(9000))
        assert len(chunks) == 3
        for i, chunk in enumerate(chunks, start=1):
            assert chunk.startswith(f"[{i}/3]\n")
            assert len(chunk) <= TELEGRAM_MAX_LENGTH

    def test_prefixed_chunks_keep_tags_balanced(self) -> None:
        """No chunk ends in the middle of a tag."""
        html = to_telegram_html(("some **bold** text and `code` here. " * 40 + "\n\n") * 8)
        for chunk in prepare_chunks(html):
            assert not re.search(r"<[^>]*$", chunk)


class TestToolActions:
    """Tool-activity lines."""

    def test_read_shortens_path(self) -> None:
        """Paths keep only their last three segments."""
        line = format_tool_action("Read", {"file_path": "/home/u/src/pkg/mod/file.py"})
        assert line == "📖 Reading <code>.../pkg/mod/file.py</code>"

    def test_bash_truncates_command(self) -> None:
        """Long commands are truncated with an ellipsis."""
        line = format_tool_action("Bash", {"command": "echo " + "x" * 100})
        assert line.startswith("💻 Running <code>echo ")
        assert "…" in line

    def test_unknown_tool_uses_default_icon(self) -> None:
        """Unknown tools get the wrench and their escaped name."""
        assert format_tool_action("Fancy<Tool>", {}) == "🔧 Fancy&lt;Tool&gt;"

    def test_extract_from_blocks(self) -> None:
        """Only tool_use blocks produce activity lines."""
        blocks = [
            {"type": "text", "text": "hi"},
            {"type": "tool_use", "name": "Grep", "input": {"pattern": "TODO"}},
        ]
        assert extract_tool_actions(blocks) == ["🔎 Searching for <code>TODO</code>"]
        assert extract_text(blocks) == "hi"

    def test_ask_user_question(self) -> None:
        """AskUserQuestion input is rendered as a question list."""
        blocks = [{
            "type": "tool_use",
            "name": "AskUserQuestion",
            "input": {"questions": [{"question": "Which DB?", "options": [{"label": "Postgres"}]}]},
        }]
        questions = extract_ask_user_question(blocks)
        assert questions is not None
        text = format_ask_user_question(questions)
        assert "Which DB?" in text
        assert "Postgres" in text


class TestStatusTexts:
    """Result, status and list texts."""

    def test_result_summary(self) -> None:
        """Successful turns render cost, turns, line counts and duration."""
        event = ResultEvent(cost_usd=0.123, num_turns=3, duration_ms=12300, lines_added=10, lines_removed=2)
        assert format_result(event) == "✅ Done! $0.123 | 3 turns | +10/-2 lines | 12.3s"

    def test_result_error_detail(self) -> None:
        """Failed turns include escaped error detail."""
        event = ResultEvent(is_error=True, errors=["boom <here>"])
        text = format_result(event)
        assert text.startswith("⚠️ Error:")
        assert "boom &lt;here&gt;" in text

    def test_pinned_status_without_state(self) -> None:
        """A session without runtime state shows as starting."""
        mapping = ChatSessionMapping(chat_id=1, session_id="s", project_slug="api", model="opus")
        assert "starting" in format_pinned_status(mapping, None)

    def test_pinned_status_with_state(self) -> None:
        """Cost and turns come from the runtime state."""
        mapping = ChatSessionMapping(chat_id=1, session_id="s", project_slug="api", model="opus")
        state = RuntimeState(session_id="s", cwd="/", model="opus", status="busy", total_cost_usd=1.5, num_turns=4)
        text = format_pinned_status(mapping, state)
        assert "🔵 busy" in text
        assert "$1.500 · 4 turns" in text

    def test_project_list_marks_active(self) -> None:
        """Active projects are marked."""
        profiles = [
            ProjectProfile(slug="api", name="API", dir="/a"),
            ProjectProfile(slug="web", name="Web", dir="/w"),
        ]
        text = format_project_list(profiles, active=["web"])
        assert "- Web 🟢" in text
        assert "- API 🟢" not in text


class TestKeyboards:
    """Inline keyboard layouts."""

    def test_project_keyboard_two_per_row(self) -> None:
        """Project buttons are laid out two per row."""
        profiles = [ProjectProfile(slug=s, name=s.upper(), dir="/") for s in ("a", "b", "c")]
        rows = project_keyboard(profiles)["inline_keyboard"]
        assert [len(r) for r in rows] == [2, 1]
        assert rows[1][0]["callback_data"] == "proj:c"

    def test_model_keyboard_marks_current(self) -> None:
        """The current model carries a check mark."""
        row = model_keyboard("opus")["inline_keyboard"][0]
        assert [b["text"] for b in row] == ["sonnet", "opus ✓", "haiku"]

    def test_confirm_keyboard(self) -> None:
        """Confirm keyboards use the action as callback prefix."""
        row = confirm_keyboard("new")["inline_keyboard"][0]
        assert row[0] == {"text": "Yes, restart", "callback_data": "new:confirm"}
        assert row[1]["callback_data"] == "new:cancel"


    def test_session_actions_offer_timeout(self) -> None:
        rows = session_actions_keyboard("sonnet")["inline_keyboard"]
        assert rows[-1] == [{"text": "⏱ Timeout", "callback_data": "action:timeout"}]

    def test_timeout_keyboard_marks_current(self) -> None:
        """The active choice is checked and the toggle turns the timeout off."""
        rows = timeout_keyboard(1800)["inline_keyboard"]
        assert [b["text"] for b in rows[0]] == ["15m", "30m ✓", "1h"]
        assert [b["callback_data"] for b in rows[1]] == ["timeout:set:7200", "timeout:set:14400"]
        assert rows[2] == [{"text": "Turn off", "callback_data": "timeout:toggle:off"}]

    def test_timeout_keyboard_when_off(self) -> None:
        rows = timeout_keyboard(None)["inline_keyboard"]
        assert "✓" not in "".join(b["text"] for row in rows for b in row)
        assert rows[2][0]["callback_data"] == "timeout:toggle:on"


class TestDuration:
    """format_duration."""

    def test_minutes(self) -> None:
        assert format_duration(45 * 60) == "45m"

    def test_whole_hours(self) -> None:
        assert format_duration(7200) == "2h"

    def test_hours_and_minutes(self) -> None:
        assert format_duration(5400) == "1h 30m"

class TestHtmlHelpers:
    """Escaping and stripping."""

    def test_strip_html_unescapes(self) -> None:
        """Tags are removed and entities decoded."""
        assert strip_html("<b>a &amp; b</b>") == "a & b"

    def test_escape_html(self) -> None:
        assert escape_html("<&>") == "&lt;&amp;&gt;"
