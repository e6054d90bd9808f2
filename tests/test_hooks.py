"""Tests for hook handlers, host output and transcript parsing."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from mnemo.backends.base import PeerContext
from mnemo.cache import MessageQueue, WorkLog
from mnemo.hooks import HOOKS, Hook, prepare, read_payload, run_hook
from mnemo.hooks import (
    agent_output,
    post_tool_use,
    pre_compact,
    session_end,
    session_start,
    stop,
    subagent_stop,
    user_prompt,
)
from mnemo.hooks.base import resolve_cwd
from mnemo.hooks.transcript import (
    extract_work_items,
    is_meaningful,
    last_assistant_message,
    parse_transcript,
)

from conftest import FakeBackend


@pytest.fixture
def configured(home: Path) -> Path:
    home.mkdir(parents=True, exist_ok=True)
    (home / "config.json").write_text(json.dumps({"apiKey": "sk", "peerName": "jane"}))
    return home


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "app"
    path.mkdir()
    return path


def make_run(payload: dict, backend: FakeBackend):
    out = io.StringIO()
    run = prepare(payload, backend_factory=lambda config: backend, out=out, err=io.StringIO())
    assert run is not None
    return run, out


def write_transcript(path: Path, entries: list[dict]) -> str:
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")
    return str(path)


LONG_ANSWER = (
    "I fixed the queue rewrite because the old version truncated the file in place. "
    "It now writes a temp file and renames it, so other directories keep their backlog."
)


class TestPayload:
    def test_read_payload(self):
        assert read_payload(io.StringIO('{"prompt": "hi"}')) == {"prompt": "hi"}
        assert read_payload(io.StringIO("")) == {}
        assert read_payload(io.StringIO("not json")) == {}
        assert read_payload(io.StringIO("[1, 2]")) == {}

    def test_cwd_priority(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_PROJECT_DIR", "/env/dir")
        assert resolve_cwd({"workspace_roots": ["/root/a"], "cwd": "/b"}) == "/root/a"
        assert resolve_cwd({"cwd": "/b"}) == "/b"
        assert resolve_cwd({}) == "/env/dir"

    def test_unconfigured_is_noop(self, home: Path, backend: FakeBackend):
        assert prepare({"prompt": "hi"}, backend_factory=lambda c: backend) is None

    def test_disabled_is_noop(self, configured: Path, backend: FakeBackend, monkeypatch):
        monkeypatch.setenv("HONCHO_ENABLED", "false")
        assert prepare({"prompt": "hi"}, backend_factory=lambda c: backend) is None

    def test_host_detection(self, configured: Path, backend: FakeBackend):
        run, _ = make_run({"cursor_version": "1.7"}, backend)
        assert run.host == "cursor"
        assert run.config.workspace == "cursor"


class TestUserPrompt:
    @pytest.mark.asyncio
    async def test_claude_output(self, configured: Path, project: Path, backend: FakeBackend):
        run, out = make_run({"prompt": "How do pytest fixtures work?", "cwd": str(project)}, backend)
        await user_prompt.handle(run)

        output = json.loads(out.getvalue())
        hook = output["hookSpecificOutput"]
        assert hook["hookEventName"] == "UserPromptSubmit"
        assert hook["additionalContext"].startswith("[Honcho Memory for jane]: Relevant conclusions:")
        assert "fresh" in output["systemMessage"]
        assert MessageQueue(configured).list_pending() == []
        assert backend.sent[0].content == "How do pytest fixtures work?"

    @pytest.mark.asyncio
    async def test_cursor_output(self, configured: Path, project: Path, backend: FakeBackend):
        payload = {"prompt": "Explain the cache", "workspace_roots": [str(project)], "cursor_version": "1.7"}
        run, out = make_run(payload, backend)
        await user_prompt.handle(run)

        output = json.loads(out.getvalue())
        assert output["continue"] is True
        assert output["user_message"].startswith("[Honcho Memory for jane]")

    @pytest.mark.asyncio
    async def test_trivial_prompt_uploads_without_context(self, configured, project, backend: FakeBackend):
        run, out = make_run({"prompt": "ok", "cwd": str(project)}, backend)
        await user_prompt.handle(run)

        assert out.getvalue() == ""
        assert backend.count("session_context") == 0
        assert [m.content for m in backend.sent] == ["ok"]

    @pytest.mark.asyncio
    async def test_backend_down_keeps_prompt(self, configured, project, backend: FakeBackend):
        backend.fail = {"add_messages", "session_context"}
        run, out = make_run({"prompt": "Refactor the queue", "cwd": str(project)}, backend)
        await user_prompt.handle(run)

        assert "context fetch failed" in json.loads(out.getvalue())["systemMessage"]
        assert [m.content for m in MessageQueue(configured).list_pending()] == ["Refactor the queue"]

    @pytest.mark.asyncio
    async def test_corrupt_counters_still_queue_prompt(self, configured, project, backend: FakeBackend):
        (configured / "context-cache.json").write_text(json.dumps({"messageCount": "abc", "entries": []}))
        backend.fail = {"session"}
        run, out = make_run({"prompt": "Refactor the queue", "cwd": str(project)}, backend)
        await user_prompt.handle(run)

        assert [m.content for m in MessageQueue(configured).list_pending(str(project))] == ["Refactor the queue"]
        assert "context fetch failed" in json.loads(out.getvalue())["systemMessage"]
        assert run.bridge.context_cache.increment_activity() == 2

    @pytest.mark.asyncio
    async def test_save_messages_off(self, configured, project, backend: FakeBackend, monkeypatch):
        monkeypatch.setenv("HONCHO_SAVE_MESSAGES", "false")
        run, _ = make_run({"prompt": "Refactor the queue", "cwd": str(project)}, backend)
        await user_prompt.handle(run)
        assert backend.count("add_messages") == 0
        assert MessageQueue(configured).list_pending() == []

    @pytest.mark.asyncio
    async def test_empty_prompt(self, configured, project, backend: FakeBackend):
        run, out = make_run({"prompt": "   ", "cwd": str(project)}, backend)
        await user_prompt.handle(run)
        assert out.getvalue() == ""
        assert backend.calls == []

    @pytest.mark.parametrize("prompt", ["yes", "  OK ", "go ahead", "/compact"])
    def test_trivial(self, prompt):
        assert user_prompt.is_trivial(prompt)

    def test_not_trivial(self):
        assert not user_prompt.is_trivial("yes please refactor the cache")

    def test_topics(self):
        topics = user_prompt.extract_topics('Fix src/core.py, the "context cache" errors with Redis')
        assert "src/core.py" in topics
        assert "context cache" in topics
        assert "redis" in topics

    def test_topics_fallback_words(self):
        assert user_prompt.extract_topics("please tidy things up") == ["please", "tidy", "things"]


class TestSessionStart:
    @pytest.mark.asyncio
    async def test_claude_plain_text(self, configured: Path, project: Path, backend: FakeBackend):
        payload = {"session_id": "inst-42", "cwd": str(project)}
        run, out = make_run(payload, backend)
        await session_start.handle(run)

        text = out.getvalue()
        assert "[claude/Honcho Memory Loaded]" in text
        assert "- Session: jane-app" in text
        assert run.bridge.ids.get_instance_id() == "inst-42"
        assert backend.count("workspace") == 1

    @pytest.mark.asyncio
    async def test_cursor_json(self, configured: Path, project: Path, backend: FakeBackend):
        payload = {"conversation_id": "c-1", "workspace_roots": [str(project)], "cursor_version": "1.7"}
        run, out = make_run(payload, backend)
        await session_start.handle(run)

        output = json.loads(out.getvalue())
        assert output["additional_context"].startswith("[cursor/Honcho Memory Loaded]")
        assert "5/5" in output["user_message"]

    @pytest.mark.asyncio
    async def test_resets_activity(self, configured: Path, project: Path, backend: FakeBackend):
        run, _ = make_run({"cwd": str(project)}, backend)
        for _ in range(40):
            run.bridge.context_cache.increment_activity()
        await session_start.handle(run)
        assert not run.bridge.context_cache.should_force_refresh()

    @pytest.mark.asyncio
    async def test_offline(self, configured: Path, project: Path, backend: FakeBackend):
        backend.fail = {"workspace", "session"}
        run, out = make_run({"cwd": str(project)}, backend)
        await session_start.handle(run)
        assert "## Memory System Active" in out.getvalue()


class TestPostToolUse:
    @pytest.mark.asyncio
    async def test_edit_logged_and_uploaded(self, configured, project, backend: FakeBackend):
        payload = {
            "cwd": str(project),
            "tool_name": "Edit",
            "tool_input": {"file_path": "/src/app/queue.py", "old_string": "def old_name():", "new_string": "def new_name():"},
        }
        run, out = make_run(payload, backend)
        await post_tool_use.handle(run)

        summary = "Edited queue.py: changed: old_name -> new_name"
        assert json.loads(out.getvalue())["systemMessage"].endswith(summary)
        assert WorkLog(configured).entries()[-1].endswith(summary)
        assert backend.sent[0].content == f"[Tool] {summary}"

    @pytest.mark.asyncio
    async def test_trivial_bash_ignored(self, configured, project, backend: FakeBackend):
        payload = {"cwd": str(project), "tool_name": "Bash", "tool_input": {"command": "ls -la"}}
        run, out = make_run(payload, backend)
        await post_tool_use.handle(run)
        assert out.getvalue() == ""
        assert backend.calls == []

    @pytest.mark.parametrize("name,tool_input,output,expected", [
        ("Write", {"file_path": "/a/models.py", "content": "class User:\n    pass\n"}, {}, "Wrote models.py (defines class User)"),
        ("Bash", {"command": "npm test"}, {}, "Package test: success"),
        ("Bash", {"command": "git commit -m 'fix cache ttl'"}, {}, "Git commit: fix cache ttl"),
        ("Bash", {"command": "make build"}, {"error": "exit 2"}, "Ran: make build (failed)"),
        ("Task", {"description": "find usages", "subagent_type": "explore"}, {}, "Agent task (explore): find usages"),
        ("NotebookEdit", {"notebook_path": "/n/a.ipynb"}, {}, "Notebook replace code cell in a.ipynb"),
    ])
    def test_summaries(self, name, tool_input, output, expected):
        assert post_tool_use.summarize_tool(name, tool_input, output) == expected

    def test_edit_summaries(self):
        assert post_tool_use.summarize_edit("", "def go():\n    pass", "x.py") == "added 2 lines (defines function go)"
        assert post_tool_use.summarize_edit("a\nb", "", "x.py") == "removed 2 lines"
        assert post_tool_use.summarize_edit("x = 1", "x = 1\n", "x.py") == "expanded by 1 lines"

    def test_significance(self):
        assert not post_tool_use.should_log("Read", {})
        assert post_tool_use.should_log("Shell", {"command": "pytest -q"})
        assert not post_tool_use.should_log("Shell", {"command": "git status"})


class TestStop:
    @pytest.mark.asyncio
    async def test_uploads_last_response(self, configured, project, tmp_path, backend: FakeBackend):
        transcript = write_transcript(tmp_path / "t.jsonl", [
            {"type": "user", "message": {"content": "fix it"}},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": LONG_ANSWER}]}},
        ])
        run, out = make_run({"cwd": str(project), "transcript_path": transcript}, backend)
        await stop.handle(run)

        [msg] = backend.sent
        assert msg.content == LONG_ANSWER
        assert msg.metadata["type"] == "assistant_response"
        assert "saved response" in json.loads(out.getvalue())["systemMessage"]

    @pytest.mark.asyncio
    async def test_stop_hook_active(self, configured, project, backend: FakeBackend):
        run, out = make_run({"cwd": str(project), "stop_hook_active": True}, backend)
        await stop.handle(run)
        assert out.getvalue() == ""
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_cursor_empty_object(self, configured, project, backend: FakeBackend):
        run, out = make_run({"workspace_roots": [str(project)], "cursor_version": "1.7"}, backend)
        await stop.handle(run)
        assert json.loads(out.getvalue()) == {}


class TestSessionEnd:
    @pytest.mark.asyncio
    async def test_flush_summary_and_marker(self, configured, project, tmp_path, backend: FakeBackend):
        MessageQueue(configured).enqueue("queued prompt", "jane", str(project))
        MessageQueue(configured).enqueue("elsewhere", "jane", "/src/other")
        transcript = write_transcript(tmp_path / "t.jsonl", [
            {"type": "user", "message": {"content": "fix the queue"}},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": LONG_ANSWER}]}},
            {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Edit"}]}},
        ])
        run, _ = make_run({"cwd": str(project), "transcript_path": transcript, "reason": "exit"}, backend)
        await session_end.handle(run)

        contents = [m.content for m in backend.sent]
        assert contents[0] == "queued prompt"
        assert LONG_ANSWER in contents
        assert "[Used tools: Edit]" in contents
        assert contents[-1].startswith("[Session ended] Reason: exit, Messages: 3")
        assert [m.content for m in MessageQueue(configured).list_pending()] == ["elsewhere"]
        assert "Session: jane-app" in WorkLog(configured).read()

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_queue(self, configured, project, backend: FakeBackend):
        MessageQueue(configured).enqueue("queued prompt", "jane", str(project))
        backend.fail = {"add_messages"}
        run, _ = make_run({"cwd": str(project)}, backend)
        await session_end.handle(run)
        assert len(MessageQueue(configured).list_pending()) == 1
        assert "Session: jane-app" in WorkLog(configured).read()


class TestTranscript:
    def test_parse_formats(self, tmp_path: Path):
        path = write_transcript(tmp_path / "t.jsonl", [
            {"role": "user", "content": "plain format"},
            {"type": "assistant", "message": {"content": "short"}},
            {"type": "summary"},
        ])
        with open(path, "a") as f:
            f.write("garbage\n")
        messages = parse_transcript(path)
        assert [(m.role, m.content) for m in messages] == [("user", "plain format"), ("assistant", "short")]
        assert not messages[1].meaningful

    def test_missing_file(self, tmp_path: Path):
        assert parse_transcript(tmp_path / "nope.jsonl") == []
        assert last_assistant_message(None) is None

    def test_meaningful(self):
        assert is_meaningful(LONG_ANSWER)
        assert not is_meaningful("I'll run the tests now and check the output for failures.")

    def test_work_items(self):
        items = extract_work_items(["I created file config.py. Then fixed the flaky test"])
        assert items == ["config", "the flaky test"]


class TestPreCompact:
    @pytest.mark.asyncio
    async def test_claude_anchor(self, configured, project, backend: FakeBackend):
        backend.peer_contexts["peer-jane"] = PeerContext(representation="- likes tea", peer_card=["Name: Jane"])
        run, out = make_run({"cwd": str(project), "trigger": "manual"}, backend)
        await pre_compact.handle(run)

        text = out.getvalue()
        assert "[claude/Honcho Memory Anchor]" in text
        assert "### jane's Profile (PRESERVE)\nName: Jane" in text
        assert "### Key Conclusions About jane (PRESERVE)\n- likes tea" in text
        assert "### Session Context (PRESERVE)\nWorked on the cache layer." in text
        assert "### AI Understanding of jane (PRESERVE)" in text
        assert text.rstrip().endswith("ensure these conclusions are preserved.")
        assert backend.count("chat") == 2

    @pytest.mark.asyncio
    async def test_cursor_user_message(self, configured, project, backend: FakeBackend):
        backend.fail = {"summaries", "chat"}
        payload = {"workspace_roots": [str(project)], "cursor_version": "1.7"}
        run, out = make_run(payload, backend)
        await pre_compact.handle(run)

        message = json.loads(out.getvalue())["user_message"]
        assert message.startswith("[cursor/Honcho Memory Anchor]")
        assert "Session Context" not in message
        assert "### cursor's Recent Work (PRESERVE)\nAbout peer-cursor" in message

    @pytest.mark.asyncio
    async def test_identity_failure_warns(self, configured, project, backend: FakeBackend):
        backend.fail = {"session"}
        run, out = make_run({"cwd": str(project)}, backend)
        await pre_compact.handle(run)
        assert out.getvalue() == ""
        assert "pre-compact warning" in run.err.getvalue()


class TestAgentOutput:
    @pytest.mark.asyncio
    async def test_response_uploaded(self, configured, project, backend: FakeBackend):
        payload = {"workspace_roots": [str(project)], "cursor_version": "1.7", "text": LONG_ANSWER}
        run, out = make_run(payload, backend)
        await agent_output.handle_response(run)

        [msg] = backend.sent
        assert msg.content == LONG_ANSWER
        assert msg.peer_id == "peer-cursor"
        assert msg.metadata["type"] == "assistant_response"
        assert out.getvalue() == ""

    @pytest.mark.asyncio
    async def test_short_response_skipped(self, configured, project, backend: FakeBackend):
        run, _ = make_run({"cwd": str(project), "text": "Done."}, backend)
        await agent_output.handle_response(run)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_long_thought_truncated(self, configured, project, backend: FakeBackend):
        run, _ = make_run({"cwd": str(project), "text": "t" * 5000, "duration_ms": 8000}, backend)
        await agent_output.handle_thought(run)

        [msg] = backend.sent
        assert msg.content == "[Reasoning] " + "t" * 4000 + "..."
        assert msg.metadata["type"] == "agent_thought"
        assert msg.metadata["duration_ms"] == 8000

    @pytest.mark.parametrize("text,duration,expected", [
        ("t" * 600, 5000, True),
        ("t" * 600, None, True),
        ("t" * 600, 1200, False),
        ("t" * 100, 9000, False),
    ])
    def test_deep_thought(self, text, duration, expected):
        assert agent_output.is_deep_thought(text, duration) is expected


class TestSubagentStop:
    @pytest.mark.asyncio
    async def test_completed(self, configured, project, backend: FakeBackend):
        payload = {
            "workspace_roots": [str(project)],
            "cursor_version": "1.7",
            "subagent_type": "explore",
            "status": "completed",
            "result": "Found three callers of flush_queue.",
            "duration": 12400,
        }
        run, out = make_run(payload, backend)
        await subagent_stop.handle(run)

        assert json.loads(out.getvalue()) == {}
        assert WorkLog(configured).entries()[-1].endswith("Subagent (explore): completed (12s)")
        [msg] = backend.sent
        assert msg.content == "[Subagent explore] (12s) Found three callers of flush_queue."
        assert msg.metadata["subagent_type"] == "explore"

    @pytest.mark.asyncio
    async def test_failed_subagent_ignored(self, configured, project, backend: FakeBackend):
        payload = {"workspace_roots": [str(project)], "cursor_version": "1.7", "status": "error"}
        run, out = make_run(payload, backend)
        await subagent_stop.handle(run)
        assert json.loads(out.getvalue()) == {}
        assert backend.calls == []

    def test_long_result_preview(self):
        message, _ = subagent_stop.summarize_subagent("plan", "r" * 600, None)
        assert message == "[Subagent plan] " + "r" * 500 + "..."


class TestRunHook:
    def test_end_to_end(self, configured, project, backend: FakeBackend, capsys):
        stdin = io.StringIO(json.dumps({"prompt": "ok", "cwd": str(project)}))
        assert run_hook(HOOKS["user-prompt"], stdin=stdin, backend_factory=lambda c: backend) == 0
        assert backend.closed
        assert (configured / "activity.log").exists()

    def test_every_hook_registered(self):
        assert set(HOOKS) == {
            "session-start", "user-prompt", "before-submit-prompt", "post-tool-use",
            "pre-compact", "stop", "subagent-stop", "after-agent-response",
            "after-agent-thought", "session-end",
        }

    def test_errors_never_escape(self, configured, project, capsys):
        async def broken(run):
            raise RuntimeError("boom")

        stdin = io.StringIO(json.dumps({"cwd": str(project)}))
        assert run_hook(Hook(broken), stdin=stdin, backend_factory=lambda c: FakeBackend()) == 0
        assert capsys.readouterr().out == ""

    def test_failed_prompt_hook_still_continues_cursor(self, configured, project, capsys):
        async def broken(run):
            raise RuntimeError("boom")

        stdin = io.StringIO(json.dumps({"workspace_roots": [str(project)], "cursor_version": "1.7"}))
        hook = Hook(broken, fallback=HOOKS["before-submit-prompt"].fallback)
        assert run_hook(hook, stdin=stdin, backend_factory=lambda c: FakeBackend()) == 0
        assert json.loads(capsys.readouterr().out) == {"continue": True}

    def test_fallback_skipped_after_output(self, configured, project, capsys):
        async def half_done(run):
            run.stop()
            raise RuntimeError("boom")

        stdin = io.StringIO(json.dumps({"workspace_roots": [str(project)], "cursor_version": "1.7"}))
        hook = Hook(half_done, fallback=HOOKS["stop"].fallback)
        assert run_hook(hook, stdin=stdin, backend_factory=lambda c: FakeBackend()) == 0
        assert capsys.readouterr().out.strip() == "{}"

    @pytest.mark.parametrize("field,value", [("contextRefresh", [30]), ("endpoint", "local")])
    def test_malformed_config_never_crashes(self, home, project, backend: FakeBackend, capsys, field, value):
        home.mkdir(parents=True, exist_ok=True)
        (home / "config.json").write_text(json.dumps({"apiKey": "sk", field: value}))
        stdin = io.StringIO(json.dumps({"prompt": "Refactor the queue", "cwd": str(project)}))
        assert run_hook(HOOKS["user-prompt"], stdin=stdin, backend_factory=lambda c: backend) == 0
        assert [m.content for m in backend.sent] == ["Refactor the queue"]

    def test_setup_failure_returns_zero(self, configured, project, capsys):
        def exploding_factory(config):
            raise RuntimeError("no backend")

        stdin = io.StringIO(json.dumps({"cwd": str(project)}))
        assert run_hook(HOOKS["stop"], stdin=stdin, backend_factory=exploding_factory) == 0

    def test_unconfigured(self, home, capsys):
        assert run_hook(HOOKS["stop"], stdin=io.StringIO("{}")) == 0
        assert capsys.readouterr().out == ""
