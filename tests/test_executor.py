"""Tests for the subprocess executor using fake model CLIs."""

import pytest

from ohmyccg.config import BackendSettings
from ohmyccg.jobs.backends import CodexBackend, GeminiBackend
from ohmyccg.jobs.executor import SubprocessExecutor
from ohmyccg.jobs.models import JobRequest

AGENT_MESSAGE_ECHO = """
prompt = sys.stdin.read()
print(json.dumps({"type": "thread.started"}))
print(json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": prompt}}))
"""


def _codex(script: str, settings: BackendSettings, tracker=None, prompts_dir=None) -> SubprocessExecutor:
    return SubprocessExecutor(CodexBackend(executable=script), settings, tracker, prompts_dir)


def _gemini(script: str, settings: BackendSettings, tracker=None) -> SubprocessExecutor:
    return SubprocessExecutor(GeminiBackend(executable=script), settings, tracker)


class TestSuccess:
    """Tests for successful runs."""

    @pytest.mark.asyncio
    async def test_codex_returns_last_agent_message(self, make_cli, fast_settings, workdir):
        executor = _codex(make_cli(AGENT_MESSAGE_ECHO), fast_settings)

        outcome = await executor.execute(JobRequest(prompt="Explain the cache", working_directory=str(workdir)))

        assert outcome.ok is True
        assert outcome.result == "Explain the cache"
        assert outcome.model == "test-model"
        assert outcome.used_fallback is False

    @pytest.mark.asyncio
    async def test_prompt_includes_role_and_context(self, make_cli, fast_settings, workdir, tmp_path):
        prompts_dir = tmp_path / "prompts"
        (prompts_dir / "codex").mkdir(parents=True)
        (prompts_dir / "codex" / "architect.md").write_text("You are an architect.")
        source = workdir / "cache.py"
        source.write_text("CACHE = {}")

        executor = _codex(make_cli(AGENT_MESSAGE_ECHO), fast_settings, prompts_dir=prompts_dir)
        outcome = await executor.execute(JobRequest(
            prompt="Review this",
            agent_role="architect",
            files=[str(source)],
            working_directory=str(workdir),
        ))

        assert outcome.result.startswith("You are an architect.\n\nReview this")
        assert f"--- {source} ---\nCACHE = {{}}" in outcome.result

    @pytest.mark.asyncio
    async def test_request_model_overrides_default(self, make_cli, fast_settings, workdir):
        script = make_cli("print(f'model={MODEL}')")
        executor = _codex(script, fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", model="gpt-custom", working_directory=str(workdir)))

        assert outcome.result == "model=gpt-custom"

    @pytest.mark.asyncio
    async def test_pid_tracked_only_while_running(self, make_cli, fast_settings, tracker, workdir):
        seen = []

        def on_spawn(pid):
            seen.append((pid, pid in tracker))

        executor = _codex(make_cli("print('done')"), fast_settings, tracker)
        await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)), on_spawn=on_spawn)

        assert len(seen) == 1
        assert seen[0][1] is True
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_large_output_is_capped(self, make_cli, fast_settings, workdir, monkeypatch):
        monkeypatch.setattr("ohmyccg.jobs.executor.MAX_STDOUT_BYTES", 100)
        executor = _gemini(make_cli("sys.stdout.write('a' * 5000)"), fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is True
        assert outcome.result == "a" * 100


class TestGeminiFallback:
    """Tests for the model fallback chain."""

    @pytest.mark.asyncio
    async def test_falls_back_on_model_not_found(self, make_cli, fast_settings, workdir):
        script = make_cli("""
        if MODEL == "gemini-3-pro-preview":
            sys.stderr.write("Error: model not found: " + MODEL)
            sys.exit(1)
        print("answer from " + MODEL)
        """)
        settings = fast_settings.model_copy(update={"model": "gemini-3-pro-preview"})
        executor = _gemini(script, settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is True
        assert outcome.result == "answer from gemini-3-flash-preview"
        assert outcome.used_fallback is True
        assert outcome.fallback_model == "gemini-3-flash-preview"
        assert outcome.to_dict() == {
            "content": "answer from gemini-3-flash-preview",
            "used_fallback": True,
            "fallback_model": "gemini-3-flash-preview",
        }

    @pytest.mark.asyncio
    async def test_chain_exhausted(self, make_cli, fast_settings, workdir):
        script = make_cli("""
        sys.stderr.write("model_not_found")
        sys.exit(1)
        """)
        settings = fast_settings.model_copy(update={"model": "gemini-2.5-pro"})
        executor = _gemini(script, settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is False
        assert outcome.error.startswith("All models in fallback chain failed. Last error: ")
        assert "gemini-2.5-flash" in outcome.error
        assert outcome.error.endswith("(model_not_found)")

    @pytest.mark.asyncio
    async def test_codex_model_not_found_is_not_retried(self, make_cli, fast_settings, workdir, tmp_path):
        counter = tmp_path / "calls"
        script = make_cli(f"""
        with open({str(counter)!r}, "a") as f:
            f.write("x")
        sys.stderr.write("The model is not supported")
        sys.exit(1)
        """)
        executor = _codex(script, fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is False
        assert outcome.error == "Codex error: Model not found: test-model (The model is not supported)"
        assert counter.read_text() == "x"


class TestRetry:
    """Tests for rate-limit retries and other failures."""

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, make_cli, fast_settings, workdir, tmp_path):
        marker = tmp_path / "attempted"
        script = make_cli(f"""
        import os
        if not os.path.exists({str(marker)!r}):
            open({str(marker)!r}, "w").close()
            sys.stderr.write("429 Too Many Requests")
            sys.exit(1)
        print("recovered")
        """)
        executor = _gemini(script, fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is True
        assert outcome.result == "recovered"
        assert outcome.used_fallback is False

    @pytest.mark.asyncio
    async def test_rate_limit_retries_exhausted(self, make_cli, fast_settings, workdir, tmp_path):
        counter = tmp_path / "calls"
        script = make_cli(f"""
        with open({str(counter)!r}, "a") as f:
            f.write("x")
        sys.stderr.write("RESOURCE_EXHAUSTED: quota exceeded")
        sys.exit(1)
        """)
        executor = _codex(script, fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is False
        assert outcome.error.startswith("Codex error (exit 1): RESOURCE_EXHAUSTED")
        # One attempt plus retry_count retries
        assert counter.read_text() == "xxx"

    @pytest.mark.asyncio
    async def test_fatal_error_surfaces_tail(self, make_cli, fast_settings, workdir):
        script = make_cli("""
        sys.stderr.write("boom")
        sys.exit(2)
        """)
        executor = _codex(script, fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is False
        assert outcome.error == "Codex error (exit 2): boom"
        assert outcome.to_dict() == {"error": "Codex error (exit 2): boom"}

    @pytest.mark.asyncio
    async def test_timeout(self, make_cli, fast_settings, tracker, workdir):
        script = make_cli("""
        import time
        time.sleep(30)
        """)
        settings = fast_settings.model_copy(update={"timeout": 300})
        executor = _codex(script, settings, tracker)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is False
        assert outcome.error == "Codex timed out after 0.3s"
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_missing_executable(self, fast_settings, workdir, tmp_path):
        executor = _gemini(str(tmp_path / "no-such-cli"), fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.ok is False
        assert outcome.error.startswith("Gemini spawn error:")

    @pytest.mark.asyncio
    async def test_error_tail_includes_stdout(self, make_cli, fast_settings, workdir):
        script = make_cli("""
        sys.stderr.write("warning: deprecated flag\\n")
        sys.stdout.write("fatal: config file is invalid")
        sys.exit(4)
        """)
        executor = _codex(script, fast_settings)

        outcome = await executor.execute(JobRequest(prompt="x", working_directory=str(workdir)))

        assert outcome.error == (
            "Codex error (exit 4): warning: deprecated flag\nfatal: config file is invalid"
        )
