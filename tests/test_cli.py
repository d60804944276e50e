"""Tests for the CLI interface."""

from __future__ import annotations

import asyncio

import pytest
from click.testing import CliRunner

from agents import AgentRegistry
from cli import _audio_output, _RevealPrinter, cli
from data import CommitteeDatabase, DecisionStatus
from playback import RevealSynchronizer, TimedOutput
from playback.live_queue import ReadySegment


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "test_config.yaml"
    path.write_text(
        f"database:\n  path: {tmp_path / 'test.db'}\n"
        f"storage:\n  data_dir: {tmp_path / 'data'}\n"
        "api: {}\nagents: {}\n"
        "tts:\n  enabled: false\n"
    )
    return str(path)


def _new_decision(runner, config_path, *extra: str) -> str:
    result = runner.invoke(
        cli,
        ["--config", config_path, "new-decision", "--title", "Take the Berlin offer?", *extra],
    )
    assert result.exit_code == 0, result.output
    return result.output.strip().splitlines()[-1]


class TestCLI:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Decision Committee" in result.output

    def test_debate_help(self, runner):
        result = runner.invoke(cli, ["debate", "--help"])
        assert result.exit_code == 0
        assert "--decision-id" in result.output
        assert "--quick" in result.output
        assert "--no-audio" in result.output
        assert "--silent" in result.output

    def test_replay_help(self, runner):
        result = runner.invoke(cli, ["replay", "--help"])
        assert result.exit_code == 0
        assert "--speed" in result.output
        assert "--silent" in result.output

    def test_list_decisions_empty(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "list-decisions"])
        assert result.exit_code == 0
        assert "No decisions found" in result.output

    def test_new_decision_then_list(self, runner, config_path):
        decision_id = _new_decision(runner, config_path, "--option", "Stay", "--option", "Move", "--variable", "Salary")
        assert len(decision_id) == 32

        result = runner.invoke(cli, ["--config", config_path, "list-decisions"])
        assert result.exit_code == 0
        assert decision_id in result.output
        assert "exploring" in result.output
        assert "Take the Berlin offer?" in result.output


class TestAgentCommands:
    def test_list(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "agents", "list"])
        assert result.exit_code == 0
        assert "rationalist" in result.output
        assert "moderator" in result.output

    def test_add_then_list(self, runner, config_path):
        result = runner.invoke(
            cli,
            ["--config", config_path, "agents", "add", "--key", "economist",
             "--label", "Economist", "--prompt", "You think in incentives.", "--voice-gender", "female"],
        )
        assert result.exit_code == 0
        assert "Added" in result.output

        listed = runner.invoke(cli, ["--config", config_path, "agents", "list"])
        assert "economist" in listed.output
        assert "custom" in listed.output

    def test_add_duplicate_rejected(self, runner, config_path):
        result = runner.invoke(
            cli,
            ["--config", config_path, "agents", "add", "--key", "advocate", "--label", "X", "--prompt", "Y"],
        )
        assert result.exit_code != 0
        assert "already exists" in result.output


class TestDecisionCommands:
    def test_debate_unknown_decision(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "debate", "--decision-id", "missing", "--no-audio"])
        assert result.exit_code == 0
        assert "Cannot start debate" in result.output

    def test_debate_not_ready(self, runner, config_path):
        decision_id = _new_decision(runner, config_path, "--option", "Stay")
        result = runner.invoke(cli, ["--config", config_path, "debate", "--decision-id", decision_id, "--no-audio"])
        assert "Cannot start debate" in result.output
        assert "at least one option and one variable" in result.output

    def test_debate_unknown_agent(self, runner, config_path):
        result = runner.invoke(
            cli, ["--config", config_path, "debate", "--decision-id", "x", "--agents", "ghost"]
        )
        assert result.exit_code != 0
        assert "Unknown agent(s): ghost" in result.output

    def test_transcript_without_turns(self, runner, config_path):
        decision_id = _new_decision(runner, config_path)
        result = runner.invoke(cli, ["--config", config_path, "transcript", "--decision-id", decision_id])
        assert "No debate turns" in result.output

    def test_replay_without_audio(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "replay", "--decision-id", "missing"])
        assert "No audio for missing" in result.output

    def test_generate_audio_disabled(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "generate-audio", "--decision-id", "missing"])
        assert "disabled" in result.output

    def test_visualize_not_found(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "visualize", "--decision-id", "missing"])
        assert "not found" in result.output

    def test_debate_closed_decision(self, runner, config_path, tmp_path):
        decision_id = _new_decision(runner, config_path, "--option", "Stay", "--variable", "Salary")

        async def _decide() -> None:
            db = CommitteeDatabase(tmp_path / "test.db")
            await db.connect()
            try:
                for status in (DecisionStatus.DEBATING, DecisionStatus.RECOMMENDED, DecisionStatus.DECIDED):
                    await db.update_decision_status(decision_id, status)
            finally:
                await db.close()

        asyncio.run(_decide())
        result = runner.invoke(cli, ["--config", config_path, "debate", "--decision-id", decision_id, "--no-audio"])
        assert result.exit_code == 0
        assert result.exception is None
        assert "Cannot start debate: Decision is decided" in result.output


class TestLiveView:
    def test_audio_output_choice(self):
        assert isinstance(_audio_output({}, silent=True), TimedOutput)
        assert isinstance(_audio_output({"playback": {"output": "headless"}}, silent=False), TimedOutput)
        with pytest.raises(ValueError, match="Unknown audio output"):
            _audio_output({"playback": {"output": "tape"}}, silent=False)

    def test_reveal_printer_follows_typed_text(self, tmp_path, capsys):
        playing = [True]
        sync = RevealSynchronizer(is_audio_playing=lambda: playing[0], auto_tick=False, tick_ms=100, min_reveal_ms=0)
        printer = _RevealPrinter(AgentRegistry(tmp_path), sync)
        key = (1, 1, "rationalist")
        sync.on_response(key, "Move to Berlin.")
        sync.on_segment_start(ReadySegment(0, "rationalist", 1, 1, "000.mp3", 400, "/audio"))

        sync.tick()
        printer.refresh()
        partial = capsys.readouterr().out
        assert "RATIONALIST" in partial
        assert "Round 1.1" in partial
        assert partial.endswith("Move")

        while sync.active_key is not None:
            sync.tick()
        printer.refresh()
        rest = capsys.readouterr().out
        assert rest == " to Berlin.\n"

        sync.on_response((1, 1, "advocate"), "Stay put.")
        sync.flush_pending()
        printer.refresh()
        flushed = capsys.readouterr().out
        assert "ADVOCATE" in flushed
        assert flushed.endswith("Stay put.\n")
