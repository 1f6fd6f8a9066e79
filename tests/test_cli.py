"""Tests for the callrelay CLI."""

from unittest.mock import AsyncMock, patch

import click.testing
import pytest

from callrelay.cli import cli


@pytest.fixture
def runner():
    return click.testing.CliRunner()


class TestParse:
    def test_full_name(self, runner):
        result = runner.invoke(cli, ["parse", "20240131_235901_unit1__TO_4112_FROM_9981.mp3"])
        assert result.exit_code == 0
        assert "timestamp=20240131_235901" in result.output
        assert "talkgroupId=4112" in result.output
        assert "radioId=9981" in result.output

    def test_default_radio(self, runner):
        result = runner.invoke(cli, ["parse", "20240131_235901__TO_4112.mp3"])
        assert result.exit_code == 0
        assert "radioId=123456" in result.output

    def test_no_match_exits_nonzero(self, runner):
        result = runner.invoke(cli, ["parse", "20240131_235901__TO_1.mp3", "holiday.mp3"])
        assert result.exit_code == 1
        assert "holiday.mp3: no match" in result.output

    def test_requires_argument(self, runner):
        result = runner.invoke(cli, ["parse"])
        assert result.exit_code != 0


class TestWatchHelp:
    def test_help_shows_options(self, runner):
        result = runner.invoke(cli, ["watch", "--help"])
        assert result.exit_code == 0
        for option in ("--dir", "--url", "--api-key", "--insecure", "--dedup-window", "--concurrent", "--once"):
            assert option in result.output


class TestWatchValidation:
    def test_missing_dir(self, runner):
        result = runner.invoke(cli, ["watch", "--once", "--dir", ""])
        assert result.exit_code == 1
        assert "MONITORED_DIRECTORY" in result.output

    def test_nonexistent_dir(self, runner):
        result = runner.invoke(cli, ["watch", "--once", "--dir", "/nonexistent/recordings"])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_negative_window(self, runner, tmp_path):
        result = runner.invoke(cli, ["watch", "--once", "--dir", str(tmp_path), "--dedup-window", "-5"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestWatchOnce:
    def test_once_uploads_pairs(self, runner, watch_root, write_pair):
        write_pair(watch_root / "site-a")
        write_pair(watch_root / "site-b", "20240201_080000__TO_5001")
        write_pair(watch_root / "site-c", "unlabelled")

        with patch(
            "callrelay.integrations.ingest.IngestClient.upload_pair",
            new_callable=AsyncMock,
            return_value="ok",
        ) as upload:
            result = runner.invoke(cli, ["watch", "--once", "--dir", str(watch_root)])

        assert result.exit_code == 0, result.output
        assert upload.await_count == 2
        assert "Uploaded: 2" in result.output
        assert "Duplicates: 2" in result.output
        assert "Skipped: 2" in result.output
        assert "Errors: 0" in result.output

    def test_once_reports_errors(self, runner, watch_root, write_pair):
        from callrelay.integrations.ingest import UploadError

        write_pair(watch_root / "site-a")

        with patch(
            "callrelay.integrations.ingest.IngestClient.upload_pair",
            new_callable=AsyncMock,
            side_effect=UploadError("refused"),
        ):
            result = runner.invoke(cli, ["watch", "--once", "--dir", str(watch_root)])

        assert result.exit_code == 0
        # the failed claim is released, so the transcript's trigger tries again
        assert "Errors: 2" in result.output
        assert "Uploaded: 0" in result.output

    def test_once_empty_tree(self, runner, watch_root):
        result = runner.invoke(cli, ["watch", "--once", "--dir", str(watch_root), "--insecure"])
        assert result.exit_code == 0
        assert "Uploaded: 0" in result.output


class TestWatchSetupFailure:
    def test_observer_failure_exits(self, runner, watch_root):
        from callrelay.relay.watcher import WatchSetupError

        with patch(
            "callrelay.relay.watcher.start_observer",
            side_effect=WatchSetupError("inotify watch limit reached"),
        ):
            result = runner.invoke(cli, ["watch", "--dir", str(watch_root)])

        assert result.exit_code == 1
        assert "inotify watch limit reached" in result.output


class TestHistory:
    @pytest.fixture
    def audited_run(self, runner, watch_root, write_pair, tmp_path):
        """Relay two pairs with --once, the second refused, and return the audit path."""
        from callrelay.integrations.ingest import UploadError

        audit_path = tmp_path / "audit.jsonl"
        good, _ = write_pair(watch_root / "site-a")
        bad, _ = write_pair(watch_root / "site-b", "20240201_080000__TO_5001")

        async def upload(pair, metadata):
            if pair.stem.startswith("20240201"):
                raise UploadError("HTTP 503: busy", status_code=503)
            return "ok"

        with (
            patch("callrelay.config.RELAY_AUDIT_LOG_PATH", str(audit_path)),
            patch(
                "callrelay.integrations.ingest.IngestClient.upload_pair",
                new_callable=AsyncMock,
                side_effect=upload,
            ),
        ):
            result = runner.invoke(cli, ["watch", "--once", "--dir", str(watch_root)])
        assert result.exit_code == 0, result.output
        return audit_path, good, bad

    def test_known_pair_lists_outcomes(self, runner, audited_run):
        audit_path, good, _ = audited_run
        result = runner.invoke(cli, ["history", "--audit-log", str(audit_path), str(good)])

        assert result.exit_code == 0, result.output
        assert str(good.with_suffix("")) in result.output
        assert "uploaded" in result.output
        assert "duplicate" in result.output

    def test_either_half_finds_the_pair(self, runner, audited_run):
        audit_path, good, _ = audited_run
        by_mp3 = runner.invoke(cli, ["history", "--audit-log", str(audit_path), str(good)])
        by_txt = runner.invoke(
            cli, ["history", "--audit-log", str(audit_path), str(good.with_suffix(".txt"))]
        )
        assert by_mp3.output == by_txt.output

    def test_unknown_pair_exits_nonzero(self, runner, audited_run, tmp_path):
        audit_path, _, _ = audited_run
        result = runner.invoke(
            cli, ["history", "--audit-log", str(audit_path), str(tmp_path / "x" / "nothing.mp3")]
        )
        assert result.exit_code == 1
        assert "never seen" in result.output

    def test_failed_lists_refused_pairs(self, runner, audited_run):
        audit_path, _, bad = audited_run
        result = runner.invoke(cli, ["history", "--audit-log", str(audit_path), "--failed"])

        assert result.exit_code == 0, result.output
        assert str(bad.with_suffix("")) in result.output
        assert "HTTP 503: busy" in result.output
        assert "Failed pairs: 1" in result.output

    def test_requires_audit_log(self, runner):
        result = runner.invoke(cli, ["history", "--audit-log", "", "--failed"])
        assert result.exit_code == 1
        assert "--audit-log is required" in result.output

    def test_requires_paths_or_failed(self, runner, tmp_path):
        result = runner.invoke(cli, ["history", "--audit-log", str(tmp_path / "a.jsonl")])
        assert result.exit_code == 1
        assert "--failed" in result.output
