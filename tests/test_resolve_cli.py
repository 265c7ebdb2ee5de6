"""Tests for the resolve command-line entrypoint."""

import json
import logging
from unittest.mock import patch

import pytest

from harvester import resolve


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestBuildConfig:
    def test_flags_override_file_override_env(self, tmp_path):
        config_path = tmp_path / "resolver.yaml"
        config_path.write_text("worker_count: 5\ndownload_documents: true\n", encoding="utf-8")
        args = resolve.parse_args(
            ["--input", "in.txt", "--config", str(config_path), "--workers", "3"]
        )

        config = resolve.build_config(
            args,
            environ={"RESOLVER_WORKER_COUNT": "9", "RESOLVER_USER_AGENT": "env-agent"},
        )

        assert config.worker_count == 3
        assert config.download_documents
        assert config.user_agent == "env-agent"

    def test_defaults_without_flags(self):
        args = resolve.parse_args(["--input", "in.txt"])
        config = resolve.build_config(args, environ={})

        assert not config.download_documents
        assert config.want_documents
        assert not config.want_datasets

    def test_dataset_only_flags(self):
        args = resolve.parse_args(["--input", "in.txt", "--datasets", "--no_documents", "--no_download"])
        config = resolve.build_config(args, environ={})

        assert config.want_datasets
        assert not config.want_documents
        assert not config.download_documents


class TestMain:
    def test_missing_input(self, tmp_path, restore_logging):
        code = resolve.main(["--input", str(tmp_path / "missing.txt"), "--output_dir", str(tmp_path / "out")])
        assert code == 2

    def test_invalid_config(self, tmp_path, restore_logging):
        config_path = tmp_path / "resolver.json"
        config_path.write_text(json.dumps({"worker_count": 0}), encoding="utf-8")
        input_path = tmp_path / "input.txt"
        input_path.write_text("https://repo.example.org/record/1\n", encoding="utf-8")

        code = resolve.main(
            [
                "--input",
                str(input_path),
                "--output_dir",
                str(tmp_path / "out"),
                "--config",
                str(config_path),
            ]
        )
        assert code == 2

    def test_run_with_excluded_inputs_only(self, tmp_path, restore_logging, capsys):
        input_path = tmp_path / "input.txt"
        input_path.write_text("ID1\thttps://www.frontiersin.org/articles/10.3389/x\n", encoding="utf-8")
        out_dir = tmp_path / "out"

        code = resolve.main(["--input", str(input_path), "--output_dir", str(out_dir), "--workers", "1"])

        assert code == 0
        (row,) = [json.loads(line) for line in (out_dir / "results.jsonl").read_text(encoding="utf-8").splitlines()]
        assert row["id"] == "ID1"
        assert row["final_url_or_status"] == "unreachable"
        assert (out_dir / "logs" / "resolve.log").exists()
        assert "Resolution Complete" in capsys.readouterr().out

    def test_interrupt_and_failure_exit_codes(self, tmp_path, restore_logging):
        input_path = tmp_path / "input.txt"
        input_path.write_text("https://repo.example.org/record/1\n", encoding="utf-8")
        argv = ["--input", str(input_path), "--output_dir", str(tmp_path / "out")]

        with patch.object(resolve.Pipeline, "run", side_effect=KeyboardInterrupt):
            assert resolve.main(argv) == 130
        with patch.object(resolve.Pipeline, "run", side_effect=RuntimeError("disk full")):
            assert resolve.main(argv) == 1
