"""
Tests for the unveil-analyze command line entry point.
"""

import json
import os
from unittest.mock import patch

import pytest

from unveil.run_privacy_analysis import (
    EXIT_ANALYSIS_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    load_batches,
    main,
)
from unveil.storage.report_repository import ReportRepository

SOL = 1_000_000_000


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """No .env file and no inherited settings."""
    monkeypatch.chdir(tmp_path)
    with patch.dict(os.environ, {}, clear=True):
        yield


@pytest.fixture
def input_file(tmp_path, deposit_tx, withdrawal_tx):
    path = tmp_path / "txs.json"
    path.write_text(
        json.dumps(
            [
                deposit_tx("dep1", "userA", SOL, block_time_ms=0),
                withdrawal_tx("wd1", "fresh1", 990_000_000, block_time_ms=60_000),
            ]
        )
    )
    return path


class TestMain:
    """Tests for main()."""

    def test_writes_report_file(self, input_file, tmp_path):
        output = tmp_path / "report.json"

        code = main(["--input", str(input_file), "--protocol", "privacy-cash",
                     "--output", str(output)])

        assert code == EXIT_OK
        data = json.loads(output.read_text())
        assert data["privacy-cash"]["matchedPairs"] == 1
        assert data["privacy-cash"]["matches"][0]["sourceId"] == "dep1"

    def test_prints_to_stdout(self, input_file, capsys):
        code = main(["--input", str(input_file), "--protocol", "privacy-cash"])

        assert code == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert "privacyScore" in data["privacy-cash"]

    def test_mapping_input(self, tmp_path, deposit_tx, capsys):
        path = tmp_path / "all.json"
        path.write_text(json.dumps({"privacy-cash": [deposit_tx("dep1", "userA", SOL)],
                                    "silentswap": []}))

        code = main(["--input", str(path)])

        assert code == EXIT_OK
        assert set(json.loads(capsys.readouterr().out)) == {"privacy-cash", "silentswap"}

    def test_save_to_database(self, input_file, tmp_path, capsys):
        db_path = tmp_path / "reports.duckdb"

        code = main(["--input", str(input_file), "--protocol", "privacy-cash",
                     "--save", "--db-path", str(db_path)])

        assert code == EXIT_OK
        saved = ReportRepository(db_path).get_latest_report("privacy-cash")
        assert saved is not None
        assert saved.matched_pairs == 1

    def test_list_input_needs_protocol(self, input_file):
        assert main(["--input", str(input_file)]) == EXIT_CONFIG_ERROR

    def test_unknown_protocol(self, input_file):
        assert main(["--input", str(input_file), "--protocol", "tornado"]) == EXIT_CONFIG_ERROR

    def test_missing_file(self, tmp_path):
        assert main(["--input", str(tmp_path / "nope.json"), "--protocol", "privacy-cash"]) == (
            EXIT_CONFIG_ERROR
        )

    def test_invalid_settings(self, input_file):
        with patch.dict(os.environ, {"ANALYSIS_MAX_WORKERS": "0"}):
            code = main(["--input", str(input_file), "--protocol", "privacy-cash"])
        assert code == EXIT_CONFIG_ERROR

    def test_failed_protocol_exit_code(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"privacy-cash": [], "shadowwire": [42]}))

        code = main(["--input", str(path)])

        assert code == EXIT_ANALYSIS_ERROR
        assert set(json.loads(capsys.readouterr().out)) == {"privacy-cash"}


class TestLoadBatches:
    """Tests for input parsing."""

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_batches(path, None)

    def test_filter_mapping_by_protocol(self, tmp_path):
        path = tmp_path / "all.json"
        path.write_text(json.dumps({"privacy-cash": [], "shadowwire": []}))
        assert load_batches(path, "shadowwire") == {"shadowwire": []}

    def test_protocol_missing_from_mapping(self, tmp_path):
        path = tmp_path / "all.json"
        path.write_text(json.dumps({"privacy-cash": []}))
        with pytest.raises(ValueError, match="not present"):
            load_batches(path, "shadowwire")

    def test_mapping_values_must_be_lists(self, tmp_path):
        path = tmp_path / "all.json"
        path.write_text(json.dumps({"privacy-cash": {"tx": 1}}))
        with pytest.raises(ValueError, match="must be a list"):
            load_batches(path, None)

    def test_scalar_input(self, tmp_path):
        path = tmp_path / "n.json"
        path.write_text("42")
        with pytest.raises(ValueError):
            load_batches(path, None)
