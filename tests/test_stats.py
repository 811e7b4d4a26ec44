"""Tests for the batch statistics driver."""

import io
import sys

import numpy as np
import pytest

from darwin import ConfigError
from darwin_stats import CAPPED, CSV_HEADER, format_report, main, run_batch, summarize


def test_run_batch_counts_and_csv():
    buf = io.StringIO()
    rounds = run_batch(5, rows=2, cols=2, seed=3, csv_fh=buf)

    assert rounds.shape == (5,)
    assert np.all(rounds > 0)

    lines = buf.getvalue().splitlines()
    assert lines[0] + "\n" == CSV_HEADER
    assert len(lines) == 6
    assert lines[1] == f"0,{rounds[0]}"


def test_run_batch_reproducible():
    a = run_batch(4, rows=4, cols=4, seed=8)
    b = run_batch(4, rows=4, cols=4, seed=8)
    assert np.array_equal(a, b)


def test_run_batch_rejects_bad_config():
    with pytest.raises(ConfigError):
        run_batch(0)
    with pytest.raises(ConfigError):
        run_batch(1, rows=3, cols=3)


def test_summarize():
    s = summarize(np.array([10, 20, 30, 40]))
    assert s["runs"] == 4
    assert s["min"] == 10
    assert s["max"] == 40
    assert s["mean"] == pytest.approx(25.0)
    assert s["p50"] == pytest.approx(25.0)


def test_format_report():
    text = format_report(summarize(np.array([5, 7])))
    assert "Min:  5" in text
    assert "Max:  7" in text
    assert "Avg:  6.0" in text


def test_capped_runs_are_recorded_and_batch_continues():
    buf = io.StringIO()
    rounds = run_batch(3, rows=10, cols=10, seed=1, max_steps=5, csv_fh=buf)

    assert rounds.tolist() == [CAPPED] * 3
    assert buf.getvalue().splitlines()[1:] == [f"{i},{CAPPED}" for i in range(3)]


def test_summary_leaves_out_capped_runs():
    s = summarize(np.array([10, CAPPED, 30]))
    assert s["runs"] == 3
    assert s["capped"] == 1
    assert s["min"] == 10
    assert s["max"] == 30
    assert s["mean"] == pytest.approx(20.0)
    assert "Capped: 1" in format_report(s)


def test_report_when_every_run_is_capped():
    text = format_report(summarize(np.array([CAPPED, CAPPED])))
    assert "Capped: 2" in text
    assert "No run finished" in text
    assert "Min" not in text


def test_rejects_non_positive_cap():
    with pytest.raises(ConfigError):
        run_batch(1, rows=2, cols=2, max_steps=0)


def test_cli_reports_capped_batch(monkeypatch, capsys, tmp_path):
    out_csv = tmp_path / "rounds.csv"
    monkeypatch.setattr(sys, "argv", [
        "darwin-stats", "-n", "3", "--max-steps", "5", "--seed", "1", "--csv", str(out_csv),
    ])
    main()

    out = capsys.readouterr().out
    assert "Runs: 3" in out
    assert "Capped: 3" in out
    assert out_csv.read_text(encoding="utf-8").splitlines()[0] == CSV_HEADER.strip()
