import json
from pathlib import Path

from tripmax.analyze import trip_analyze
from tripmax.pipeline import sweep
from tripmax.sql.store import Store


def _route_file(tmp_path: Path, make_payload) -> Path:
    p = tmp_path / "drive.json"
    p.write_text(json.dumps(make_payload([10.0, 60.0, 120.0])), encoding="utf-8")
    return p


def test_analyze_tsv(tmp_path, make_payload, capsys):
    path = _route_file(tmp_path, make_payload)
    assert trip_analyze.main([str(path), "--tsv"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0] == trip_analyze.TSV_HEADER
    cols = out[1].split("\t")
    assert cols[0] == str(path)
    assert cols[1] == "3"
    assert cols[3] == "20.0"
    assert cols[5] == "120.000"


def test_analyze_report_with_histogram(tmp_path, make_payload, sample_gpx_path, capsys):
    path = _route_file(tmp_path, make_payload)
    assert trip_analyze.main([str(path), str(sample_gpx_path), "--histogram"]) == 0

    out = capsys.readouterr().out
    assert "max speed m/s : 120.000" in out
    assert "200-250 : 0.2" in out
    assert str(sample_gpx_path) in out


def test_analyze_bad_file_sets_exit_code(tmp_path, capsys):
    bad = tmp_path / "notes.txt"
    bad.write_text("hello", encoding="utf-8")
    assert trip_analyze.main([str(bad), str(tmp_path / "missing.json")]) == 1
    assert "unsupported route file type" in capsys.readouterr().err


def test_analyze_without_files_and_empty_routes_root(tmp_path):
    assert trip_analyze.main(["--routes-root", str(tmp_path)]) == 1


def test_sweep_seeds_and_exits_clean(tmp_path):
    db = tmp_path / "sweep.sqlite"
    assert sweep.main(["--db", str(db), "--seed"]) == 0
    assert len(Store(db).load_achievement_definitions()) == 6
