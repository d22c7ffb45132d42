import json

from trailtemps.backend.config import TrailConfig
from trailtemps.offline import build_normals, migrate_ids, normalize_points

LEGACY_POINTS = [
    {"id": "GA_0", "state": "GA", "mile_est": 0.0, "lat": 34.6266, "lon": -84.1939},
    {"id": "GA_8_1", "state": "GA", "mile_est": 8.1, "lat": 34.67, "lon": -84.12},
]


def last_json(out):
    """Runners print an indented JSON block; return the last one."""
    start = out.rindex("\n{\n") + 1 if "\n{\n" in out else out.index("{")
    return json.loads(out[start:])


def test_migrate_ids_cli(tmp_path, write_doc, capsys, profile):
    points = write_doc(tmp_path / "points.json", LEGACY_POINTS)
    normals = write_doc(tmp_path / "hw.json", {"meta": {}, "points": [{"id": "GA_8_1", **profile(1, 0)}]})

    assert migrate_ids.main(["--points", str(points), "--normals", str(normals), "--dry-run"]) == 0
    summary = last_json(capsys.readouterr().out)
    assert summary["dry_run"] is True
    assert summary["points_changed"] == 2
    assert json.loads(points.read_text()) == LEGACY_POINTS

    assert migrate_ids.main(["--points", str(points), "--normals", str(normals)]) == 0
    summary = last_json(capsys.readouterr().out)
    assert summary["count_mismatch"] is True
    assert len(summary["backups"]) == 2
    assert json.loads(normals.read_text())["points"][0]["id"] == "at-main-mi0008100"


def test_migrate_ids_cli_fails_cleanly(tmp_path, write_doc, profile):
    points = write_doc(tmp_path / "points.json", LEGACY_POINTS)
    normals = write_doc(tmp_path / "hw.json", {"points": [{"id": "VA_1", **profile(1, 0)}]})
    before = points.read_text()
    assert migrate_ids.main(["--points", str(points), "--normals", str(normals)]) == 1
    assert points.read_text() == before


def test_normalize_points_cli(tmp_path, write_doc, capsys):
    points = write_doc(tmp_path / "points.json", LEGACY_POINTS)
    assert normalize_points.main(["--points", str(points)]) == 0
    assert last_json(capsys.readouterr().out)["records"] == 2
    assert [p["mile"] for p in json.loads(points.read_text())] == [0.0, 8.1]


def test_build_normals_run(tmp_path, write_doc, canonical_points, fake_archive, capsys):
    write_doc(tmp_path / "points.json", canonical_points)
    cfg = TrailConfig.from_env(
        getenv={}.get,
        points_path=tmp_path / "points.json",
        normals_path=tmp_path / "hw.json",
    )
    assert build_normals.run(cfg, max_points=2, client=fake_archive()) == 0
    summary = last_json(capsys.readouterr().out)
    assert summary["generated"] == 2
    assert summary["missing"] == 3


def test_build_normals_run_reports_fatal_errors(tmp_path, write_doc):
    write_doc(tmp_path / "points.json", {"rows": LEGACY_POINTS})
    cfg = TrailConfig(points_path=tmp_path / "points.json", normals_path=tmp_path / "hw.json")
    assert build_normals.run(cfg, client=object()) == 1


def test_planning_builder_refuses_canonical_points(tmp_path, write_doc, canonical_points):
    write_doc(tmp_path / "points.json", canonical_points)
    rc = build_normals.planning_main(["--points", str(tmp_path / "points.json"), "--normals", str(tmp_path / "pn.json")])
    assert rc == 1
    assert not (tmp_path / "pn.json").exists()


def test_parse_args_defaults():
    args = build_normals.parse_args(["--mode", "smoothed", "--start-date", "2018-01-01"])
    assert args.mode == "smoothed"
    assert args.order == "mile"
    assert args.start_date.isoformat() == "2018-01-01"
    assert args.max_points is None
