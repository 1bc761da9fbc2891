import json

import numpy as np
import pytest

from tracker_hit_counter import cli
from tracker_hit_counter.event import Event, HitCollection


def _fake_events(cell_id, per_file_hits):
    def fake_iter_file_events(path, branches, encoding, run_number, tree_name="events", step_size=0):
        hits = per_file_hits[path]
        for ievt, event_hits in enumerate(hits):
            event = Event(run_number=run_number, event_number=ievt)
            event.add_collection(HitCollection("SiVertexBarrelHits", "SimTrackerHit",
                                               np.array([cell_id(*h) for h in event_hits], dtype=np.uint64),
                                               encoding))
            yield event
    return fake_iter_file_events


def test_main_writes_report_and_plots(tmp_path, geometry_file, cell_id, monkeypatch):
    per_file_hits = {
        "a_seed_11.edm4hep.root": [[(1, 0), (1, 0)], [(1, 1)]],
        "b_seed_12.edm4hep.root": [[(1, 0)], [(2, 0), (4, 3)]],
    }
    monkeypatch.setattr(cli, "iter_file_events", _fake_events(cell_id, per_file_hits))
    report_path = tmp_path / "report.json"
    outdir = tmp_path / "plots"

    rc = cli.main([
        *per_file_hits,
        "--geometry", str(geometry_file),
        "--collections", "SiVertexBarrelHits",
        "--report-json", str(report_path),
        "--label", "C3-250",
        "--plot", "--outdir", str(outdir), "--formats", "png",
        "--log-level", "WARNING",
    ])
    assert rc == 0

    payload = json.loads(report_path.read_text(encoding="utf-8"))
    report = payload["C3-250"]
    assert report["runs"] == 2
    assert report["events"] == 4
    layer0 = report["subsystems"]["VXD"]["layers"]["0"]
    assert layer0["hits"] == 3
    assert layer0["mean_hits_per_run"] == 1.5
    assert report["subsystems"]["FTD"]["total_hits"] == 1
    assert report["subsystems"]["TPC"]["total_hits"] == 1
    assert (outdir / "hit_density_VXD.png").exists()


def test_main_reports_read_failures(tmp_path, geometry_file, cell_id, monkeypatch, caplog):
    good = _fake_events(cell_id, {"a_seed_1.edm4hep.root": [[(1, 0)] * 10]})

    def fake(path, branches, encoding, run_number, tree_name="events", step_size=0):
        if path == "a_seed_1.edm4hep.root":
            yield from good(path, branches, encoding, run_number)
            return
        # one event is read before the file turns out to be broken
        yield from _fake_events(cell_id, {path: [[(1, 0)] * 4]})(path, branches, encoding, run_number)
        raise OSError("file is truncated")

    monkeypatch.setattr(cli, "iter_file_events", fake)
    report_path = tmp_path / "report.json"
    rc = cli.main(["a_seed_1.edm4hep.root", "b_seed_2.edm4hep.root", "--geometry", str(geometry_file),
                   "--collections", "SiVertexBarrelHits", "--report-json", str(report_path), "--label", "x"])
    assert rc == 0
    assert "Failed reading b_seed_2.edm4hep.root: file is truncated" in caplog.text
    assert "Discarding run 2" in caplog.text

    report = json.loads(report_path.read_text(encoding="utf-8"))["x"]
    assert report["runs"] == 1
    assert report["events"] == 1
    layer0 = report["subsystems"]["VXD"]["layers"]["0"]
    assert layer0["hits"] == 10
    assert layer0["mean_hits_per_run"] == 10
    assert layer0["std_hits_per_run"] == 0


def test_main_base_dir_discovery(tmp_path, geometry_file, cell_id, monkeypatch):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    for seed in (5, 2):
        (data_dir / f"sim_seed_{seed}.edm4hep.root").write_text("", encoding="utf-8")
    seen = []

    def fake(path, branches, encoding, run_number, tree_name="events", step_size=0):
        seen.append((run_number, path.split("/")[-1], tree_name))
        return iter(())

    monkeypatch.setattr(cli, "iter_file_events", fake)
    cli.main(["--geometry", str(geometry_file), "--base-dir", str(data_dir), "--tree", "EVENT", "--max-files", "1"])
    assert seen == [(2, "sim_seed_2.edm4hep.root", "EVENT")]


def test_main_without_inputs(geometry_file):
    with pytest.raises(SystemExit, match="No input files"):
        cli.main(["--geometry", str(geometry_file)])


def test_main_bad_geometry(tmp_path):
    path = tmp_path / "geometry.json"
    path.write_text('{"detectors": [{"name": "VXD"}]}', encoding="utf-8")
    with pytest.raises(SystemExit, match="Cannot load geometry"):
        cli.main(["x.edm4hep.root", "--geometry", str(path)])


def test_main_bad_encoding(geometry_file):
    with pytest.raises(SystemExit, match="Bad --encoding"):
        cli.main(["x.edm4hep.root", "--geometry", str(geometry_file), "--encoding", "system:5,system:2"])
