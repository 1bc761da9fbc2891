import logging
import math

import pytest

from tracker_hit_counter.counters import LayerHitCounter, RunningStats, SystemHitCounter, scan_tracker_geometry
from tracker_hit_counter.geometry import detector_from_dict


def test_running_stats():
    stats = RunningStats()
    for x in [2, 4, 4, 4, 5, 5, 7, 9]:
        stats.push(x)
    assert stats.n == 8
    assert stats.mean == pytest.approx(5.0)
    assert stats.variance == pytest.approx(32.0 / 7.0)
    assert stats.std == pytest.approx(math.sqrt(32.0 / 7.0))


def test_running_stats_few_values():
    stats = RunningStats()
    assert stats.variance == 0.0
    stats.push(3.0)
    assert stats.mean == 3.0
    assert stats.std == 0.0


def test_layer_counter_runs():
    counter = LayerHitCounter(area=50.0)
    counter.add_hits(10)
    assert counter.run_hits == 10
    counter.end_run()
    assert counter.run_hits == 0
    counter.add_hits(30)
    counter.end_run()

    assert counter.n_hits == 40
    assert counter.n_runs == 2
    assert counter.hits_per_cm2 == pytest.approx(0.8)
    assert counter.mean_hits_per_run == pytest.approx(20.0)
    assert counter.std_hits_per_run == pytest.approx(math.sqrt(200.0))
    assert counter.mean_hits_per_cm2_per_run == pytest.approx(0.4)
    assert counter.std_hits_per_cm2_per_run == pytest.approx(math.sqrt(200.0) / 50.0)


def test_layer_counter_discard_run():
    counter = LayerHitCounter(area=50.0)
    counter.add_hits(10)
    counter.end_run()
    counter.add_hits(3)
    counter.discard_run()

    assert counter.n_hits == 10
    assert counter.run_hits == 0
    assert counter.n_runs == 1
    assert counter.mean_hits_per_run == pytest.approx(10.0)
    assert counter.std_hits_per_run == 0.0


def test_layer_counter_unknown_area():
    counter = LayerHitCounter()
    counter.add_hits(7)
    counter.end_run()
    assert not counter.area_known
    assert counter.n_hits == 7
    assert counter.hits_per_cm2 is None
    assert counter.mean_hits_per_cm2_per_run is None
    assert counter.std_hits_per_cm2_per_run is None


def test_system_counter_totals():
    system = SystemHitCounter("VXD", 1)
    system[0] = LayerHitCounter(area=100.0)
    system[1] = LayerHitCounter(area=300.0)
    system[2] = LayerHitCounter()
    system[0].add_hits(20)
    system[1].add_hits(20)
    system[2].add_hits(60)
    assert list(system) == [0, 1, 2]
    assert system.total_hits == 100
    assert system.known_area == pytest.approx(400.0)
    # hits in layers of unknown area do not enter the density
    assert system.hits_per_cm2 == pytest.approx(0.1)
    assert system.counter_for(5) is None


def test_scan_tracker_geometry(detector):
    counters = scan_tracker_geometry(detector)
    assert list(counters) == [1, 2, 4]

    vxd = counters[1]
    assert vxd.name == "VXD"
    assert not vxd.catch_all
    assert list(vxd) == [0, 1]
    assert vxd[0].area == pytest.approx(100.0)
    assert vxd[1].area == pytest.approx(200.0)

    assert counters[2][0].area == pytest.approx(300.0)

    tpc = counters[4]
    assert tpc.catch_all
    assert len(tpc) == 1
    assert tpc.known_area is None
    assert tpc.counter_for(17) is tpc.counter_for(0)


def test_scan_with_layer_offset(detector):
    counters = scan_tracker_geometry(detector, layer_offset=1)
    assert list(counters[1]) == [1, 2]
    assert counters[1].counter_for(0) is None
    assert counters[1].counter_for(1).area == pytest.approx(100.0)


def test_scan_logs_layer_dimensions(detector, caplog):
    caplog.set_level(logging.INFO)
    scan_tracker_geometry(detector)
    assert "Detector element 'VXD' of type 'tracker,barrel':" in caplog.text
    assert "Length of sensitive area: 100 mm" in caplog.text
    assert "Number of petals: 10" in caplog.text
    assert "Total sensitive area: 300 cm^2" in caplog.text
    assert "No layering extension in the detector element 'TPC'" in caplog.text


def test_scan_zero_area_layer(geometry_dict, caplog):
    geometry_dict["detectors"][1]["zplanar"]["layers"][1]["ladderNumber"] = 0
    counters = scan_tracker_geometry(detector_from_dict(geometry_dict))
    assert counters[1][1].area is None
    assert "non-positive sensitive area" in caplog.text


def test_scan_empty_layering_is_catch_all(geometry_dict):
    geometry_dict["detectors"][1]["zplanar"]["layers"] = []
    counters = scan_tracker_geometry(detector_from_dict(geometry_dict))
    assert counters[1].catch_all
