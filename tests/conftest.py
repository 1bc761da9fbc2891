import json

import pytest

from tracker_hit_counter.geometry import detector_from_dict


GEOMETRY = {
    "name": "TestDetector",
    "detectors": [
        {"name": "BeamPipe", "id": 0, "type": "passive"},
        {
            "name": "VXD", "id": 1, "type": ["tracker", "barrel"],
            "zplanar": {"layers": [
                # 10 cm x 1 cm x 10 ladders = 100 cm^2
                {"zHalfSensitive": "50*mm", "widthSensitive": "10*mm", "ladderNumber": 10},
                # 10 cm x 2 cm x 10 ladders = 200 cm^2
                {"zHalfSensitive": 5, "widthSensitive": 2, "ladderNumber": 10},
            ]},
        },
        {
            "name": "FTD", "id": 2, "type": "tracker,endcap",
            "zdisk_petals": {"layers": [
                # 10 cm x (2 + 4) cm x 10 petals / 2 = 300 cm^2
                {"lengthSensitive": "100*mm", "widthInnerSensitive": "2*cm",
                 "widthOuterSensitive": "40*mm", "petalNumber": 10},
            ]},
        },
        {"name": "TPC", "id": 4, "type": "tracker"},
    ],
}


def make_cell_id(system: int, layer: int, side: int = 0, module: int = 0) -> int:
    return system | ((side & 0b11) << 5) | (layer << 7) | (module << 13)


@pytest.fixture
def geometry_dict():
    return json.loads(json.dumps(GEOMETRY))


@pytest.fixture
def detector(geometry_dict):
    return detector_from_dict(geometry_dict)


@pytest.fixture
def geometry_file(tmp_path, geometry_dict):
    path = tmp_path / "geometry.json"
    path.write_text(json.dumps(geometry_dict), encoding="utf-8")
    return path


@pytest.fixture
def cell_id():
    return make_cell_id
