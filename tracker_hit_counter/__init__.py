# tracker_hit_counter: per-layer hit counts and hit densities of tracker subsystems
from .cellid import BitFieldCoder, EncodingError
from .counters import LayerHitCounter, RunningStats, SystemHitCounter, scan_tracker_geometry
from .event import DataNotAvailable, Event, HitCollection, RunHeader
from .geometry import Detector, DetElement, GeometryError, load_detector
from .processor import ProcessorParameters, TrackerHitCounter

__all__ = [
    "BitFieldCoder",
    "EncodingError",
    "LayerHitCounter",
    "RunningStats",
    "SystemHitCounter",
    "scan_tracker_geometry",
    "DataNotAvailable",
    "Event",
    "HitCollection",
    "RunHeader",
    "Detector",
    "DetElement",
    "GeometryError",
    "load_detector",
    "ProcessorParameters",
    "TrackerHitCounter",
]
