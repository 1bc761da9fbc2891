import logging
import math
from typing import Dict, Iterator, Optional

from .geometry import Detector, MissingExtension, ZDiskPetalsData, ZPlanarData
from .units import cm2, mm


class RunningStats:
    """Welford running mean/variance."""

    def __init__(self):
        self.n = 0
        self.mean = 0.0
        self._m2 = 0.0

    def push(self, x: float) -> None:
        self.n += 1
        delta = x - self.mean
        self.mean += delta / self.n
        self._m2 += delta * (x - self.mean)

    @property
    def variance(self) -> float:
        if self.n < 2:
            return 0.0
        return self._m2 / (self.n - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)


class LayerHitCounter:
    def __init__(self, area: Optional[float] = None):
        # area in dd4hep units (cm^2); None when unknown
        self.area = area
        self._n_hits = 0
        self._run_hits = 0
        self.run_stats = RunningStats()

    @property
    def area_known(self) -> bool:
        return self.area is not None

    @property
    def n_hits(self) -> int:
        return self._n_hits

    @property
    def run_hits(self) -> int:
        return self._run_hits

    def add_hits(self, n: int = 1) -> None:
        self._n_hits += int(n)
        self._run_hits += int(n)

    def end_run(self) -> None:
        self.run_stats.push(float(self._run_hits))
        self._run_hits = 0

    def discard_run(self) -> None:
        # drop the open run entirely, as if it had never been seen
        self._n_hits -= self._run_hits
        self._run_hits = 0

    @property
    def n_runs(self) -> int:
        return self.run_stats.n

    @property
    def hits_per_cm2(self) -> Optional[float]:
        if self.area is None:
            return None
        return self._n_hits / (self.area / cm2)

    @property
    def mean_hits_per_run(self) -> float:
        return self.run_stats.mean

    @property
    def std_hits_per_run(self) -> float:
        return self.run_stats.std

    @property
    def mean_hits_per_cm2_per_run(self) -> Optional[float]:
        if self.area is None:
            return None
        return self.run_stats.mean / (self.area / cm2)

    @property
    def std_hits_per_cm2_per_run(self) -> Optional[float]:
        if self.area is None:
            return None
        return self.run_stats.std / (self.area / cm2)


class SystemHitCounter:
    """Layer index -> LayerHitCounter for one subsystem.

    A catch-all subsystem (no usable layering) has a single counter that takes
    every hit of the subsystem whatever its layer field says.
    """

    def __init__(self, name: str, system_id: int, catch_all: bool = False):
        self.name = name
        self.id = system_id
        self.catch_all = catch_all
        self.layers: Dict[int, LayerHitCounter] = {}

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self.layers))

    def __getitem__(self, layer: int) -> LayerHitCounter:
        return self.layers[layer]

    def __setitem__(self, layer: int, counter: LayerHitCounter) -> None:
        self.layers[layer] = counter

    def items(self):
        return [(k, self.layers[k]) for k in self]

    def counter_for(self, layer: int) -> Optional[LayerHitCounter]:
        if self.catch_all:
            return next(iter(self.layers.values()), None)
        return self.layers.get(layer)

    @property
    def total_hits(self) -> int:
        return sum(c.n_hits for c in self.layers.values())

    @property
    def known_area(self) -> Optional[float]:
        areas = [c.area for c in self.layers.values() if c.area is not None]
        if not areas:
            return None
        return sum(areas)

    @property
    def hits_per_cm2(self) -> Optional[float]:
        area = self.known_area
        if area is None:
            return None
        hits = sum(c.n_hits for c in self.layers.values() if c.area is not None)
        return hits / (area / cm2)

    def end_run(self) -> None:
        for counter in self.layers.values():
            counter.end_run()

    def discard_run(self) -> None:
        for counter in self.layers.values():
            counter.discard_run()


HitCounterMap = Dict[int, SystemHitCounter]


def _checked_area(area: float, name: str, ilay: int) -> Optional[float]:
    if area > 0:
        return area
    logging.warning("Layer %d of '%s' has non-positive sensitive area (%g cm^2); area treated as unknown.",
                    ilay, name, area / cm2)
    return None


def _add_zplanar_layers(counter: SystemHitCounter, layering: ZPlanarData, layer_offset: int) -> None:
    for ilay, layer in enumerate(layering.layers):
        area = layer.sensitive_area
        logging.info("  Layer %d:", ilay)
        logging.info("    Length of sensitive area: %g mm", layer.length_sensitive / mm)
        logging.info("    Width of sensitive area: %g mm", layer.width_sensitive / mm)
        logging.info("    Number of ladders: %d", layer.ladder_number)
        logging.info("    Total sensitive area: %g cm^2", area / cm2)
        counter[ilay + layer_offset] = LayerHitCounter(_checked_area(area, counter.name, ilay))


def _add_zdisk_layers(counter: SystemHitCounter, layering: ZDiskPetalsData, layer_offset: int) -> None:
    for ilay, layer in enumerate(layering.layers):
        area = layer.sensitive_area
        logging.info("  Layer %d:", ilay)
        logging.info("    Length of sensitive area: %g mm", layer.length_sensitive / mm)
        logging.info("    Inner width of sensitive area: %g mm", layer.width_inner_sensitive / mm)
        logging.info("    Outer width of sensitive area: %g mm", layer.width_outer_sensitive / mm)
        logging.info("    Number of petals: %d", layer.petal_number)
        logging.info("    Total sensitive area: %g cm^2", area / cm2)
        counter[ilay + layer_offset] = LayerHitCounter(_checked_area(area, counter.name, ilay))


def scan_tracker_geometry(detector: Detector, layer_offset: int = 0,
                          detector_type: str = "tracker") -> HitCounterMap:
    """Build one SystemHitCounter per detector element of the given type.

    Layering comes from a ZPlanarData extension, else a ZDiskPetalsData one;
    elements with neither (or with an empty layer list) get a catch-all
    counter of unknown area. Counter keys are extension layer indices shifted
    by ``layer_offset`` so they match the decoded ``layer`` field.
    """
    counters: HitCounterMap = {}
    for element in detector.detectors(detector_type):
        logging.info("*" * 69)
        logging.info("Detector element '%s' of type '%s':", element.name, element.type)
        counter = SystemHitCounter(element.name, element.id)
        counters[element.id] = counter

        try:
            logging.debug("Trying ZPlanarData.")
            _add_zplanar_layers(counter, element.extension(ZPlanarData), layer_offset)
        except MissingExtension as exc:
            logging.debug("Caught exception %s", exc)
            try:
                logging.debug("Trying ZDiskPetalsData.")
                _add_zdisk_layers(counter, element.extension(ZDiskPetalsData), layer_offset)
            except MissingExtension as exc1:
                logging.debug("Caught exception %s", exc1)

        if not counter.layers:
            logging.info("  No layering extension in the detector element '%s'. Total hits will be counted.",
                         element.name)
            counter.catch_all = True
            counter[layer_offset] = LayerHitCounter()

        logging.info("    Added %d hit counters for ID=%d.", len(counter), element.id)
    return counters
