import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .cellid import BitFieldCoder, EncodingError
from .counters import HitCounterMap, scan_tracker_geometry
from .event import SIM_TRACKER_HIT, DataNotAvailable, Event, HitCollection, RunHeader
from .geometry import Detector
from .report import build_report, log_report


DEFAULT_TRK_HIT_COLLECTIONS = [
    "VXDCollection",
    "SITCollection",
    "FTDCollection",
    "TPCCollection",
    "SETCollection",
]


@dataclass
class ProcessorParameters:
    trk_hit_collections: List[str] = field(default_factory=lambda: list(DEFAULT_TRK_HIT_COLLECTIONS))
    energy_threshold: float = 0.0
    layer_offset: int = 0
    detector_type: str = "tracker"

    def describe(self) -> List[str]:
        return [
            f"TrkHitCollections: {' '.join(self.trk_hit_collections)}",
            f"EnergyThreshold: {self.energy_threshold} GeV",
            f"LayerOffset: {self.layer_offset}",
            f"DetectorType: {self.detector_type}",
        ]


class TrackerHitCounter:
    """Counts hits in tracker detector elements and reports number of hits per unit area."""

    name = "TrackerHitCounter"

    def __init__(self, parameters: Optional[ProcessorParameters] = None):
        self.parameters = parameters or ProcessorParameters()
        self._counters: Optional[HitCounterMap] = None
        self._detector_name = ""
        self._run_open = False
        self._current_run: Optional[int] = None
        self._n_runs = 0
        self._n_events = 0
        self._run_events = 0
        self._decoders = {}
        self._missing_warned = set()

    @property
    def counters(self) -> HitCounterMap:
        if self._counters is None:
            raise RuntimeError(f"{self.name}: init() has not been called")
        return self._counters

    @property
    def n_runs(self) -> int:
        return self._n_runs

    @property
    def n_events(self) -> int:
        return self._n_events

    @property
    def current_run(self) -> Optional[int]:
        return self._current_run

    def init(self, detector: Detector) -> None:
        logging.info("%s parameters:", self.name)
        for line in self.parameters.describe():
            logging.info("  %s", line)
        self._detector_name = detector.name
        self._counters = scan_tracker_geometry(
            detector,
            layer_offset=self.parameters.layer_offset,
            detector_type=self.parameters.detector_type,
        )
        self._run_open = False
        self._current_run = None
        self._n_runs = 0
        self._n_events = 0
        self._run_events = 0
        self._missing_warned.clear()

    def _close_run(self) -> None:
        if not self._run_open:
            return
        for system in self.counters.values():
            system.end_run()
        self._n_runs += 1
        self._run_open = False
        self._run_events = 0

    def _open_run(self, run_number: int) -> None:
        self._close_run()
        self._current_run = run_number
        self._run_open = True

    def abort_run(self) -> None:
        """Forget the open run: its hits and events are removed and it is not counted."""
        if not self._run_open:
            return
        logging.warning("Discarding run %d (%d event(s) read).", self._current_run, self._run_events)
        for system in self.counters.values():
            system.discard_run()
        self._n_events -= self._run_events
        self._run_events = 0
        self._run_open = False

    def process_run_header(self, run: RunHeader) -> None:
        if self._counters is None:
            raise RuntimeError(f"{self.name}: init() has not been called")
        logging.debug("Starting run %d", run.run_number)
        self._open_run(run.run_number)

    def _decoder(self, encoding: str) -> BitFieldCoder:
        decoder = self._decoders.get(encoding)
        if decoder is None:
            decoder = BitFieldCoder(encoding)
            self._decoders[encoding] = decoder
        return decoder

    def process_event(self, event: Event) -> None:
        counters = self.counters
        if not self._run_open:
            self._open_run(event.run_number)
        self._n_events += 1
        self._run_events += 1

        for collname in self.parameters.trk_hit_collections:
            logging.debug("Looking into collection %s", collname)
            try:
                col = event.get_collection(collname)
            except DataNotAvailable:
                if collname in self._missing_warned:
                    logging.debug("Collection %s not found in run %d event %d.",
                                  collname, event.run_number, event.event_number)
                else:
                    self._missing_warned.add(collname)
                    logging.warning("Collection %s not found in run %d event %d. Skipping collection.",
                                    collname, event.run_number, event.event_number)
                continue
            if col.type_name != SIM_TRACKER_HIT:
                logging.warning("Collection %s does not contain SimTrackerHits! Skipping collection.", collname)
                continue
            self._count_collection(col, counters)

    def _count_collection(self, col: HitCollection, counters: HitCounterMap) -> None:
        if len(col) == 0:
            return
        try:
            decoder = self._decoder(col.encoding)
        except EncodingError as exc:
            logging.warning("Collection %s has an unusable cell ID encoding (%s). Skipping collection.",
                            col.name, exc)
            return
        if "system" not in decoder or "layer" not in decoder:
            logging.warning("Cell ID encoding of collection %s has no system/layer fields. Skipping collection.",
                            col.name)
            return

        cell_ids = col.cell_ids
        threshold = self.parameters.energy_threshold
        if col.edep is not None and threshold > 0.0:
            cell_ids = cell_ids[col.edep >= threshold]
            if cell_ids.size == 0:
                return

        systems = decoder.decode(cell_ids, "system")
        layers = decoder.decode(cell_ids, "layer")
        for nsys in np.unique(systems):
            in_system = systems == nsys
            system = counters.get(int(nsys))
            if system is None:
                logging.warning("%d hit(s) in collection %s belong to system #%d that is not analysed.",
                                int(in_system.sum()), col.name, nsys)
                continue
            logging.debug("Found %d hit(s) decoded to system #%d", int(in_system.sum()), nsys)

            if system.catch_all:
                system.counter_for(0).add_hits(int(in_system.sum()))
                continue

            found_layers, counts = np.unique(layers[in_system], return_counts=True)
            for nlayer, n in zip(found_layers, counts):
                counter = system.counter_for(int(nlayer))
                if counter is None:
                    logging.error(
                        "%d hit(s) in system ID=%d belong to layer number %d. Out of range! "
                        "This should only happen if the xml detector description "
                        "is different than the one used in the simulation.",
                        int(n), system.id, nlayer,
                    )
                    continue
                counter.add_hits(int(n))

    def check(self, event: Event) -> None:
        pass

    def end(self) -> dict:
        """Close the last run, log the report and release the counters."""
        self._close_run()
        report = build_report(self.counters, self._n_runs, self._n_events, self._detector_name)
        log_report(report)
        self._counters = None
        self._decoders.clear()
        return report
