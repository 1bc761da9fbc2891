from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np


SIM_TRACKER_HIT = "SimTrackerHit"


class DataNotAvailable(KeyError):
    pass


@dataclass
class RunHeader:
    run_number: int
    detector_name: str = ""
    description: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass
class HitCollection:
    """Hits of one collection in one event: cell IDs plus optional energy deposits (GeV)."""
    name: str
    type_name: str
    cell_ids: np.ndarray
    encoding: str
    edep: Optional[np.ndarray] = None

    def __post_init__(self):
        self.cell_ids = np.asarray(self.cell_ids, dtype=np.uint64).reshape(-1)
        if self.edep is not None:
            self.edep = np.asarray(self.edep, dtype=np.float64).reshape(-1)
            if self.edep.size != self.cell_ids.size:
                raise ValueError(
                    f"collection {self.name}: {self.edep.size} energy deposits "
                    f"for {self.cell_ids.size} hits"
                )

    def __len__(self) -> int:
        return int(self.cell_ids.size)


@dataclass
class Event:
    run_number: int
    event_number: int
    collections: Dict[str, HitCollection] = field(default_factory=dict)

    @property
    def collection_names(self) -> List[str]:
        return list(self.collections)

    def get_collection(self, name: str) -> HitCollection:
        try:
            return self.collections[name]
        except KeyError:
            raise DataNotAvailable(
                f"collection {name} not available in run {self.run_number} event {self.event_number}"
            ) from None

    def add_collection(self, collection: HitCollection) -> None:
        self.collections[collection.name] = collection
