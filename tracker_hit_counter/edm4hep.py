import glob
import logging
import os
import re
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import awkward as ak
import numpy as np
import uproot

from .cellid import DEFAULT_ENCODING
from .event import SIM_TRACKER_HIT, Event, HitCollection


TRACKER_BRANCHES = [
    "SiVertexBarrelHits",
    "SiVertexEndcapHits",
    "SiTrackerEndcapHits",
    "SiTrackerBarrelHits",
    "SiTrackerForwardHits",
]

DEFAULT_STEP_SIZE = 10000


def discover_files(base_dir: str, pattern: str) -> List[Tuple[int, str]]:
    """Return sorted list of (seed, filepath) discovered under base_dir.

    pattern is a glob relative to base_dir, e.g. "*seed_*.edm4hep.root";
    only files whose name carries "seed_<N>" and ends in ".edm4hep.root" are kept.
    """
    full_pattern = os.path.join(base_dir, pattern)
    files = glob.glob(full_pattern)
    out = []
    # Support filenames with optional suffix after the seed, e.g. ...seed_123.edm4hep.root or ...seed_123_MERGED.edm4hep.root
    seed_re = re.compile(r"seed_(\d+).*\.edm4hep\.root$")
    for fp in files:
        m = seed_re.search(fp)
        if not m:
            continue
        out.append((int(m.group(1)), fp))
    out.sort(key=lambda x: x[0])
    return out


def seed_from_path(path: str) -> Optional[int]:
    m = re.search(r"seed_(\d+)", os.path.basename(path))
    return int(m.group(1)) if m else None


def _available_branches(tree, branches: Sequence[str]) -> Tuple[List[str], Dict[str, Optional[str]]]:
    """Split requested collections into readable ones and note their energy leaf."""
    all_keys = set(tree.keys())
    present = []
    energy_leaves: Dict[str, Optional[str]] = {}
    for b in branches:
        if f"{b}.cellID" not in all_keys:
            logging.warning("Collection %s has no %s.cellID branch; skipping it.", b, b)
            continue
        present.append(b)
        energy_leaf = f"{b}.eDep"
        energy_leaves[b] = energy_leaf if energy_leaf in all_keys else None
    return present, energy_leaves


def read_hit_collections(tree, branches: Sequence[str],
                         entry_start: Optional[int] = None,
                         entry_stop: Optional[int] = None) -> Tuple[ak.Array, List[str], Dict[str, Optional[str]]]:
    """Read cellID (and eDep when present) of the requested collections for a range of events."""
    present, energy_leaves = _available_branches(tree, branches)
    names = []
    for b in present:
        names.append(f"{b}.cellID")
        if energy_leaves[b] is not None:
            names.append(energy_leaves[b])
    if not names:
        return ak.Array([]), present, energy_leaves
    arrays = tree.arrays(names, entry_start=entry_start, entry_stop=entry_stop, library="ak")
    return arrays, present, energy_leaves


def _per_event(jagged: ak.Array, dtype) -> List[np.ndarray]:
    counts = ak.to_numpy(ak.num(jagged, axis=1))
    flat = ak.to_numpy(ak.flatten(jagged, axis=None)).astype(dtype, copy=False)
    return np.split(flat, np.cumsum(counts)[:-1])


def events_from_arrays(arrays: ak.Array, branches: Sequence[str], encoding: str,
                       run_number: int, first_event: int = 0,
                       energy_leaves: Optional[Dict[str, Optional[str]]] = None) -> Iterator[Event]:
    """Turn per-event jagged cellID/eDep arrays into Event objects."""
    energy_leaves = energy_leaves or {}
    cell_ids = {b: _per_event(arrays[f"{b}.cellID"], np.uint64) for b in branches}
    edeps = {
        b: _per_event(arrays[leaf], np.float64) for b, leaf in energy_leaves.items()
        if leaf is not None and b in cell_ids
    }
    for i in range(len(arrays)):
        event = Event(run_number=run_number, event_number=first_event + i)
        for b in branches:
            event.add_collection(HitCollection(
                name=b,
                type_name=SIM_TRACKER_HIT,
                cell_ids=cell_ids[b][i],
                encoding=encoding,
                edep=edeps[b][i] if b in edeps else None,
            ))
        yield event


def iter_file_events(path: str, branches: Sequence[str] = TRACKER_BRANCHES,
                     encoding: str = DEFAULT_ENCODING, run_number: int = 0,
                     tree_name: str = "events", step_size: int = DEFAULT_STEP_SIZE) -> Iterator[Event]:
    """Yield the events of one EDM4hep file, reading it in chunks of step_size entries."""
    with uproot.open(path) as f:
        tree = f[tree_name]
        num_entries = tree.num_entries
        readable, _ = _available_branches(tree, branches)
        step = max(1, min(step_size, num_entries))
        for start in range(0, num_entries, step):
            stop = min(start + step, num_entries)
            arrays, present, energy_leaves = read_hit_collections(tree, readable, start, stop)
            if not present:
                # nothing readable; still emit empty events so they are counted
                for ievt in range(start, stop):
                    yield Event(run_number=run_number, event_number=ievt)
                continue
            yield from events_from_arrays(arrays, present, encoding, run_number,
                                          first_event=start, energy_leaves=energy_leaves)
