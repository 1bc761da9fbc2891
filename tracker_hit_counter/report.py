import json
import logging
import os
from typing import Iterable, List, Optional, Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from .units import cm2


BAR_COLOR = "#4c72b0"
BAR_EDGE_COLOR = "#1a1a1a"
BAR_LINEWIDTH = 0.7
ERROR_KW = {"elinewidth": 1.0, "capthick": 1.0, "capsize": 3.0}
AXIS_LABEL_FONTSIZE = 15
TICK_LABEL_FONTSIZE = 12
TITLE_FONTSIZE = 16


def _format_json_number(value: float) -> float | int:
    if not np.isfinite(value):  # type: ignore[arg-type]
        return 0.0
    rounded = float(round(value, 4))
    if abs(rounded - round(rounded)) < 1e-6:
        return int(round(rounded))
    return rounded


def _merge_nested_dict(target: dict, update: dict) -> None:
    for key, value in update.items():
        if isinstance(value, dict):
            node = target.setdefault(key, {})
            if isinstance(node, dict):
                _merge_nested_dict(node, value)
            else:
                target[key] = value
        else:
            target[key] = value


def _per_cm2(value: float, area: Optional[float]) -> Optional[float]:
    if area is None:
        return None
    return value / (area / cm2)


def build_report(counters, n_runs: int, n_events: int, detector_name: str = "") -> dict:
    """Nested summary of the counters; areas in cm^2, densities in hits/cm^2."""
    subsystems = {}
    for system in counters.values():
        layers = {}
        for ilay, counter in system.items():
            area = counter.area
            layers[str(ilay)] = {
                "hits": counter.n_hits,
                "area_cm2": None if area is None else area / cm2,
                "hits_per_cm2": counter.hits_per_cm2,
                "hits_per_cm2_per_event": (
                    _per_cm2(counter.n_hits / n_events, area) if n_events > 0 else None
                ),
                "runs": counter.n_runs,
                "mean_hits_per_run": counter.mean_hits_per_run,
                "std_hits_per_run": counter.std_hits_per_run,
                "mean_hits_per_cm2_per_run": counter.mean_hits_per_cm2_per_run,
                "std_hits_per_cm2_per_run": counter.std_hits_per_cm2_per_run,
            }
        known_area = system.known_area
        subsystems[system.name] = {
            "id": system.id,
            "catch_all": system.catch_all,
            "total_hits": system.total_hits,
            "area_cm2": None if known_area is None else known_area / cm2,
            "hits_per_cm2": system.hits_per_cm2,
            "layers": layers,
        }
    return {
        "detector": detector_name,
        "runs": n_runs,
        "events": n_events,
        "subsystems": subsystems,
    }


def _fmt(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.6g}"


def log_report(report: dict) -> None:
    logging.info("*" * 54)
    logging.info("REPORT: %d run(s), %d event(s)", report["runs"], report["events"])
    for name, system in report["subsystems"].items():
        logging.info("-" * 41)
        logging.info("Subsystem : %s", name)
        for ilay, layer in system["layers"].items():
            if system["catch_all"]:
                logging.info("  All layers: %d hits. (area unknown).", layer["hits"])
            else:
                logging.info("  Layer %s: %d hits. (%s hits/cm^2).", ilay, layer["hits"], _fmt(layer["hits_per_cm2"]))
            if layer["runs"] > 1:
                logging.info("    per run: %.6g +- %.6g hits, %s +- %s hits/cm^2",
                             layer["mean_hits_per_run"], layer["std_hits_per_run"],
                             _fmt(layer["mean_hits_per_cm2_per_run"]), _fmt(layer["std_hits_per_cm2_per_run"]))
        logging.info("  Total: %d hits. (%s hits/cm^2 over %s cm^2 of known area).",
                     system["total_hits"], _fmt(system["hits_per_cm2"]), _fmt(system["area_cm2"]))
    logging.info("*" * 54)


def _json_ready(node):
    if isinstance(node, dict):
        return {k: _json_ready(v) for k, v in node.items()}
    if isinstance(node, bool) or node is None or isinstance(node, str):
        return node
    if isinstance(node, (int, float, np.integer, np.floating)):
        return _format_json_number(float(node))
    return node


def write_report_json(path: str, report: dict, label: str) -> None:
    """Store the report under ``label``, keeping whatever else the file already holds."""
    output_payload = {label: _json_ready(report)}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                existing_payload = json.load(f)
            _merge_nested_dict(existing_payload, output_payload)
            output_payload = existing_payload
        except (OSError, ValueError) as exc:
            logging.warning("Failed to read existing report JSON (%s): %s", path, exc)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(output_payload, f, indent=2, sort_keys=True)
    logging.info("Wrote report JSON to %s", path)


def _parse_formats(fmt_list: Sequence[str]) -> List[str]:
    unique = []
    for item in fmt_list:
        if not item:
            continue
        value = item.lower().strip(".")
        if value and value not in unique:
            unique.append(value)
    return unique or ["png", "pdf"]


def _ensure_outdir(path: str) -> str:
    if not os.path.isdir(path):
        os.makedirs(path, exist_ok=True)
    return path


def plot_layer_densities(report: dict, outdir: str, formats: Iterable[str] = ("png", "pdf"),
                         dpi: int = 150) -> List[str]:
    """One bar chart per subsystem with per-run spread as error bars; returns written paths."""
    _ensure_outdir(outdir)
    formats = _parse_formats(list(formats))
    written = []
    for name, system in report["subsystems"].items():
        if system["catch_all"]:
            continue
        layer_items = [(k, v) for k, v in system["layers"].items() if v["hits_per_cm2"] is not None]
        if not layer_items:
            logging.info("No layer of %s has a known area; no density plot.", name)
            continue
        labels = [k for k, _ in layer_items]
        per_run = report["runs"] > 0
        value_key = "mean_hits_per_cm2_per_run" if per_run else "hits_per_cm2"
        values = np.array([v[value_key] for _, v in layer_items], dtype=np.float64)
        errors = np.array([v["std_hits_per_cm2_per_run"] or 0.0 for _, v in layer_items], dtype=np.float64)

        x_positions = np.arange(len(labels), dtype=np.float64)
        fig, ax = plt.subplots(figsize=(8.0, 5.0))
        ax.bar(
            x_positions,
            values,
            width=0.6,
            color=BAR_COLOR,
            edgecolor=BAR_EDGE_COLOR,
            linewidth=BAR_LINEWIDTH,
            yerr=errors,
            error_kw=ERROR_KW,
        )
        ax.set_xticks(x_positions)
        ax.set_xticklabels(labels)
        ax.set_xlabel("Layer", fontsize=AXIS_LABEL_FONTSIZE)
        ylabel = r"Hits/cm$^2$ per run" if per_run else r"Hits/cm$^2$"
        ax.set_ylabel(ylabel, fontsize=AXIS_LABEL_FONTSIZE)
        ax.tick_params(labelsize=TICK_LABEL_FONTSIZE)
        ax.grid(True, axis="y", linestyle="--", alpha=0.45)
        ax.set_title("Hit density", fontsize=TITLE_FONTSIZE, loc="left")
        ax.set_title(name, fontsize=TITLE_FONTSIZE, fontweight="bold", loc="right")
        fig.tight_layout(rect=(0.0, 0.0, 1.0, 0.98))

        for ext in formats:
            out_path = os.path.join(outdir, f"hit_density_{name}.{ext}")
            fig.savefig(out_path, dpi=dpi, bbox_inches="tight")
            written.append(out_path)
        plt.close(fig)
    return written
