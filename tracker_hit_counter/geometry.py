"""Minimal detector description used by the hit counter.

The geometry is read from a JSON file shaped like::

    {
      "name": "SiD_o2_v04",
      "detectors": [
        {"name": "SiVertexBarrel", "id": 1, "type": ["tracker", "barrel"],
         "zplanar": {"layers": [
            {"zHalfSensitive": "63*mm", "widthSensitive": "9.8*mm", "ladderNumber": 12}
         ]}},
        {"name": "SiVertexEndcap", "id": 2, "type": "tracker",
         "zdisk_petals": {"layers": [
            {"lengthSensitive": "60*mm", "widthInnerSensitive": "10*mm",
             "widthOuterSensitive": "30*mm", "petalNumber": 16}
         ]}},
        {"name": "BeamPipe", "id": 0, "type": "passive"}
      ]
    }

Lengths are either plain numbers in cm (the dd4hep base unit) or strings
carrying a unit, see ``units.parse_quantity``.
"""
import json
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Tuple, Type

from .units import parse_quantity


class GeometryError(ValueError):
    pass


class MissingExtension(LookupError):
    pass


@dataclass(frozen=True)
class ZPlanarLayer:
    z_half_sensitive: float
    width_sensitive: float
    ladder_number: int

    @property
    def length_sensitive(self) -> float:
        return 2.0 * self.z_half_sensitive

    @property
    def sensitive_area(self) -> float:
        return self.length_sensitive * self.width_sensitive * self.ladder_number


@dataclass(frozen=True)
class ZDiskPetalsLayer:
    length_sensitive: float
    width_inner_sensitive: float
    width_outer_sensitive: float
    petal_number: int

    @property
    def sensitive_area(self) -> float:
        # trapezoidal petals
        return (
            self.length_sensitive
            * (self.width_inner_sensitive + self.width_outer_sensitive)
            * self.petal_number
            / 2.0
        )


@dataclass(frozen=True)
class ZPlanarData:
    layers: Tuple[ZPlanarLayer, ...] = ()


@dataclass(frozen=True)
class ZDiskPetalsData:
    layers: Tuple[ZDiskPetalsLayer, ...] = ()


@dataclass
class DetElement:
    name: str
    id: int
    type_flags: Tuple[str, ...] = ()
    extensions: Dict[type, object] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return ",".join(self.type_flags)

    def is_type(self, flag: str) -> bool:
        return flag in self.type_flags

    def extension(self, kind: Type):
        """Return the extension of the requested class, like DetElement::extension<T>()."""
        try:
            return self.extensions[kind]
        except KeyError:
            raise MissingExtension(
                f"detector element '{self.name}' has no {kind.__name__} extension"
            ) from None


@dataclass
class Detector:
    name: str
    elements: List[DetElement] = field(default_factory=list)

    def detectors(self, type_flag: str) -> List[DetElement]:
        return [el for el in self.elements if el.is_type(type_flag)]

    def element(self, name: str) -> DetElement:
        for el in self.elements:
            if el.name == name:
                return el
        raise KeyError(name)


def _require(entry: Mapping, key: str, where: str):
    if not isinstance(entry, Mapping):
        raise GeometryError(f"{where}: expected an object, got {type(entry).__name__}")
    if key not in entry:
        raise GeometryError(f"{where}: missing '{key}'")
    return entry[key]


def _length(entry: Mapping, key: str, where: str) -> float:
    try:
        return parse_quantity(_require(entry, key, where))
    except ValueError as exc:
        if isinstance(exc, GeometryError):
            raise
        raise GeometryError(f"{where}: bad '{key}': {exc}") from exc


def _count(entry: Mapping, key: str, where: str) -> int:
    value = _require(entry, key, where)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise GeometryError(f"{where}: '{key}' must be a non-negative integer, got {value!r}")
    return value


def _layers(block, where: str) -> Sequence[Mapping]:
    if not isinstance(block, Mapping) or not isinstance(block.get("layers"), list):
        raise GeometryError(f"{where}: expected an object with a 'layers' list")
    return block["layers"]


def _parse_zplanar(block, where: str) -> ZPlanarData:
    layers = []
    for ilay, entry in enumerate(_layers(block, where)):
        lw = f"{where} layer {ilay}"
        layers.append(ZPlanarLayer(
            z_half_sensitive=_length(entry, "zHalfSensitive", lw),
            width_sensitive=_length(entry, "widthSensitive", lw),
            ladder_number=_count(entry, "ladderNumber", lw),
        ))
    return ZPlanarData(tuple(layers))


def _parse_zdisk_petals(block, where: str) -> ZDiskPetalsData:
    layers = []
    for ilay, entry in enumerate(_layers(block, where)):
        lw = f"{where} layer {ilay}"
        layers.append(ZDiskPetalsLayer(
            length_sensitive=_length(entry, "lengthSensitive", lw),
            width_inner_sensitive=_length(entry, "widthInnerSensitive", lw),
            width_outer_sensitive=_length(entry, "widthOuterSensitive", lw),
            petal_number=_count(entry, "petalNumber", lw),
        ))
    return ZDiskPetalsData(tuple(layers))


_EXTENSION_PARSERS = {
    "zplanar": (ZPlanarData, _parse_zplanar),
    "zdisk_petals": (ZDiskPetalsData, _parse_zdisk_petals),
}


def _parse_element(entry, index: int) -> DetElement:
    if not isinstance(entry, Mapping):
        raise GeometryError(f"detector #{index}: expected an object, got {type(entry).__name__}")
    name = entry.get("name")
    if not isinstance(name, str) or not name:
        raise GeometryError(f"detector #{index}: missing 'name'")
    where = f"detector '{name}'"
    det_id = _require(entry, "id", where)
    if isinstance(det_id, bool) or not isinstance(det_id, int):
        raise GeometryError(f"{where}: 'id' must be an integer, got {det_id!r}")

    flags = entry.get("type", ())
    if isinstance(flags, str):
        flags = [f.strip() for f in flags.split(",") if f.strip()]
    elif not isinstance(flags, list) or not all(isinstance(f, str) for f in flags):
        raise GeometryError(f"{where}: 'type' must be a string or a list of strings")

    extensions: Dict[type, object] = {}
    for key, (kind, parser) in _EXTENSION_PARSERS.items():
        if key in entry:
            extensions[kind] = parser(entry[key], where)
    return DetElement(name=name, id=det_id, type_flags=tuple(flags), extensions=extensions)


def detector_from_dict(payload: Mapping) -> Detector:
    if not isinstance(payload, Mapping):
        raise GeometryError("geometry description must be a JSON object")
    entries = payload.get("detectors")
    if not isinstance(entries, list):
        raise GeometryError("geometry description needs a 'detectors' list")
    elements = [_parse_element(entry, i) for i, entry in enumerate(entries)]

    seen: Dict[int, str] = {}
    names = set()
    for el in elements:
        if el.id in seen:
            raise GeometryError(
                f"detector '{el.name}' reuses id {el.id} of '{seen[el.id]}'"
            )
        if el.name in names:
            raise GeometryError(f"detector name '{el.name}' is used more than once")
        seen[el.id] = el.name
        names.add(el.name)
    return Detector(name=str(payload.get("name", "")), elements=elements)


def load_detector(path: str) -> Detector:
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as exc:
        raise GeometryError(f"{path}: invalid JSON: {exc}") from exc
    return detector_from_dict(payload)
