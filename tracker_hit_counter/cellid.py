from typing import Dict, List, NamedTuple

import numpy as np


# SiD tracker readout, e.g. SiVertexBarrelHits in SiD_o2_v04
DEFAULT_ENCODING = "system:5,side:-2,layer:6,module:11,sensor:8"


class EncodingError(ValueError):
    pass


class BitField(NamedTuple):
    name: str
    offset: int
    width: int
    signed: bool

    @property
    def mask(self) -> int:
        return ((1 << self.width) - 1) << self.offset


class BitFieldCoder:
    """Decoder for DD4hep cell ID descriptors such as "system:5,layer:6,module:11".

    Each field is either ``name:width`` or ``name:offset:width``. Without an
    explicit offset a field starts where the previous one ends. A negative
    width marks a signed (two's complement) field.
    """

    def __init__(self, encoding: str):
        self._encoding = encoding
        self._fields: Dict[str, BitField] = {}
        self._parse(encoding)

    def _parse(self, encoding: str) -> None:
        if not isinstance(encoding, str) or not encoding.strip():
            raise EncodingError("empty cell ID encoding")
        used = 0
        next_offset = 0
        for token in encoding.split(","):
            parts = [p.strip() for p in token.split(":")]
            try:
                if len(parts) == 2:
                    name, offset, width = parts[0], next_offset, int(parts[1])
                elif len(parts) == 3:
                    name, offset, width = parts[0], int(parts[1]), int(parts[2])
                else:
                    raise ValueError(token)
            except ValueError:
                raise EncodingError(f"bad field description '{token}' in '{encoding}'") from None
            if not name:
                raise EncodingError(f"field without a name in '{encoding}'")
            if name in self._fields:
                raise EncodingError(f"duplicate field '{name}' in '{encoding}'")
            if width == 0 or offset < 0:
                raise EncodingError(f"field '{name}' has an invalid offset/width in '{encoding}'")
            bit_field = BitField(name, offset, abs(width), width < 0)
            if offset + bit_field.width > 64:
                raise EncodingError(f"field '{name}' does not fit into 64 bits in '{encoding}'")
            if used & bit_field.mask:
                raise EncodingError(f"field '{name}' overlaps another field in '{encoding}'")
            used |= bit_field.mask
            self._fields[name] = bit_field
            next_offset = offset + bit_field.width

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def field_names(self) -> List[str]:
        return list(self._fields)

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def field(self, name: str) -> BitField:
        try:
            return self._fields[name]
        except KeyError:
            raise KeyError(f"no field '{name}' in encoding '{self._encoding}'") from None

    def get(self, cell_id: int, name: str) -> int:
        bf = self.field(name)
        value = (int(cell_id) >> bf.offset) & ((1 << bf.width) - 1)
        if bf.signed and value & (1 << (bf.width - 1)):
            value -= 1 << bf.width
        return value

    def decode(self, cell_ids, name: str) -> np.ndarray:
        """Vectorised ``get`` over an array of cell IDs, returns int64."""
        bf = self.field(name)
        ids = np.asarray(cell_ids).astype(np.uint64, copy=False)
        raw = (ids >> np.uint64(bf.offset)) & np.uint64((1 << bf.width) - 1)
        if bf.width == 64:
            return raw.view(np.int64) if bf.signed else raw.astype(np.int64)
        values = raw.astype(np.int64)
        if bf.signed:
            sign_bit = np.int64(1 << (bf.width - 1))
            values = np.where(values & sign_bit, values - np.int64(1 << bf.width), values)
        return values
