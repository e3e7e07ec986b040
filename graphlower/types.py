"""
Target Type System

Defines:
- DataType: element types understood by the target (fp16, fp32, u8, s32, ...)
- DataUsage: role of a buffer in the target graph
- DataDesc: element type plus dims of a buffer
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class DataType(str, Enum):
    """Element types of source tensors and target buffers."""

    FP16 = "fp16"
    FP32 = "fp32"
    U8 = "u8"
    S32 = "s32"

    # Only valid in the source graph, normalized to S32 before lowering
    I64 = "i64"
    U64 = "u64"
    U32 = "u32"
    BOOL = "bool"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype({
            DataType.FP16: np.float16,
            DataType.FP32: np.float32,
            DataType.U8: np.uint8,
            DataType.S32: np.int32,
            DataType.I64: np.int64,
            DataType.U64: np.uint64,
            DataType.U32: np.uint32,
            DataType.BOOL: np.bool_,
        }[self])

    @classmethod
    def from_string(cls, s: str) -> "DataType":
        """Parse a type from its name, accepting a few common aliases."""
        aliases = {
            "f16": "fp16",
            "float16": "fp16",
            "f32": "fp32",
            "float32": "fp32",
            "i32": "s32",
            "int32": "s32",
            "uint8": "u8",
            "int64": "i64",
            "boolean": "bool",
        }
        s = s.lower()
        s = aliases.get(s, s)
        for dtype in cls:
            if dtype.value == s:
                return dtype
        raise ValueError(f"Unknown data type: {s}")

    def is_target_native(self) -> bool:
        return self in (DataType.FP16, DataType.FP32, DataType.U8, DataType.S32)


class DataUsage(str, Enum):
    """Role of a buffer in the target graph."""

    INPUT = "Input"
    OUTPUT = "Output"
    INTERMEDIATE = "Intermediate"
    CONST = "Const"
    FAKE = "Fake"


Dims = Tuple[Optional[int], ...]


@dataclass(frozen=True)
class DataDesc:
    """Element type and dims of a buffer. A ``None`` dim is dynamic."""

    type: DataType = DataType.FP16
    dims: Dims = ()

    @property
    def num_dims(self) -> int:
        return len(self.dims)

    def with_type(self, type: DataType) -> "DataDesc":
        return replace(self, type=type)

    def __str__(self) -> str:
        dims = "x".join("?" if d is None else str(d) for d in self.dims)
        return f"{self.type.value}[{dims}]"
