"""
Data Registry: source tensor -> target buffer bindings.

A binding is one-to-one. The reverse direction (buffer -> origin tensor) is
kept on the buffer as a tensor name, never as a reference into the source
graph.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional, Union

from .errors import ConfigurationError, ErrorCode
from .source import SourceTensor

if TYPE_CHECKING:
    from .model import Data

TensorLike = Union[SourceTensor, str]


def _tensor_id(tensor: TensorLike) -> str:
    return tensor.name if isinstance(tensor, SourceTensor) else tensor


class DataRegistry:
    """Bindings between source tensors and target buffers."""

    def __init__(self):
        self._bindings: Dict[str, "Data"] = {}

    def resolve(self, tensor: TensorLike) -> Optional["Data"]:
        """Get the buffer bound to ``tensor``, or None if unbound."""
        return self._bindings.get(_tensor_id(tensor))

    def bind(self, data: "Data", tensor: TensorLike) -> None:
        """Bind ``data`` to ``tensor`` and record the origin on the buffer.

        Raises:
            ConfigurationError: the tensor is already bound to another buffer,
                or the buffer already originates from another tensor (E002).
        """
        tid = _tensor_id(tensor)
        current = self._bindings.get(tid)
        if current is not None and current is not data:
            raise ConfigurationError(
                f"tensor '{tid}' is already bound to buffer '{current.name}', "
                f"cannot bind it to '{data.name}'",
                code=ErrorCode.E002,
            )
        self.attach_origin(data, tid)
        self._bindings[tid] = data

    def attach_origin(self, data: "Data", tensor: TensorLike) -> None:
        """Record only the buffer -> tensor back-reference."""
        tid = _tensor_id(tensor)
        if data.orig_tensor is not None and data.orig_tensor != tid:
            raise ConfigurationError(
                f"buffer '{data.name}' already originates from tensor "
                f"'{data.orig_tensor}', cannot bind it to '{tid}'",
                code=ErrorCode.E002,
            )
        data.orig_tensor = tid

    def rebind(self, tensor: TensorLike, data: "Data") -> None:
        """Point ``tensor`` at a replacement buffer (conversion copies)."""
        tid = _tensor_id(tensor)
        self.attach_origin(data, tid)
        self._bindings[tid] = data

    def forget(self, data: "Data") -> None:
        """Drop every binding that points at ``data``."""
        for tid in [t for t, d in self._bindings.items() if d is data]:
            del self._bindings[tid]

    def clear(self) -> None:
        self._bindings.clear()

    def __contains__(self, tensor: TensorLike) -> bool:
        return _tensor_id(tensor) in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)
