"""
Rule Table: operator type tag -> lowering function.

Rules are registered once at import time with the ``@rule`` decorator and
called as ``fn(model, node, inputs, outputs)``. ``inputs`` are the buffers
bound to the node's input tensors, ``outputs`` the buffers for its output
tensors (``None`` for an unused leaf output). A rule signals an unsupported
configuration by raising UnsupportedLayerError; any other exception is a rule
execution error.
"""

from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional

if TYPE_CHECKING:
    from ..model import Data, Model
    from ..source import SourceNode

Rule = Callable[["Model", "SourceNode", List["Data"], List[Optional["Data"]]], None]

CUSTOM = "Custom"

_rule_registry: Dict[str, Rule] = {}

RULE_TABLE: Mapping[str, Rule] = MappingProxyType(_rule_registry)


def rule(*layer_types: str):
    """Register the decorated function as the rule for ``layer_types``."""
    if not layer_types:
        raise TypeError("@rule needs at least one layer type")

    def decorator(fn: Rule) -> Rule:
        for layer_type in layer_types:
            if layer_type in _rule_registry:
                raise ValueError(
                    f"rule for '{layer_type}' is already registered "
                    f"({_rule_registry[layer_type].__name__})"
                )
            _rule_registry[layer_type] = fn
        return fn

    return decorator


def get_rule(layer_type: str) -> Optional[Rule]:
    return _rule_registry.get(layer_type)


def supported_types() -> List[str]:
    return sorted(_rule_registry)


def layer_check(condition: bool, message: str) -> None:
    """Raise ValueError with ``message`` unless ``condition`` holds."""
    if not condition:
        raise ValueError(message)


# Populate the table
from . import activations, custom, elementwise, normalization, tensor_ops  # noqa: E402,F401
