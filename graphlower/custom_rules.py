"""
Custom rules: declarative overrides of the built-in lowering rules.

Example description (YAML):
    rules:
      - type: Sigmoid
        where:
          mode: fast
        platforms: [MYRIAD_X]
        kernels:
          - entry: sigmoid_fast
            source: sigmoid.cl
            global_size: "X, Y, F"
            local_size: "1, 1, 1"
"""

import operator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from .errors import ConfigurationError, CustomRuleError, ErrorCode
from .size_expr import Number, parse_size_expr, sizes_are_valid
from .source import SourceGraph, SourceNode
from .utils.logger import get_logger

logger = get_logger()

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class WherePredicate:
    """Restriction on one node parameter."""

    param: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _COMPARATORS:
            raise CustomRuleError(
                f"unknown comparison '{self.op}' for parameter '{self.param}'",
                hint=f"use one of {', '.join(_COMPARATORS)}",
            )

    def holds(self, params: Mapping[str, Any]) -> bool:
        if self.param not in params:
            return False
        actual = params[self.param]
        if self.op in ("==", "!="):
            return _COMPARATORS[self.op](_as_text(actual), _as_text(self.value))
        try:
            return _COMPARATORS[self.op](float(actual), float(self.value))
        except (TypeError, ValueError):
            return False


@dataclass(frozen=True)
class CustomKernel:
    entry: str
    source: str
    global_size: str
    local_size: str = "1"
    params: Mapping[str, Any] = field(default_factory=dict)

    def size_expressions(self) -> Tuple[str, str]:
        return self.global_size, self.local_size


@dataclass(frozen=True)
class CustomRule:
    """Override rule for one source node type."""

    type: str
    kernels: Tuple[CustomKernel, ...]
    where: Tuple[WherePredicate, ...] = ()
    platforms: Tuple[str, ...] = ("MYRIAD_X",)
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.type

    def meets_where_restrictions(self, params: Mapping[str, Any]) -> bool:
        return all(p.holds(params) for p in self.where)

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "CustomRule":
        if not isinstance(doc, Mapping) or "type" not in doc:
            raise CustomRuleError(f"custom rule needs a 'type': {doc!r}")
        kernels_doc = doc.get("kernels") or []
        if not kernels_doc:
            raise CustomRuleError(f"custom rule for '{doc['type']}' declares no kernels")

        kernels = []
        for k in kernels_doc:
            if "entry" not in k or "global_size" not in k:
                raise CustomRuleError(
                    f"kernel of custom rule '{doc['type']}' needs 'entry' and 'global_size'"
                )
            kernel = CustomKernel(
                entry=str(k["entry"]),
                source=str(k.get("source", "")),
                global_size=_size_text(k["global_size"]),
                local_size=_size_text(k.get("local_size", "1")),
                params=dict(k.get("params") or {}),
            )
            for expr in kernel.size_expressions():
                parse_size_expr(expr)
            kernels.append(kernel)

        platforms = doc.get("platforms", ["MYRIAD_X"])
        if isinstance(platforms, str):
            platforms = [platforms]

        return cls(
            type=str(doc["type"]),
            kernels=tuple(kernels),
            where=tuple(_parse_where(doc.get("where"))),
            platforms=tuple(str(p) for p in platforms),
            name=doc.get("name"),
        )


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(v) for v in value)
    return str(value)


def _size_text(value: Union[str, int, Sequence[Any]]) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _parse_where(where: Any) -> List[WherePredicate]:
    if not where:
        return []
    if isinstance(where, Mapping):
        return [WherePredicate(str(k), "==", v) for k, v in where.items()]
    predicates = []
    for entry in where:
        if not isinstance(entry, Mapping) or "param" not in entry or "value" not in entry:
            raise CustomRuleError(f"where entry needs 'param' and 'value': {entry!r}")
        predicates.append(WherePredicate(str(entry["param"]), str(entry.get("op", "==")), entry["value"]))
    return predicates


def load_custom_rules(path: Union[str, Path]) -> List[CustomRule]:
    """Load custom rule descriptions from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise CustomRuleError(f"custom rules file not found: {path}")
    with open(path, encoding="utf-8") as f:
        try:
            doc = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CustomRuleError(f"cannot parse custom rules file {path}: {e}") from e
    entries = doc.get("rules", []) if isinstance(doc, Mapping) else doc
    if not isinstance(entries, list):
        raise CustomRuleError(f"custom rules file {path} must hold a 'rules' list")
    rules = [CustomRule.from_dict(entry) for entry in entries]
    logger.debug(f"Loaded {len(rules)} custom rules from {path}")
    return rules


def check_platform(rules: Sequence[CustomRule], platform: str) -> None:
    """Raise ConfigurationError (E004) if any rule cannot run on ``platform``."""
    for rule in rules:
        if platform not in rule.platforms:
            raise ConfigurationError(
                f"custom rules are not supported for {platform} platform "
                f"(rule '{rule.display_name}' supports {', '.join(rule.platforms)})",
                code=ErrorCode.E004,
            )


# =============================================================================
# Matching
# =============================================================================


def size_variables(node: SourceNode, graph: Optional[SourceGraph]) -> Dict[str, Number]:
    """Variables visible to size expressions for ``node``."""
    variables: Dict[str, Number] = {}
    for key, value in node.params.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            variables[key] = value
        elif isinstance(value, str):
            try:
                variables[key] = int(value)
            except ValueError:
                continue

    shape: Tuple = ()
    if graph is not None and node.outputs:
        shape = graph.tensor(node.outputs[0]).shape
    # NCHW dims, right aligned; missing or dynamic dims count as 1
    for offset, dim_name in enumerate(("X", "Y", "F", "B"), start=1):
        dim = shape[-offset] if len(shape) >= offset else None
        variables[dim_name] = dim if dim is not None else 1
    return variables


def rule_matches(rule: CustomRule, node: SourceNode, graph: Optional[SourceGraph] = None) -> bool:
    if rule.type != node.type:
        return False
    if not rule.meets_where_restrictions(node.params):
        return False
    variables = size_variables(node, graph)
    for kernel in rule.kernels:
        for expr in kernel.size_expressions():
            if not sizes_are_valid(expr, variables):
                return False
    return True


def get_suitable_custom_rules(
    rules: Sequence[CustomRule],
    node: SourceNode,
    graph: Optional[SourceGraph] = None,
) -> List[CustomRule]:
    return [rule for rule in rules if rule_matches(rule, node, graph)]


def select_custom_rule(
    rules: Sequence[CustomRule],
    node: SourceNode,
    graph: Optional[SourceGraph] = None,
) -> Optional[CustomRule]:
    """The single custom rule applicable to ``node``, or None.

    Raises:
        ConfigurationError: more than one rule matches (E005).
    """
    suitable = get_suitable_custom_rules(rules, node, graph)
    if not suitable:
        return None
    if len(suitable) > 1:
        names = ", ".join(r.display_name for r in suitable)
        raise ConfigurationError(
            f"{len(suitable)} custom rules match: {names}",
            code=ErrorCode.E005,
            node=node.name,
            hint="tighten the 'where' restrictions so at most one rule applies",
        )
    return suitable[0]
