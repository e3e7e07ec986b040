"""
graphlower: lowering of neural-network graphs into target stage programs.

Example:
    from graphlower import LoweringConfig, load_source_graph, lower

    graph = load_source_graph("net.yaml")
    model = lower(graph, config=LoweringConfig(ignore_unknown_layers=True))
    for stage in model.ordered_stages():
        print(stage.name, stage.type.value)
"""

__version__ = "0.1.0"

from .config import LoweringConfig, load_config
from .custom_rules import CustomKernel, CustomRule, WherePredicate, load_custom_rules
from .data_registry import DataRegistry
from .errors import (
    ConfigurationError,
    CustomRuleError,
    Diagnostic,
    DiagnosticCode,
    ErrorCode,
    GraphFormatError,
    LoweringError,
    LoweringReport,
    StageContractError,
    StructuralError,
    UnsupportedLayerError,
)
from .frontend import FrontEnd, NodeOutcome, check_supported_layers, lower
from .model import Data, Model, Stage
from .prepare import PassManager
from .rules import RULE_TABLE, get_rule, rule
from .source import SourceGraph, SourceNode, SourceTensor, load_source_graph
from .stages import StageType
from .traversal import bfs, dfs
from .types import DataDesc, DataType, DataUsage

__all__ = [
    "__version__",
    # Entry points
    "lower",
    "check_supported_layers",
    "FrontEnd",
    "NodeOutcome",
    "PassManager",
    # Source graph
    "SourceGraph",
    "SourceNode",
    "SourceTensor",
    "load_source_graph",
    # Target graph
    "Model",
    "Stage",
    "Data",
    "StageType",
    "DataDesc",
    "DataType",
    "DataUsage",
    "DataRegistry",
    # Rules
    "RULE_TABLE",
    "get_rule",
    "rule",
    "CustomRule",
    "CustomKernel",
    "WherePredicate",
    "load_custom_rules",
    # Configuration
    "LoweringConfig",
    "load_config",
    # Traversal
    "dfs",
    "bfs",
    # Errors
    "ErrorCode",
    "DiagnosticCode",
    "Diagnostic",
    "LoweringReport",
    "LoweringError",
    "ConfigurationError",
    "StructuralError",
    "UnsupportedLayerError",
    "StageContractError",
    "GraphFormatError",
    "CustomRuleError",
]
