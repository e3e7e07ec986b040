"""
Lowering error definitions and error codes.

Error codes:
- E001-E005: Configuration errors (always fatal)
- E006-E008: Structural inconsistencies (always fatal)
- E009-E012: Layer, stage and description errors
- W001-W003: Diagnostics collected during lowering
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class ErrorCode(str, Enum):
    """Lowering error codes."""

    # Configuration errors
    E001 = "E001"  # Invalid configuration value
    E002 = "E002"  # Duplicate tensor binding
    E003 = "E003"  # Ambiguous input/output aliasing
    E004 = "E004"  # Custom rules not supported on platform
    E005 = "E005"  # Ambiguous custom rule match

    # Structural errors
    E006 = "E006"  # Loop encountered in ordered traversal
    E007 = "E007"  # Predecessor not reachable in ordered traversal
    E008 = "E008"  # Node input has no lowered buffer

    # Layer and stage errors
    E009 = "E009"  # Unsupported layer
    E010 = "E010"  # Stage contract violation

    # Description errors
    E011 = "E011"  # Malformed source graph
    E012 = "E012"  # Malformed custom rule or size expression


class DiagnosticCode(str, Enum):
    """Codes for recoverable conditions recorded in the lowering report."""

    W001 = "W001"  # Rule raised, layer downgraded to unsupported
    W002 = "W002"  # No rule registered for layer type
    W003 = "W003"  # Layer skipped by configuration


class LoweringError(Exception):
    """Base exception for all lowering errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        node: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.node = node
        self.hint = hint
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [f"[{self.code.value}]"]
        if self.node:
            parts.append(f" at node '{self.node}':")
        parts.append(f" {self.message}")
        if self.hint:
            parts.append(f"\n  hint: {self.hint}")
        return "".join(parts)


class ConfigurationError(LoweringError):
    """Invalid configuration: aliasing, bindings, platform, ambiguous rules."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.E001,
        node: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(code, message, node, hint)


class StructuralError(LoweringError):
    """The source graph violates an ordering or connectivity invariant."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        node: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(code, message, node, hint)


class UnsupportedLayerError(LoweringError):
    """A layer cannot be lowered and must not fall back to a placeholder."""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(ErrorCode.E009, message, node, hint)


class StageContractError(LoweringError):
    """A stage was built with inputs/outputs its type does not accept."""

    def __init__(self, message: str, node: Optional[str] = None):
        super().__init__(ErrorCode.E010, message, node)


class GraphFormatError(LoweringError):
    """Malformed source graph description."""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(ErrorCode.E011, message, node, hint)


class CustomRuleError(LoweringError):
    """Malformed custom rule description or size expression."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(ErrorCode.E012, message, None, hint)


@dataclass
class Diagnostic:
    """A recoverable condition recorded for one source node."""

    code: DiagnosticCode
    node: str
    node_type: str
    message: str

    @property
    def is_rule_error(self) -> bool:
        return self.code == DiagnosticCode.W001

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.node} ({self.node_type}): {self.message}"


class LoweringReport:
    """Collects per-node outcomes during one lowering pass."""

    def __init__(self):
        self.supported: List[str] = []
        self.diagnostics: List[Diagnostic] = []

    def record_supported(self, node: str):
        self.supported.append(node)

    def record(self, code: DiagnosticCode, node: str, node_type: str, message: str):
        self.diagnostics.append(Diagnostic(code, node, node_type, message))

    @property
    def unsupported(self) -> List[str]:
        """Names of nodes that went through the unsupported path."""
        return [
            d.node for d in self.diagnostics
            if d.code in (DiagnosticCode.W001, DiagnosticCode.W002)
        ]

    @property
    def rule_errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_rule_error]

    def clear(self):
        self.supported.clear()
        self.diagnostics.clear()

    def has_diagnostics(self) -> bool:
        return len(self.diagnostics) > 0

    def __iter__(self):
        return iter(self.diagnostics)
