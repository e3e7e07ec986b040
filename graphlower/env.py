"""
Per-compilation environment.

Rules read the active configuration and custom-rule matches from here instead
of receiving them as arguments. The environment lives in a context variable so
concurrent compilations in different threads stay independent.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional

from .config import LoweringConfig

if TYPE_CHECKING:
    from .custom_rules import CustomRule
    from .source import SourceGraph


@dataclass
class CompileEnv:
    config: LoweringConfig = field(default_factory=LoweringConfig)
    custom_rules: List["CustomRule"] = field(default_factory=list)
    graph: Optional["SourceGraph"] = None
    # Matched custom rule per node name, valid for one pass
    custom_matches: Dict[str, "CustomRule"] = field(default_factory=dict)

    def reset(self):
        self.custom_matches.clear()


_COMPILE_ENV: ContextVar[Optional[CompileEnv]] = ContextVar("graphlower_compile_env", default=None)


def get_compile_env() -> CompileEnv:
    """The environment of the running compilation, or a default one outside of it."""
    env = _COMPILE_ENV.get()
    if env is None:
        env = CompileEnv()
        _COMPILE_ENV.set(env)
    return env


@contextmanager
def compile_env(env: CompileEnv) -> Iterator[CompileEnv]:
    token = _COMPILE_ENV.set(env)
    try:
        yield env
    finally:
        _COMPILE_ENV.reset(token)
