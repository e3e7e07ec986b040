import json
import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml

from .errors import ConfigurationError
from .utils.logger import get_logger

logger = get_logger()

PLATFORMS = ("MYRIAD_2", "MYRIAD_X")
LOG_LEVELS = ("trace", "debug", "info", "success", "warning", "error")


@dataclass
class LoweringConfig:
    """
    Options controlling one lowering pass.

    Args:
        ignore_unknown_layers: Replace unsupported layers by placeholder stages
            instead of failing.
        input_scale: Scale applied to network inputs by the conversion stages.
        input_bias: Bias applied to network inputs by the conversion stages.
        custom_rules_path: YAML file with custom rule descriptions.
        disable_conversion_stages: Do not insert numeric-format conversions.
        skip_all_layers: Lower every plain layer to a placeholder stage.
        skip_layer_types: Layer type tags lowered to placeholder stages.
        platform: Target platform, custom rules are only accepted on MYRIAD_X.
        detect_batch: Derive the model batch size from the network inputs.
        log_level: Level of the graphlower logger when driven from the CLI.
    """

    ignore_unknown_layers: bool = False
    input_scale: Optional[float] = None
    input_bias: Optional[float] = None
    custom_rules_path: Optional[str] = None
    disable_conversion_stages: bool = False
    skip_all_layers: bool = False
    skip_layer_types: List[str] = field(default_factory=list)
    platform: str = "MYRIAD_X"
    detect_batch: bool = True
    log_level: str = "warning"

    def __post_init__(self):
        if self.platform not in PLATFORMS:
            raise ConfigurationError(
                f"unknown platform '{self.platform}'",
                hint=f"choose one of {', '.join(PLATFORMS)}",
            )
        for name in ("input_scale", "input_bias"):
            value = getattr(self, name)
            if value is not None:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigurationError(f"{name} must be a number, got {value!r}")
                setattr(self, name, float(value))
        if self.input_scale is not None and self.input_scale == 0.0:
            raise ConfigurationError("input_scale must be non-zero")
        if isinstance(self.skip_layer_types, str):
            self.skip_layer_types = [t.strip() for t in self.skip_layer_types.split(",") if t.strip()]
        else:
            self.skip_layer_types = list(self.skip_layer_types)
        self.log_level = self.log_level.lower()
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"unknown log level '{self.log_level}'",
                hint=f"choose one of {', '.join(LOG_LEVELS)}",
            )

    def skips(self, layer_type: str) -> bool:
        return self.skip_all_layers or layer_type in self.skip_layer_types

    @classmethod
    def from_dict(cls, cfg: Optional[Mapping[str, Any]]) -> "LoweringConfig":
        cfg = dict(cfg or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(cfg) - known)
        if unknown:
            raise ConfigurationError(
                f"unknown configuration keys: {', '.join(unknown)}",
                hint=f"valid keys are {', '.join(sorted(known))}",
            )
        return cls(**cfg)

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Union[str, Path]) -> LoweringConfig:
    """Load a LoweringConfig from a YAML file, expanding ${VAR} references."""
    if not Path(path).exists():
        raise ConfigurationError(f"config file not found: {path}")
    with open(path, encoding="utf-8") as file:
        try:
            cfg_dict = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"cannot parse config file {path}: {e}") from e

    if cfg_dict is not None and not isinstance(cfg_dict, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")

    cfg_dict = _expand_env_vars(cfg_dict or {})
    config = LoweringConfig.from_dict(cfg_dict)

    cfg_to_log = {k: v for k, v in config.to_dict().items() if v is not None}
    logger.debug(f"config:\n{json.dumps(cfg_to_log, indent=2, default=str, sort_keys=True)}")

    return config


def _expand_env_vars(obj: Any) -> Any:
    """
    Recursively expand environment variables in config.
    Supports ${VAR_NAME} syntax.
    """
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        pattern = r'\$\{([^}]+)\}'

        def replace_env_var(match):
            var_name = match.group(1)
            value = os.environ.get(var_name)
            if value is None:
                logger.warning(f"Environment variable not found: {var_name}")
                return match.group(0)
            return value

        expanded = re.sub(pattern, replace_env_var, obj)
        # A value that was entirely a reference is re-read as a YAML scalar
        if expanded != obj and re.fullmatch(pattern, obj):
            return yaml.safe_load(expanded)
        return expanded
    else:
        return obj
