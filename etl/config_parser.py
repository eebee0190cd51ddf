"""
Configuration loading for pipeline YAML documents.

Environment placeholders of the form ``${VAR}`` are substituted in the raw
text before YAML parsing. Placeholders whose variable is unset or empty are
left verbatim.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from core.exceptions import ConfigError
from schemas.pipeline_config import PipelineConfig

ENV_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def substitute_env_vars(content: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Replace ``${VAR}`` placeholders with values from the environment."""
    env = os.environ if environ is None else environ

    def _replace(match: "re.Match") -> str:
        value = env.get(match.group(1))
        if not value:
            return match.group(0)
        return value

    return ENV_PLACEHOLDER.sub(_replace, content)


def parse_config(data: Dict[str, Any], source: str = "<memory>") -> PipelineConfig:
    """Validate a parsed configuration mapping."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping", context={"config_path": source})
    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as e:
        field_errors = {
            ".".join(str(p) for p in err["loc"]) or "<root>": err["msg"]
            for err in e.errors()
        }
        raise ConfigError(
            "Invalid configuration",
            context={"config_path": source, "field_errors": field_errors},
            original_exception=e
        )


def load_config(
    path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None
) -> PipelineConfig:
    """Read, substitute, parse and validate a pipeline configuration file."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            context={"config_path": str(config_path)}
        )

    try:
        content = config_path.read_text()
    except OSError as e:
        raise ConfigError(
            "Error reading configuration file",
            context={"config_path": str(config_path)},
            original_exception=e
        )

    try:
        data = yaml.safe_load(substitute_env_vars(content, environ))
    except yaml.YAMLError as e:
        raise ConfigError(
            "Invalid YAML syntax",
            context={"config_path": str(config_path)},
            original_exception=e
        )

    if not data:
        raise ConfigError("Configuration file is empty", context={"config_path": str(config_path)})

    return parse_config(data, source=str(config_path))
