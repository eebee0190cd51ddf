"""
Scaffold generator for new pipelines
"""

import re
from pathlib import Path
from string import Template
from typing import Dict, List, Union
import logging

from core.exceptions import ConfigError
from etl.templates import CONFIG_TEMPLATE, ENV_TEMPLATE, PIPELINE_TEMPLATE, README_TEMPLATE

logger = logging.getLogger(__name__)

_VALID_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")


class PipelineGenerator:
    """
    Create ``pipelines/<name>/`` with a runnable skeleton.

    Files: pipeline.py, config.yaml, README.md, .env, plus a root
    .env.template when none exists yet.
    """

    FILES = {
        "pipeline.py": PIPELINE_TEMPLATE,
        "config.yaml": CONFIG_TEMPLATE,
        "README.md": README_TEMPLATE,
        ".env": ENV_TEMPLATE,
    }

    def __init__(self, name: str, base_dir: Union[str, Path] = "."):
        if not _VALID_NAME.match(name or ""):
            raise ConfigError(
                f"Invalid pipeline name '{name}'",
                context={"expected": "letters, digits, '-' or '_', starting with a letter"}
            )
        self.name = name
        self.base_dir = Path(base_dir)

    @property
    def module(self) -> str:
        return self.name.replace("-", "_").lower()

    @property
    def pipeline_dir(self) -> Path:
        return self.base_dir / "pipelines" / self.module

    def _values(self) -> Dict[str, str]:
        words = re.split(r"[-_]", self.name)
        return {
            "name": self.name,
            "module": self.module,
            "title": " ".join(w.capitalize() for w in words if w),
            "class_prefix": "".join(w.capitalize() for w in words if w),
        }

    def generate(self, force: bool = False) -> List[Path]:
        """Write the scaffold and return the created files."""
        if self.pipeline_dir.exists() and any(self.pipeline_dir.iterdir()) and not force:
            raise FileExistsError(f"Pipeline directory already exists: {self.pipeline_dir}")

        self.pipeline_dir.mkdir(parents=True, exist_ok=True)
        values = self._values()
        created = []

        for filename, template in self.FILES.items():
            path = self.pipeline_dir / filename
            path.write_text(Template(template).safe_substitute(values))
            created.append(path)

        for package_dir in (self.pipeline_dir.parent, self.pipeline_dir):
            package_init = package_dir / "__init__.py"
            if not package_init.exists():
                package_init.write_text("")
                created.append(package_init)

        root_template = self.base_dir / ".env.template"
        if not root_template.exists():
            root_template.write_text(ENV_TEMPLATE)
            created.append(root_template)

        logger.info(f"Generated pipeline {self.name} in {self.pipeline_dir}")
        return created
