"""
Utility for loading YAML files shipped inside the package.

Resources are read through importlib.resources so they resolve the same
way from a source checkout, an installed wheel or a zipped distribution.
"""

import yaml
from importlib import resources
from typing import Any, Dict

from ..domain.errors import ConfigurationError
from ..utils.logging import get_module_logger


logger = get_module_logger()

RESOURCES_PACKAGE = "ultron_assistant.resources"


def load_packaged_yaml(file_name: str, package: str = RESOURCES_PACKAGE) -> Dict[str, Any]:
    """
    Load and parse a YAML file from a package.

    Args:
        file_name: File name inside the package (e.g. "schema_context.yaml")
        package: Dotted package name holding the file

    Returns:
        Parsed YAML content (top level must be a mapping)

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    try:
        text = resources.files(package).joinpath(file_name).read_text(encoding="utf-8")
        content = yaml.safe_load(text)

    except (FileNotFoundError, ModuleNotFoundError) as e:
        raise ConfigurationError(
            f"Packaged resource not found: {package}/{file_name}",
            details={"file": file_name}
        ) from e

    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {package}/{file_name}: {e}",
            details={"file": file_name}
        ) from e

    if not isinstance(content, dict):
        raise ConfigurationError(
            f"Expected a mapping at the top of {package}/{file_name}",
            details={"file": file_name, "type": type(content).__name__}
        )

    logger.info("Loaded packaged YAML", file=file_name, top_level_keys=sorted(content.keys()))
    return content
