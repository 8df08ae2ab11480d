import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from adgate.rules.models import Rules

logger = logging.getLogger(__name__)


def load_rules(path: Path) -> Rules:
    """
    Load and validate the rules file.
    Raises FileNotFoundError if file missing.
    Raises ValueError if the YAML or the schema is invalid.
    """
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found at: {path}")

    with open(path) as f:
        content = f.read()

    # Strip a markdown ```yaml fence if the file is wrapped in one
    lines = content.splitlines()
    yaml_lines = []
    in_block = False
    found_block = False

    for line in lines:
        s_line = line.strip()
        if s_line.startswith("```yaml"):
            in_block = True
            found_block = True
            continue
        if in_block and s_line.startswith("```"):
            break

        if in_block:
            yaml_lines.append(line)

    clean_content = "\n".join(yaml_lines) if found_block else content

    try:
        data = yaml.safe_load(clean_content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in rules file: {e}") from e

    try:
        rules = Rules.model_validate(data or {})
    except ValidationError as e:
        raise ValueError(f"Rules validation failed:\n{e}") from e

    logger.info("Rules v%s loaded from %s", rules.project.rules_version, path)
    return rules


def validate_ops_rules(rules: Rules) -> list[str]:
    """Return the required environment variables that are missing."""
    return [name for name in rules.ops.required_env if name not in os.environ]
