"""
rules.yaml loading.

The rules document is plain YAML. It may also live inside a markdown page
(for example an ops runbook), in which case the first fenced ```yaml block
is the document and the surrounding prose is ignored.
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from src.rules.models import Rules

_FENCE = "```"
_YAML_FENCE = "```yaml"


def _yaml_source(text: str) -> str:
    """Body of the first fenced yaml block, or the whole text if there is none."""
    body: list[str] | None = None
    for line in text.splitlines():
        marker = line.strip()
        if body is None:
            if marker.startswith(_YAML_FENCE):
                body = []
        elif marker.startswith(_FENCE):
            break
        else:
            body.append(line)
    return text if body is None else "\n".join(body)


def load_rules(path: Path) -> Rules:
    """
    Read a rules document into the typed Rules model.

    Raises:
        FileNotFoundError: The path does not exist.
        ValueError: The YAML does not parse or does not match the model.
    """
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found at: {path}")

    source = _yaml_source(path.read_text())
    try:
        raw = yaml.safe_load(source)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in rules file: {e}") from e

    try:
        return Rules.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Rules validation failed:\n{e}") from e
