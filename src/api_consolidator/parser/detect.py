"""Auto-detect API document format."""

import json
from pathlib import Path

import yaml


def detect_format(file_path: Path) -> str:
    """Detect the format of an API description file.

    Returns: 'openapi', 'swagger', or 'unknown'.
    """
    text = file_path.read_text(encoding="utf-8")
    return detect_format_text(text)


def detect_format_text(text: str) -> str:
    # Try YAML/JSON parsing
    try:
        data = yaml.safe_load(text)
        if isinstance(data, dict):
            return classify_document(data)
    except yaml.YAMLError:
        pass

    # Try JSON specifically (for files not parseable as YAML)
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return classify_document(data)
    except (json.JSONDecodeError, ValueError):
        pass

    return "unknown"


def classify_document(data) -> str:
    """Classify an already-parsed document."""
    if not isinstance(data, dict):
        return "unknown"
    if "openapi" in data:
        return "openapi"
    if "swagger" in data:
        return "swagger"
    return "unknown"
