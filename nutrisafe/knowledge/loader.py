"""Loading knowledge base snapshots from YAML or JSON files."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from nutrisafe.exceptions import KnowledgeBaseLoadError, KnowledgeBaseValidationError
from nutrisafe.knowledge.base import KnowledgeSnapshot
from nutrisafe.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SNAPSHOT = "default_kb.yaml"


def parse_snapshot(data: dict[str, Any], source: str = "<memory>") -> KnowledgeSnapshot:
    """Validate raw snapshot data into a ``KnowledgeSnapshot``.

    Schema problems are reported as ``KnowledgeBaseValidationError`` with one
    message per offending field, so a bad record never half-loads.
    """
    if not isinstance(data, dict):
        raise KnowledgeBaseLoadError(source, "snapshot root must be a mapping")
    try:
        return KnowledgeSnapshot.model_validate(data)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise KnowledgeBaseValidationError(str(data.get("version")), errors) from e


def _read(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text) or {}


def load_snapshot(path: str | Path) -> KnowledgeSnapshot:
    """Load a snapshot file. ``.json`` files are parsed as JSON, anything else as YAML."""
    snapshot_path = Path(path)
    if not snapshot_path.exists():
        raise KnowledgeBaseLoadError(str(snapshot_path), "file does not exist")
    try:
        data = _read(snapshot_path)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise KnowledgeBaseLoadError(str(snapshot_path), str(e), cause=e) from e

    snapshot = parse_snapshot(data, source=str(snapshot_path))
    logger.info(
        "Loaded knowledge base snapshot",
        path=str(snapshot_path),
        kb_version=snapshot.version,
        records=len(snapshot.records),
    )
    return snapshot


def load_default_snapshot() -> KnowledgeSnapshot:
    """Load the curated snapshot packaged with ``nutrisafe``."""
    resource = resources.files("nutrisafe.knowledge") / "data" / DEFAULT_SNAPSHOT
    with resources.as_file(resource) as path:
        return load_snapshot(path)


__all__ = ["parse_snapshot", "load_snapshot", "load_default_snapshot", "DEFAULT_SNAPSHOT"]
