"""
Schema Export & Validation
===========================

JSON Schema export and dict validation for the data contracts that
cross the process boundary (CLI input files, the knowledge store file).

Usage:
    from appealground.schemas.export import validate_payload
    errors = validate_payload("case", case_dict)
    if errors:
        print("Validation failed:", errors)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from appealground.schemas.case import DenialCase
from appealground.schemas.evidence import ChunkRecord, KnowledgeDoc
from appealground.schemas.letter import AppealLetter, LetterSection

logger = logging.getLogger("appealground.schemas.export")

SCHEMAS: dict[str, type[BaseModel]] = {
    "case": DenialCase,
    "document": KnowledgeDoc,
    "chunk": ChunkRecord,
    "section": LetterSection,
    "letter": AppealLetter,
}


def get_json_schema(schema_name: str) -> dict[str, Any]:
    """
    Export the JSON Schema for one data contract.

    Raises:
        ValueError: If the schema name is unknown.
    """
    if schema_name not in SCHEMAS:
        raise ValueError(f"Unknown schema: {schema_name}. Use: {list(SCHEMAS.keys())}")
    return SCHEMAS[schema_name].model_json_schema()


def export_all_schemas(output_dir: str | Path) -> list[Path]:
    """Write one ``{name}_schema.json`` file per contract; returns the paths."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for name in SCHEMAS:
        path = output_dir / f"{name}_schema.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(get_json_schema(name), f, indent=2, ensure_ascii=False)
        logger.info(f"Exported schema: {path}")
        paths.append(path)
    return paths


def validate_payload(schema_name: str, data: Any) -> list[str]:
    """
    Validate a dict against a data contract.

    Returns:
        List of human-readable error strings (empty if valid).
    """
    model = SCHEMAS.get(schema_name)
    if model is None:
        return [f"Unknown schema: {schema_name}"]
    try:
        model.model_validate(data)
    except ValidationError as e:
        return [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
    return []
