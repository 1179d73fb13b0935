from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from .commands import Command, Event, normalize_name
from .errors import ErrorCode, ProtocolError

SCHEMA_DIR = Path(__file__).parent / "schemas"

# Mapping (cmd, evt) -> schema filename (relative to SCHEMA_DIR)
SCHEMA_REGISTRY: Dict[str, str] = {
    "close": "close.json",
    f"{Command.DISPATCH.value}/{Event.READY.value}": "dispatch.ready.json",
    Event.ERROR.value: "event.error.json",
    Event.ACTIVITY_JOIN.value: "event.activity_join.json",
    Event.ACTIVITY_SPECTATE.value: "event.activity_spectate.json",
    Event.ACTIVITY_JOIN_REQUEST.value: "event.activity_join_request.json",
}


def schema_key(msg: Dict[str, Any]) -> str:
    """Registry key of an inbound message: ``cmd/evt`` for dispatches with a dedicated schema, else ``evt``."""
    cmd = normalize_name(msg.get("cmd"))
    evt = normalize_name(msg.get("evt")) or ""
    combined = f"{cmd}/{evt}"
    if combined in SCHEMA_REGISTRY:
        return combined
    return evt


def _schema_path(name: str) -> Optional[Path]:
    filename = SCHEMA_REGISTRY.get(name)
    if not filename:
        return None
    path = SCHEMA_DIR / filename
    return path if path.exists() else None


@lru_cache(maxsize=16)
def load_schema(name: str) -> Optional[dict]:
    """Load the JSON schema registered under ``name`` if present."""
    path = _schema_path(name)
    if not path:
        return None
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


def validate_msg(msg: Dict[str, Any], schema: Optional[dict] = None) -> None:
    """Validate an inbound message against its json-schema (looked up by cmd/evt when not given)."""
    if not schema:
        schema = load_schema(schema_key(msg))
    if schema:
        try:
            jsonschema.validate(instance=msg, schema=schema)
        except jsonschema.ValidationError as exc:
            raise ProtocolError(ErrorCode.READ_CORRUPT, f"Schema validation failed: {exc.message}") from exc


__all__ = ["SCHEMA_REGISTRY", "load_schema", "schema_key", "validate_msg"]
