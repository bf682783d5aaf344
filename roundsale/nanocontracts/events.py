import json
from typing import Any

from hathorlib.nanocontracts.utils import json_dumps


def encode_event(name: str, **fields: Any) -> bytes:
    """Serialize a named event for `emit_event`. Bytes values are hex encoded."""
    return json_dumps(dict(fields, event=name), sort_keys=True).encode("utf-8")


def decode_event(data: bytes) -> dict[str, Any]:
    return json.loads(data)
