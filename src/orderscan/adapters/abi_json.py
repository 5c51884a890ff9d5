from __future__ import annotations
import json
from typing import Any

from eth_utils import encode_hex, event_abi_to_log_topic

from ..domain.errors import SignatureError
from ..domain.models import EventSignatures
from ..domain.value_types import EventKind, Topic0


def _event_entries(abi: Any) -> list[dict[str, Any]]:
    # accept a bare ABI list or a build artifact ({"abi": [...]})
    if isinstance(abi, dict):
        abi = abi.get("abi")
    if not isinstance(abi, list):
        raise SignatureError("ABI must be a list of entries or an object with an 'abi' list")
    return [e for e in abi if isinstance(e, dict) and e.get("type") == "event"]

def topic0_for(abi: Any, name: str) -> Topic0:
    matches = [e for e in _event_entries(abi) if e.get("name") == name]
    if not matches:
        raise SignatureError(f"Event {name!r} not found in ABI")
    try:
        return Topic0(encode_hex(event_abi_to_log_topic(matches[0])).lower())
    except (KeyError, TypeError, ValueError) as e:
        raise SignatureError(f"Cannot compute signature for event {name!r}: {e}") from e

def load_event_signatures(abi_path: str) -> EventSignatures:
    try:
        with open(abi_path, "r") as f:
            abi = json.load(f)
    except OSError as e:
        raise SignatureError(f"Cannot read ABI file {abi_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise SignatureError(f"Invalid ABI JSON in {abi_path}: {e}") from e
    return EventSignatures(
        take_order=topic0_for(abi, EventKind.TAKE_ORDER.value),
        clear=topic0_for(abi, EventKind.CLEAR.value),
    )
