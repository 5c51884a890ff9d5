from __future__ import annotations
from enum import Enum
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
TxHash  = NewType("TxHash", str)    # 66-char 0x-hash, lowercase
Status  = Literal["done", "failed"]


class EventKind(str, Enum):
    TAKE_ORDER = "TakeOrderV2"
    CLEAR = "ClearV2"
