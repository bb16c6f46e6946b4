from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

import orjson
from fastapi.encoders import jsonable_encoder


def _default(o: Any):
    # Money stays exact on the wire
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, (datetime, date, time)):
        return o.isoformat()
    return str(o)


def dumps_bytes(obj: Any) -> bytes:
    return orjson.dumps(obj, option=orjson.OPT_NON_STR_KEYS, default=_default)


def dumps(obj: Any) -> str:
    """Serialize obj to a compact JSON string, with Decimal and datetime support."""
    return dumps_bytes(jsonable_encoder(obj, custom_encoder={Decimal: str})).decode("utf-8")


def loads(data: str | bytes) -> Any:
    return orjson.loads(data)
