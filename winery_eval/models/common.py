import math
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive scores (built-in round() is banker's rounding)"""
    return int(math.floor(value + 0.5))
