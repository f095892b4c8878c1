from datetime import datetime
from pydantic import BaseModel


class PenaltyStatus(BaseModel):
    penalty_until: datetime | None = None
    is_penalized: bool
