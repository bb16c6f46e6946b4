from datetime import date, time
from typing import List

from pydantic import BaseModel


class TimeSlotResponse(BaseModel):
    start: time
    end: time

    model_config = {
        "from_attributes": True
    }


class AvailabilityResponse(BaseModel):
    provider_id: int
    service_id: int
    date: date
    slots: List[TimeSlotResponse]
