from pydantic import BaseModel, Field
from typing import List


class Place(BaseModel):
    place_name: str
    center: List[float] = Field(..., min_length=2, max_length=2, description="[lng, lat]")


class PlaceList(BaseModel):
    items: List[Place]


class ReverseResult(BaseModel):
    place_name: str
