import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from filmmap.schemas.geocoding import PlaceList, ReverseResult
from filmmap.services.geocoding import GeocodingGateway
from filmmap.routers.deps import get_geocoder

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/geocode", tags=["Geocoding"])


def _required(value: Optional[str]) -> str:
    if not value or not value.strip():
        raise HTTPException(status_code=400, detail="Query parameter is required")
    return value


@router.get("", response_model=PlaceList)
async def geocode(query: Optional[str] = None, geocoder: GeocodingGateway = Depends(get_geocoder)):
    """
    Ruta sobrecargada: "lat,lng" hace reverse, cualquier
    otro texto hace forward.
    """
    return PlaceList(items=await geocoder.geocode(_required(query)))


@router.get("/forward", response_model=PlaceList)
async def forward(q: Optional[str] = None, geocoder: GeocodingGateway = Depends(get_geocoder)):
    return PlaceList(items=await geocoder.forward_geocode(_required(q)))


@router.get("/reverse", response_model=ReverseResult)
async def reverse(
    lng: float = Query(...),
    lat: float = Query(...),
    geocoder: GeocodingGateway = Depends(get_geocoder),
):
    return ReverseResult(place_name=await geocoder.reverse_geocode(lng, lat))
