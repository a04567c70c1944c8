from __future__ import annotations

import logging

from curation_service.geocode.base import Candidate, LocationProvider
from curation_service.geocode.gazetteer import Gazetteer
from curation_service.geocode.google import GoogleMapsGeocoder
from curation_service.geocode.resolver import LocationResolver, Resolution, ResolveOutcome, ResolveStatus
from curation_service.settings import settings

logger = logging.getLogger(__name__)


def build_providers() -> list[LocationProvider]:
    """Configured provider chain in priority order: gazetteer first, external geocoder last."""
    providers: list[LocationProvider] = []
    if settings.gazetteer_file.exists():
        providers.append(Gazetteer.from_geojson(settings.gazetteer_file))
    else:
        logger.warning("gazetteer file %s not found; route markers will not resolve locally", settings.gazetteer_file)
    if settings.geocoder_api_key:
        providers.append(GoogleMapsGeocoder(api_key=settings.geocoder_api_key))
    else:
        logger.warning("MULTAS_GEOCODER_API_KEY not set; external geocoding disabled")
    return providers


__all__ = [
    "Candidate",
    "Gazetteer",
    "GoogleMapsGeocoder",
    "LocationProvider",
    "LocationResolver",
    "Resolution",
    "ResolveOutcome",
    "ResolveStatus",
    "build_providers",
]
