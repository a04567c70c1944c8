from __future__ import annotations

import json

import pytest

from multas_core.db.enums import ConfidenceTier, GeocodingMethod

from curation_service.geocode.gazetteer import (
    Gazetteer,
    RouteMarker,
    normalize_progressive,
    parse_route_location,
)


@pytest.fixture
def gazetteer(tmp_path):
    features = [
        {"ruta": 5, "progresiva": "038K131", "gestion": "MTOP", "descrip": "Radar ruta 5 km 38", "coords": [-56.25, -34.60]},
        {"ruta": 9, "progresiva": "10k100/10k900", "gestion": "MTOP", "descrip": "Radar doble", "coords": [-55.0, -34.80]},
        {"ruta": 3, "progresiva": "453k0", "gestion": "MTOP", "descrip": "", "coords": [-57.9, -31.4]},
        {"ruta": None, "progresiva": "1k000", "gestion": "", "descrip": "sin ruta", "coords": [-56.0, -34.0]},
    ]
    data = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {k: f[k] for k in ("ruta", "progresiva", "gestion", "descrip")},
                "geometry": {"type": "Point", "coordinates": f["coords"]},
            }
            for f in features
        ],
    }
    path = tmp_path / "radares.geojson"
    path.write_text(json.dumps(data), encoding="utf-8")
    return Gazetteer.from_geojson(path)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("RUTA 005 Y 038K131_D", RouteMarker(5, "38k131", "D")),
        ("Ruta 3 y km 453", RouteMarker(3, "453k000")),
        ("RUTA NACIONAL 8 Y KM 30", RouteMarker(8, "30k000")),
        ("102 y 024K220", RouteMarker(102, "24k220")),
        ("AV ITALIA Y COMERCIO", None),
    ],
)
def test_parse_route_location(text, expected):
    assert parse_route_location(text) == expected


def test_normalize_progressive():
    assert normalize_progressive("038K50") == "38k050"
    assert normalize_progressive("000k5") == "0k005"
    assert normalize_progressive("10k100/010K9") == "10k100/10k009"


def test_features_without_route_are_skipped(gazetteer):
    assert len(gazetteer) == 3


def test_exact_hit(gazetteer):
    cand = gazetteer.lookup(65, "RUTA 005 Y 038K131_D")
    assert cand is not None
    assert cand.tier is ConfidenceTier.exact
    assert cand.method is GeocodingMethod.gazetteer
    assert cand.is_electronic
    assert (cand.lat, cand.lng) == (-34.60, -56.25)
    assert cand.notes == "Radar ruta 5 km 38"


def test_marker_list_hit_is_exact(gazetteer):
    inst, tier = gazetteer.find(RouteMarker(9, "10k900"))
    assert tier is ConfidenceTier.exact
    assert inst.description == "Radar doble"


def test_nearby_marker_on_same_km(gazetteer):
    inst, tier = gazetteer.find(RouteMarker(5, "38k200"))
    assert tier is ConfidenceTier.interpolated_range
    assert inst.route == 5


def test_other_km_or_route_misses(gazetteer):
    assert gazetteer.find(RouteMarker(5, "39k131")) is None
    assert gazetteer.find(RouteMarker(7, "38k131")) is None
    assert gazetteer.lookup(65, "AV ITALIA Y COMERCIO") is None


def test_km_only_marker(gazetteer):
    cand = gazetteer.lookup(68, "Ruta 3 y km 453")
    assert cand.tier is ConfidenceTier.exact
    assert cand.notes is None
