from __future__ import annotations

from datetime import datetime, timezone

import h3
import pytest
from pydantic import ValidationError

from multas_core.errors import InvalidCellError, InvalidFilterError
from multas_core.mapview import MapFilters, data_version, get_map_view, viewport_cell
from multas_core.settings import MIN_MAP_BUDGET, Settings
from multas_core.spatial import compute_cells

from conftest import add_offense

CENTER = (-34.9058, -56.1913)
NO_FILTERS = MapFilters()


def cell_center(res, point=CENTER):
    cell = h3.latlng_to_cell(*point, res)
    return cell, h3.cell_to_latlng(cell)


@pytest.fixture
def dense_city(session):
    """60 distinct locations, three offenses each, spread over a few kilometres."""
    for i in range(6):
        for j in range(10):
            point = (CENTER[0] + i * 0.008, CENTER[1] + j * 0.008)
            for _ in range(3):
                add_offense(session, location=f"CALLE {i} Y {j}", point=point)
    return session


class TestAggregator:
    @pytest.mark.parametrize("budget", [7, 8, 15, 40])
    def test_feature_count_is_bounded_and_records_are_kept(self, dense_city, budget):
        cell = h3.latlng_to_cell(*CENTER, 5)
        expected = sum(
            3
            for i in range(6)
            for j in range(10)
            if compute_cells(CENTER[0] + i * 0.008, CENTER[1] + j * 0.008)[5] == cell
        )
        view = get_map_view(dense_city, NO_FILTERS, cell, budget=budget)
        assert len(view.features) <= 2 * budget
        assert view.total_records == expected

    def test_small_budget_draws_clusters(self, dense_city):
        view = get_map_view(dense_city, NO_FILTERS, h3.latlng_to_cell(*CENTER, 5), budget=7)
        assert "cluster" in {f["properties"]["type"] for f in view.features}

    @pytest.mark.parametrize("budget", [0, 1, 6])
    def test_budget_below_child_count_is_rejected(self, dense_city, budget):
        with pytest.raises(ValueError):
            get_map_view(dense_city, NO_FILTERS, h3.latlng_to_cell(*CENTER, 5), budget=budget)

    def test_settings_reject_budget_below_child_count(self):
        with pytest.raises(ValidationError):
            Settings(map_budget=3)
        assert Settings(map_budget=MIN_MAP_BUDGET).map_budget == 7

    def test_finest_level_lists_locations(self, session):
        cell, point = cell_center(8)
        add_offense(session, location="AV ITALIA Y COMERCIO", point=point)
        add_offense(session, location="AV ITALIA Y COMERCIO", point=point)
        add_offense(session, location="OTRA", point=(point[0] + 0.0001, point[1]))
        view = get_map_view(session, NO_FILTERS, cell)
        assert view.resolution == 8
        by_name = {f["properties"]["location"]: f["properties"] for f in view.features}
        assert by_name["AV ITALIA Y COMERCIO"]["offenses"] == 2
        assert all(p["type"] == "location" for p in by_name.values())
        assert view.total_records == 3

    def test_dense_cell_becomes_corrective_cluster(self, session):
        child, point = cell_center(8)
        for jid in (6, 26, 40, 45, 48):
            add_offense(session, jurisdiction_id=jid, location="RUTA 1 KM 20", point=(point[0] + jid * 1e-6, point[1]))
        view = get_map_view(session, NO_FILTERS, h3.cell_to_parent(child, 7), budget=15)
        assert len(view.features) == 1
        props = view.features[0]["properties"]
        assert props["type"] == "cluster"
        assert props["h3_index"] == child
        assert props["offenses"] == 5
        assert props["locations"] == 5

    def test_sparse_cell_is_exploded(self, session):
        child, point = cell_center(8)
        add_offense(session, jurisdiction_id=6, location="RUTA 1 KM 20", point=point)
        add_offense(session, jurisdiction_id=40, location="RUTA 1 KM 20", point=(point[0] + 1e-5, point[1]))
        view = get_map_view(session, NO_FILTERS, h3.cell_to_parent(child, 7), budget=15)
        assert [f["properties"]["type"] for f in view.features] == ["location", "location"]

    def test_coordinates_are_rounded(self, session):
        cell, point = cell_center(8)
        add_offense(session, point=(point[0] + 1.23456789e-7, point[1]))
        lng, lat = get_map_view(session, NO_FILTERS, cell).features[0]["geometry"]["coordinates"]
        assert lat == round(lat, 6)
        assert lng == round(lng, 6)

    def test_unlocated_records_are_ignored(self, session):
        cell, point = cell_center(8)
        add_offense(session, point=point)
        add_offense(session, point=None)
        assert get_map_view(session, NO_FILTERS, cell).total_records == 1

    def test_invalid_cells(self, session):
        with pytest.raises(InvalidCellError):
            get_map_view(session, NO_FILTERS, "zzz")
        with pytest.raises(InvalidCellError):
            get_map_view(session, NO_FILTERS, h3.latlng_to_cell(*CENTER, 0))


class TestFilters:
    def test_from_params(self):
        filters = MapFilters.from_params(
            {"jurisdiction": ["6", "40"], "year": "2023,2024", "electronic": "true", "article_code": "21"}
        )
        assert filters.jurisdictions == (6, 40)
        assert filters.years == (2023, 2024)
        assert filters.electronic is True
        assert filters.article_codes == (21,)

    @pytest.mark.parametrize(
        "params", [{"colour": "red"}, {"year": "last"}, {"electronic": "maybe"}, {"jurisdiction": "6,x"}]
    )
    def test_bad_params(self, params):
        with pytest.raises(InvalidFilterError):
            MapFilters.from_params(params)

    @pytest.fixture
    def mixed(self, session):
        cell, point = cell_center(8)
        add_offense(
            session,
            point=point,
            ts=datetime(2023, 3, 1, tzinfo=timezone.utc),
            article_ids=["13.3.A", "21.1"],
            article_codes=[13, 21],
            is_electronic=True,
        )
        add_offense(
            session,
            jurisdiction_id=40,
            description="NO USAR CINTURON",
            location="OTRA",
            point=point,
            ts=datetime(2024, 3, 1, tzinfo=timezone.utc),
            article_ids=["21.1"],
            article_codes=[21],
            is_electronic=False,
        )
        return session, cell

    @pytest.mark.parametrize(
        "params, expected",
        [
            ({}, 2),
            ({"year": "2024"}, 1),
            ({"jurisdiction": "40"}, 1),
            ({"article_id": "13.3.A"}, 1),
            ({"article_id": "21.1"}, 2),
            ({"article_code": "21"}, 2),
            ({"article_code": "1"}, 0),
            ({"electronic": "false"}, 1),
            ({"description": "cinturon"}, 1),
            ({"location": "OTRA"}, 1),
        ],
    )
    def test_filters_narrow_records(self, mixed, params, expected):
        session, cell = mixed
        view = get_map_view(session, MapFilters.from_params(params), cell)
        assert view.total_records == expected


class TestViewport:
    def test_single_point_gives_finest_cell(self, session):
        add_offense(session, point=CENTER)
        vp = viewport_cell(session, NO_FILTERS)
        assert vp.resolution == 8
        assert vp.cell == h3.latlng_to_cell(*CENTER, 8)

    def test_no_records(self, session):
        vp = viewport_cell(session, NO_FILTERS)
        assert vp.cell is None
        assert vp.resolution is None

    def test_data_version_changes_with_records(self, session):
        before = data_version(session)
        add_offense(session, point=CENTER)
        assert data_version(session) != before
