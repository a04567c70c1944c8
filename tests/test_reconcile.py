from __future__ import annotations

import pytest

from multas_core.db.models import Offense
from multas_core.errors import JudgmentsFileError, UnsavedWorkError
from multas_core.export import ArticleRecord, DescriptionRecord, ExportDocument, LocationRecord, write_export

from curation_service.reconcile import (
    LoadAction,
    ReconcileState,
    ReconciliationController,
    compare_counts,
)

from conftest import ARTICLES, add_offense

ARTICLE_RECORDS = [ArticleRecord(id=i, code=c, title=t, text=x) for i, c, t, x in ARTICLES]


def document(n_descriptions=0, n_locations=0):
    return ExportDocument(
        articles=ARTICLE_RECORDS,
        descriptions=[DescriptionRecord(description=f"DESC {i}", article_ids=["21.1"]) for i in range(n_descriptions)],
        locations=[
            LocationRecord(jurisdiction_id=6, location=f"CALLE {i}", lat=-34.9 + i * 0.001, lng=-56.2)
            for i in range(n_locations)
        ],
    )


@pytest.fixture
def judgments_file(tmp_path):
    return tmp_path / "judgments.json"


@pytest.fixture
def controller(seeded_store, judgments_file):
    return ReconciliationController(seeded_store.session, judgments_file)


def test_compare_counts():
    base = {"articles": 4, "descriptions": 5, "locations": 2}
    assert compare_counts(base, dict(base)) is ReconcileState.loaded
    assert compare_counts(base, {**base, "locations": 3}) is ReconcileState.uninitialized
    assert compare_counts(base, {**base, "descriptions": 4}) is ReconcileState.dirty
    # Any kind ahead in the store wins over others being behind.
    assert compare_counts(base, {"articles": 9, "descriptions": 0, "locations": 9}) is ReconcileState.dirty


class TestLoad:
    def test_status_without_file(self, controller):
        assert controller.status().state is ReconcileState.uninitialized
        assert controller.status().exported is None

    def test_live_ahead_aborts_without_mutation(self, controller, seeded_store, judgments_file):
        for i in range(10):
            seeded_store.save_description(f"LIVE {i}", ["13.3.A"])
        seeded_store.session.commit()
        write_export(judgments_file, document(n_descriptions=5))

        assert controller.status().state is ReconcileState.dirty
        with pytest.raises(UnsavedWorkError) as exc_info:
            controller.load()
        assert "descriptions" in str(exc_info.value)
        assert seeded_store.counts()["descriptions"] == 10
        assert seeded_store.get_description("LIVE 0") is not None

    def test_live_location_work_aborts_without_mutation(self, controller, seeded_store, judgments_file):
        for i in range(10):
            seeded_store.save_location(6, f"LIVE {i}", lat=-34.9 + i * 0.001, lng=-56.19)
        seeded_store.session.commit()
        write_export(judgments_file, document(n_locations=5))

        assert controller.status().state is ReconcileState.dirty
        with pytest.raises(UnsavedWorkError) as exc_info:
            controller.load()
        assert "locations: 10 live vs 5 exported" in str(exc_info.value)
        assert seeded_store.counts()["locations"] == 10
        assert seeded_store.get_location(6, "LIVE 9") is not None
        assert seeded_store.get_location(6, "CALLE 0") is None

    def test_missing_file_reads_as_empty(self, store, judgments_file):
        result = ReconciliationController(store.session, judgments_file).load()
        assert result.action is LoadAction.unchanged
        assert result.exported == {"articles": 0, "descriptions": 0, "locations": 0}

    def test_missing_file_still_protects_live_work(self, controller, seeded_store):
        with pytest.raises(UnsavedWorkError):
            controller.load()
        assert seeded_store.counts()["articles"] == 4

    @pytest.mark.parametrize("text", ["{not json", '{"articles": [{"id": "21.1"}]}', "[]"])
    def test_unreadable_file_raises_without_mutation(self, controller, seeded_store, judgments_file, text):
        judgments_file.write_text(text, encoding="utf-8")
        with pytest.raises(JudgmentsFileError):
            controller.load()
        with pytest.raises(JudgmentsFileError):
            controller.status()
        assert seeded_store.counts()["articles"] == 4

    def test_file_ahead_replaces_store(self, controller, seeded_store, judgments_file):
        seeded_store.save_description("LIVE", ["13.3.A"])
        seeded_store.session.commit()
        write_export(judgments_file, document(n_descriptions=3, n_locations=2))

        result = controller.load()
        assert result.action is LoadAction.replaced
        assert seeded_store.counts() == {"articles": 4, "descriptions": 3, "locations": 2}
        assert seeded_store.get_description("LIVE") is None
        assert seeded_store.get_location(6, "CALLE 1").h3_res8 is not None
        assert controller.status().state is ReconcileState.loaded

    def test_store_then_load_is_a_no_op(self, controller, seeded_store, judgments_file):
        seeded_store.save_description("EXCESO DE VELOCIDAD", ["13.3.A"])
        seeded_store.save_location(6, "AV ITALIA Y COMERCIO", lat=-34.9058, lng=-56.1913, method="manual_click")
        seeded_store.session.commit()

        controller.store()
        first = judgments_file.read_text(encoding="utf-8")
        assert controller.load().action is LoadAction.unchanged
        controller.store()
        assert judgments_file.read_text(encoding="utf-8") == first
        assert controller.status().state is ReconcileState.exported

    def test_edit_after_store_leaves_exported_state(self, controller, seeded_store):
        seeded_store.save_description("EXCESO DE VELOCIDAD", ["13.3.A"])
        seeded_store.session.commit()
        controller.store()
        assert controller.status().state is ReconcileState.exported

        seeded_store.save_description("Exceso de velocidad", ["21.1"])
        seeded_store.session.commit()
        report = controller.status()
        assert report.live == report.exported
        assert report.state is ReconcileState.loaded

    def test_exported_file_uses_legacy_free_values(self, controller, seeded_store, judgments_file):
        seeded_store.save_location(65, "RUTA 5 Y 38K131", lat=-34.6, lng=-56.25, method="radares_rutas", confidence="high")
        seeded_store.session.commit()
        controller.store()
        text = judgments_file.read_text(encoding="utf-8")
        assert '"method": "gazetteer"' in text
        assert '"confidence": "exact"' in text


class TestBackfill:
    @pytest.fixture
    def judged(self, seeded_store):
        seeded_store.save_description("EXCESO DE VELOCIDAD", ["13.3.A"])
        seeded_store.save_description("NO USAR CINTURON", ["21.1"])
        seeded_store.save_description("SIN CINTURON", ["21.1"])
        seeded_store.save_description("CONDUCIR CON SANDALIAS", [])
        seeded_store.save_location(6, "AV ITALIA Y COMERCIO", lat=-34.9058, lng=-56.1913, is_electronic=True)
        seeded_store.session.commit()
        return seeded_store

    def test_judgments_reach_offenses(self, controller, judged):
        session = judged.session
        located = add_offense(session, location="Av Italia y Comercio", description="exceso de velocidad")
        composite = add_offense(session, location="OTRA", description="EXCESO DE VELOCIDAD, SIN CINTURON")
        partial = add_offense(session, location="OTRA", description="EXCESO DE VELOCIDAD, ALGO RARO")
        no_article = add_offense(session, location="OTRA", description="CONDUCIR CON SANDALIAS")
        add_offense(session, location="OTRA", description="NO USAR CINTURON")
        session.commit()

        report = controller.backfill(batch_size=2)

        assert report.locations_updated == 1
        assert report.descriptions_updated == 4
        located = session.get(Offense, located.id)
        assert (located.lat, located.lng) == (-34.9058, -56.1913)
        assert located.is_electronic is True
        assert located.h3_res8 == judged.get_location(6, "AV ITALIA Y COMERCIO").h3_res8
        assert located.article_ids == ["13.3.A"]
        assert located.article_codes == [13]
        assert session.get(Offense, composite.id).article_ids == ["13.3.A", "21.1"]
        assert session.get(Offense, composite.id).article_codes == [13, 21]
        assert session.get(Offense, partial.id).article_ids is None
        assert session.get(Offense, no_article.id).article_ids == []

        assert report.locations_unjudged.records == 4
        assert report.locations_unjudged.distinct == 1
        assert report.descriptions_unjudged.records == 1
        assert report.locations_unapplied.records == 0
        assert report.descriptions_unapplied.records == 0

    def test_backfill_is_idempotent(self, controller, judged):
        add_offense(judged.session, description="NO USAR CINTURON")
        judged.session.commit()
        assert controller.backfill().descriptions_updated == 1
        assert controller.backfill().descriptions_updated == 0

    def test_merged_location_carries_canonical_name(self, controller, judged):
        judged.save_location(6, "ITALIA Y COMERCIO", lat=-34.90585, lng=-56.19135)
        judged.merge_locations(6, "ITALIA Y COMERCIO", "AV ITALIA Y COMERCIO")
        judged.session.commit()
        offense = add_offense(judged.session, location="ITALIA Y COMERCIO")
        judged.session.commit()

        controller.backfill()
        offense = judged.session.get(Offense, offense.id)
        assert offense.canonical_location == "AV ITALIA Y COMERCIO"
        assert (offense.lat, offense.lng) == (-34.9058, -56.1913)

    def test_aborted_maintain_skips_backfill(self, controller, judged, judgments_file):
        offense = add_offense(judged.session, description="NO USAR CINTURON")
        judged.session.commit()
        write_export(judgments_file, ExportDocument())

        with pytest.raises(UnsavedWorkError):
            controller.maintain()
        assert judged.session.get(Offense, offense.id).article_ids is None

    def test_maintain_loads_then_backfills(self, controller, judged, judgments_file):
        controller.store()
        offense = add_offense(judged.session, description="NO USAR CINTURON")
        judged.session.commit()

        result, report = controller.maintain()
        assert result.action is LoadAction.unchanged
        assert report.descriptions_updated == 1
        assert judged.session.get(Offense, offense.id).article_codes == [21]
