from atas.db.models import CatalogItem, ItemDescription, PriceRegistration
from atas.etl.coordinator import RunOutcome, SyncCoordinator
from atas.etl.enrich_descriptions import backfill_primary_descriptions
from atas.etl.load_historical import load_history
from atas.etl.sync_daily import sync_daily

import reset_db

from conftest import FakeClient, make_record


def two_page_client(**kwargs):
    return FakeClient({
        1: [make_record()],
        2: [make_record(numeroControlePncpAta="42498600000171-1-000900/2023-000009",
                        numeroAtaRegistroPreco="00009/2023", codigoItem=999)],
    }, **kwargs)


class FlakyClient(FakeClient):
    """Fails each listed page on its first fetch only."""

    def fetch_page(self, page, window=None, cancel_event=None):
        raw_page = super().fetch_page(page, window, cancel_event)
        self.failing.discard(page)
        return raw_page


def test_load_history_retries_failed_pages(session_factory, db):
    client = FlakyClient(two_page_client().pages, failing={2})
    coordinator = SyncCoordinator(client, session_factory, page_delay=0)

    result = load_history(coordinator)

    assert result.outcome == RunOutcome.FAILED
    assert client.fetched_pages() == [1, 2, 2]
    assert coordinator.progress.failed_pages() == []
    assert db.query(PriceRegistration).count() == 2


def test_load_history_in_parallel(session_factory, db):
    coordinator = SyncCoordinator(two_page_client(), session_factory, page_delay=0)

    result = load_history(coordinator, parallel=True)

    assert result.success
    assert db.query(PriceRegistration).count() == 2


def test_sync_daily_reports_failed_pages(session_factory):
    coordinator = SyncCoordinator(two_page_client(failing={2}), session_factory, page_delay=0)

    result = sync_daily(coordinator)

    assert not result.success
    assert coordinator.progress.failed_pages() == [2]


def test_backfill_primary_descriptions(db):
    db.add_all([
        CatalogItem(codigo_item=1, tipo_item="Material"),
        CatalogItem(codigo_item=2, tipo_item="Material"),
        CatalogItem(codigo_item=3, tipo_item="Material", descricao_principal="Caneta azul"),
    ])
    db.flush()
    db.add_all([
        ItemDescription(codigo_item=1, descricao_item="Lapis preto"),
        ItemDescription(codigo_item=1, descricao_item="Lapis preto n 2"),
        ItemDescription(codigo_item=3, descricao_item="Caneta esferografica"),
    ])
    db.commit()

    assert backfill_primary_descriptions(db) == 1

    assert db.get(CatalogItem, 1).descricao_principal == "Lapis preto"
    assert db.get(CatalogItem, 2).descricao_principal is None
    assert db.get(CatalogItem, 3).descricao_principal == "Caneta azul"


def test_reset_database(session_factory, db):
    SyncCoordinator(two_page_client(), session_factory, page_delay=0).run_full()

    deleted = reset_db.reset_database(session_factory)

    assert deleted["atas"] == 2
    assert deleted["items"] == 2
    assert db.query(PriceRegistration).count() == 0
