from unittest.mock import MagicMock

from sqlalchemy.exc import IntegrityError

from atas.db.models import AgreementItem, CatalogItem, ItemDescription, PriceRegistration
from atas.etl.client import RawPage
from atas.etl.pages import PageProcessor
from atas.etl.reconciler import RecordOutcome, RecordReconciler

from conftest import make_record


def page_of(*records, number=1):
    return RawPage(number=number, total_pages=3, total_records=len(records), records=list(records))


def table_counts(db):
    return {
        model.__tablename__: db.query(model).count()
        for model in (PriceRegistration, CatalogItem, ItemDescription, AgreementItem)
    }


def test_page_with_new_agreement_and_known_item_under_new_description(session_factory, db):
    processor = PageProcessor(session_factory)
    processor.process_page(page_of(make_record(
        numeroControlePncpAta="00000000000100-1-000001/2023-000001",
        numeroAtaRegistroPreco="00001/2023",
        codigoItem=500,
        descricaoItem="Cadeira giratória",
    )))

    outcome = processor.process_page(page_of(
        make_record(codigoItem=600, descricaoItem="Mesa de escritório"),
        make_record(codigoItem=500, descricaoItem="Cadeira giratória com braços"),
    ))

    assert outcome.processed == 2
    assert outcome.new_agreements == 1
    assert outcome.new_line_items == 2
    assert outcome.new_descriptions == 1
    assert db.query(ItemDescription).filter_by(codigo_item=500).count() == 2
    assert db.get(CatalogItem, 500).descricao_principal == "Cadeira giratória"


def test_ingesting_the_same_page_twice_is_idempotent(session_factory, db):
    processor = PageProcessor(session_factory)
    page = page_of(
        make_record(),
        make_record(numeroItem="00002", codigoItem=222, descricaoItem="Grampeador"),
        make_record(numeroControlePncpAta="11111111000111-1-000002/2023-000003",
                    numeroAtaRegistroPreco="00003/2023", codigoItem=222, descricaoItem="Grampeador"),
    )

    first = processor.process_page(page)
    counts = table_counts(db)
    second = processor.process_page(page)

    assert first.new_agreements == 2
    assert first.new_line_items == 3
    assert second.processed == 3
    assert (second.new_agreements, second.new_line_items, second.new_descriptions) == (0, 0, 0)
    assert table_counts(db) == counts


def test_failing_record_does_not_stop_the_page(session_factory, db):
    processor = PageProcessor(session_factory)
    outcome = processor.process_page(page_of(
        make_record(),
        "not a record",
        make_record(numeroControlePncpAta="22222222000122-1-000009/2023-000009",
                    numeroAtaRegistroPreco="00009/2023"),
    ))

    assert outcome.processed == 3
    assert outcome.new_agreements == 2
    assert db.query(PriceRegistration).count() == 2


def test_integrity_error_is_counted_as_processed_and_rolled_back(session_factory):
    reconciler = MagicMock(spec=RecordReconciler)
    reconciler.reconcile.side_effect = [
        IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
        RecordOutcome(True, True, False),
    ]
    processor = PageProcessor(session_factory, reconciler)

    outcome = processor.process_page(page_of(make_record(), make_record()))

    assert outcome.processed == 2
    assert outcome.new_agreements == 1
    assert outcome.new_line_items == 1


def test_duplicate_number_and_unit_is_not_an_error(session_factory, db):
    processor = PageProcessor(session_factory)
    outcome = processor.process_page(page_of(
        make_record(),
        make_record(numeroControlePncpAta="99999999000199-1-000001/2024-000001", codigoItem=777),
    ))

    assert outcome.processed == 2
    assert outcome.new_agreements == 1
    assert db.query(PriceRegistration).count() == 1
    assert db.get(CatalogItem, 777) is None
