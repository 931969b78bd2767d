from datetime import date
from decimal import Decimal

import pytest

from atas.db.models import AgreementItem, CatalogItem, ItemDescription, PriceRegistration
from atas.etl.reconciler import DuplicateAgreement, RecordReconciler

from conftest import make_record


@pytest.fixture()
def reconciler():
    return RecordReconciler(default_unit_code="986001")


def reconcile(db, reconciler, record):
    outcome = reconciler.reconcile(db, record)
    db.commit()
    return outcome


def test_first_sighting_creates_everything(db, reconciler):
    outcome = reconcile(db, reconciler, make_record())

    assert outcome == (True, True, False)
    assert db.query(ItemDescription).count() == 1
    ata = db.query(PriceRegistration).one()
    assert ata.numero_ata == "00007/2023"
    assert ata.data_vigencia_final == date(2024, 6, 1)
    item = db.get(CatalogItem, 150563)
    assert item.descricao_principal == "Papel A4, 75 g/m2"
    assert item.codigo_pdm == 1234
    line = db.query(AgreementItem).one()
    assert line.valor_unitario == Decimal("25.5")
    assert line.percentual_maior_desconto == Decimal("3.5")
    assert line.item_excluido is False


def test_record_without_control_number_is_skipped(db, reconciler):
    outcome = reconcile(db, reconciler, make_record(numeroControlePncpAta=None))

    assert outcome == (False, False, False)
    assert db.query(PriceRegistration).count() == 0


def test_record_without_item_code_keeps_only_the_agreement(db, reconciler):
    outcome = reconcile(db, reconciler, make_record(codigoItem=None))

    assert outcome.new_agreement
    assert not outcome.new_line_item
    assert db.query(CatalogItem).count() == 0
    assert db.query(AgreementItem).count() == 0


def test_agreement_update_never_erases_known_values(db, reconciler):
    reconcile(db, reconciler, make_record())
    outcome = reconcile(db, reconciler, make_record(
        nomeUnidadeGerenciadora=None,
        dataAssinatura="",
        dataVigenciaFinal="2025-01-31",
        nomeModalidadeCompra="Dispensa",
    ))

    assert not outcome.new_agreement
    ata = db.query(PriceRegistration).one()
    assert ata.nome_unidade_gerenciadora == "COMANDO DA 1A REGIAO MILITAR"
    assert ata.data_assinatura == date(2023, 6, 1)
    assert ata.data_vigencia_final == date(2025, 1, 31)
    assert ata.nome_modalidade_compra == "Dispensa"


def test_missing_agreement_number_uses_placeholder(db, reconciler):
    reconcile(db, reconciler, make_record(numeroAtaRegistroPreco=None, codigoUnidadeGerenciadora=None))

    ata = db.query(PriceRegistration).one()
    assert ata.numero_ata == "SEM NUMERO"
    assert ata.codigo_unidade_gerenciadora == "986001"


def test_same_number_and_unit_under_other_control_number_is_a_duplicate(db, reconciler):
    reconcile(db, reconciler, make_record())

    with pytest.raises(DuplicateAgreement):
        reconciler.reconcile(db, make_record(numeroControlePncpAta="99999999000199-1-000001/2024-000001"))
    db.rollback()

    assert db.query(PriceRegistration).count() == 1


def test_primary_description_is_backfilled_only_while_empty(db, reconciler):
    reconcile(db, reconciler, make_record(descricaoItem=None))
    assert db.get(CatalogItem, 150563).descricao_principal is None

    reconcile(db, reconciler, make_record(descricaoItem="Papel sulfite"))
    assert db.get(CatalogItem, 150563).descricao_principal == "Papel sulfite"

    reconcile(db, reconciler, make_record(descricaoItem="Papel reciclado"))
    assert db.get(CatalogItem, 150563).descricao_principal == "Papel sulfite"


def test_new_description_text_adds_exactly_one_variant(db, reconciler):
    reconcile(db, reconciler, make_record())
    outcome = reconcile(db, reconciler, make_record(descricaoItem="Papel A4 branco"))
    again = reconcile(db, reconciler, make_record(descricaoItem="Papel A4 branco"))

    assert outcome.new_description
    assert not again.new_description
    texts = sorted(d.descricao_item for d in db.query(ItemDescription).filter_by(codigo_item=150563))
    assert texts == ["Papel A4 branco", "Papel A4, 75 g/m2"]


def test_line_item_is_overwritten_by_latest_payload(db, reconciler):
    reconcile(db, reconciler, make_record())
    outcome = reconcile(db, reconciler, make_record(
        valorUnitario="19.90",
        valorTotal=None,
        nomeRazaoSocialFornecedor="OUTRO FORNECEDOR SA",
        itemExcluido="sim",
        dataHoraExclusao="2024-02-10T14:00:00",
    ))

    assert not outcome.new_line_item
    line = db.query(AgreementItem).one()
    assert line.valor_unitario == Decimal("19.9")
    # unlike agreements, a missing value does overwrite
    assert line.valor_total is None
    assert line.nome_razao_social_fornecedor == "OUTRO FORNECEDOR SA"
    assert line.item_excluido is True
    assert line.data_hora_exclusao.year == 2024


def test_other_line_number_is_another_line_item(db, reconciler):
    reconcile(db, reconciler, make_record())
    outcome = reconcile(db, reconciler, make_record(numeroItem="00002"))

    assert outcome.new_line_item
    assert db.query(AgreementItem).count() == 2
    assert db.query(CatalogItem).count() == 1
