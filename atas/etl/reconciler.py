import logging
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from atas.config import SOURCE_UNIT_CODE
from atas.db.models import AgreementItem, CatalogItem, ItemDescription, PriceRegistration, utcnow
from atas.utils.parsers import get_bool, get_date, get_datetime, get_decimal, get_int, get_str

logger = logging.getLogger(__name__)

MISSING_AGREEMENT_NUMBER = "SEM NUMERO"

# Agreement fields taken from the payload as strings, (payload key, column)
AGREEMENT_TEXT_FIELDS = [
    ('numeroAtaRegistroPreco', 'numero_ata'),
    ('codigoUnidadeGerenciadora', 'codigo_unidade_gerenciadora'),
    ('nomeUnidadeGerenciadora', 'nome_unidade_gerenciadora'),
    ('numeroCompra', 'numero_compra'),
    ('anoCompra', 'ano_compra'),
    ('codigoModalidadeCompra', 'codigo_modalidade_compra'),
    ('nomeModalidadeCompra', 'nome_modalidade_compra'),
    ('idCompra', 'id_compra'),
    ('numeroControlePncpCompra', 'numero_controle_pncp_compra'),
]
AGREEMENT_DATE_FIELDS = [
    ('dataAssinatura', 'data_assinatura'),
    ('dataVigenciaInicial', 'data_vigencia_inicial'),
    ('dataVigenciaFinal', 'data_vigencia_final'),
]

LINE_TEXT_FIELDS = [
    ('classificacaoFornecedor', 'classificacao_fornecedor'),
    ('niFornecedor', 'ni_fornecedor'),
    ('nomeRazaoSocialFornecedor', 'nome_razao_social_fornecedor'),
    ('situacaoSicaf', 'situacao_sicaf'),
]
LINE_DECIMAL_FIELDS = [
    ('quantidadeHomologadaItem', 'quantidade_homologada_item'),
    ('quantidadeHomologadaVencedor', 'quantidade_homologada_vencedor'),
    ('quantidadeEmpenhada', 'quantidade_empenhada'),
    ('maximoAdesao', 'maximo_adesao'),
    ('valorUnitario', 'valor_unitario'),
    ('valorTotal', 'valor_total'),
    ('percentualMaiorDesconto', 'percentual_maior_desconto'),
]


class DuplicateAgreement(Exception):
    """(numero_ata, unidade) already belongs to another control number."""


class RecordOutcome(NamedTuple):
    """new_description counts only unseen texts of items stored before."""
    new_agreement: bool = False
    new_line_item: bool = False
    new_description: bool = False


class RecordReconciler:
    """
    Maps one flat record from the ARP items endpoint onto the agreement,
    catalog item, description and line-item tables.

    Nothing is committed here: the caller owns the transaction and decides
    what to do with integrity errors.
    """

    def __init__(self, default_unit_code: str = SOURCE_UNIT_CODE):
        self.default_unit_code = default_unit_code

    def reconcile(self, db: Session, record: dict) -> RecordOutcome:
        control_number = get_str(record, 'numeroControlePncpAta')
        if not control_number:
            logger.warning("Record without numeroControlePncpAta, skipping")
            return RecordOutcome()

        ata, new_agreement = self.resolve_agreement(db, control_number, record)

        codigo_item = get_int(record, 'codigoItem')
        if codigo_item is None:
            logger.warning(f"Record of ata {control_number} without codigoItem, skipping item")
            return RecordOutcome(new_agreement=new_agreement)

        description = get_str(record, 'descricaoItem')
        known_item = db.get(CatalogItem, codigo_item) is not None
        self.resolve_catalog_item(db, codigo_item, description, record)
        captured = self.capture_description(db, codigo_item, description)
        # the first text of a brand-new item is its primary, not a variant
        new_description = captured and known_item
        new_line_item = self.resolve_line_item(db, ata, codigo_item, description, record)

        return RecordOutcome(new_agreement, new_line_item, new_description)

    def resolve_agreement(self, db: Session, control_number: str, record: dict):
        ata = db.query(PriceRegistration).filter(
            PriceRegistration.numero_controle_pncp_ata == control_number
        ).first()

        if ata:
            self._update_agreement(ata, record)
            db.flush()
            return ata, False

        numero_ata = get_str(record, 'numeroAtaRegistroPreco') or MISSING_AGREEMENT_NUMBER
        unit_code = get_str(record, 'codigoUnidadeGerenciadora') or self.default_unit_code
        clash = db.query(PriceRegistration.numero_controle_pncp_ata).filter(
            PriceRegistration.numero_ata == numero_ata,
            PriceRegistration.codigo_unidade_gerenciadora == unit_code,
        ).first()
        if clash:
            raise DuplicateAgreement(
                f"ata {numero_ata}/{unit_code} already stored as {clash[0]}, not as {control_number}"
            )

        ata = PriceRegistration(numero_controle_pncp_ata=control_number)
        self._update_agreement(ata, record)
        ata.numero_ata = numero_ata
        ata.codigo_unidade_gerenciadora = unit_code
        ata.data_hora_inclusao = utcnow()
        db.add(ata)
        db.flush()
        return ata, True

    @staticmethod
    def _update_agreement(ata: PriceRegistration, record: dict):
        # a value missing from the payload never erases a known one
        for key, column in AGREEMENT_TEXT_FIELDS:
            value = get_str(record, key)
            if value is not None:
                setattr(ata, column, value)
        for key, column in AGREEMENT_DATE_FIELDS:
            value = get_date(record, key)
            if value is not None:
                setattr(ata, column, value)
        ata.data_hora_atualizacao = utcnow()

    @staticmethod
    def resolve_catalog_item(db: Session, codigo_item: int, description: Optional[str], record: dict) -> CatalogItem:
        item = db.get(CatalogItem, codigo_item)
        if not item:
            item = CatalogItem(
                codigo_item=codigo_item,
                tipo_item=get_str(record, 'tipoItem') or "Material",
                codigo_pdm=get_int(record, 'codigoPdm'),
                nome_pdm=get_str(record, 'nomePdm'),
                descricao_principal=description,
                data_criacao=utcnow(),
            )
            db.add(item)
            db.flush()
        elif not item.descricao_principal and description:
            item.descricao_principal = description
            db.flush()
        return item

    @staticmethod
    def capture_description(db: Session, codigo_item: int, description: Optional[str]) -> bool:
        if not description:
            return False
        exists = db.query(ItemDescription.id).filter(
            ItemDescription.codigo_item == codigo_item,
            ItemDescription.descricao_item == description,
        ).first()
        if exists:
            return False
        db.add(ItemDescription(codigo_item=codigo_item, descricao_item=description, data_registro=utcnow()))
        db.flush()
        return True

    @staticmethod
    def resolve_line_item(db: Session, ata: PriceRegistration, codigo_item: int,
                          description: Optional[str], record: dict) -> bool:
        numero_item = get_str(record, 'numeroItem')
        line = db.query(AgreementItem).filter(
            AgreementItem.ata_id == ata.id,
            AgreementItem.codigo_item == codigo_item,
            AgreementItem.numero_item.is_(None) if numero_item is None else AgreementItem.numero_item == numero_item,
        ).first()

        is_new = line is None
        if is_new:
            line = AgreementItem(ata_id=ata.id, codigo_item=codigo_item, numero_item=numero_item)
            db.add(line)

        # commercial terms change between crawls, the latest payload wins
        line.descricao_item_original = description
        for key, column in LINE_TEXT_FIELDS:
            setattr(line, column, get_str(record, key))
        for key, column in LINE_DECIMAL_FIELDS:
            setattr(line, column, get_decimal(record, key))
        line.item_excluido = get_bool(record, 'itemExcluido')
        line.data_hora_exclusao = get_datetime(record, 'dataHoraExclusao')

        db.flush()
        return is_new
