from datetime import date, timedelta
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import case, distinct, func, select
from sqlalchemy.orm import Session

from atas.analytics.validity import ValidityTier, days_until_expiry, pncp_file_link, tier_day_range, validity_tier
from atas.db.models import AgreementItem, CatalogItem, ItemDescription, PriceRegistration


# Output models for the dashboard
class AgreementSummary(BaseModel):
    id: int
    numero_ata: str
    nome_unidade_gerenciadora: Optional[str]
    data_vigencia_final: Optional[date]
    days_until_expiry: Optional[int]
    tier: Optional[ValidityTier]
    item_count: int
    total_value: float


class AgreementLine(BaseModel):
    codigo_item: int
    numero_item: Optional[str]
    descricao: Optional[str]
    tipo_item: Optional[str]
    fornecedor: Optional[str]
    valor_unitario: Optional[float]
    quantidade_homologada: Optional[float]
    quantidade_empenhada: Optional[float]
    item_excluido: bool


class AgreementDetail(BaseModel):
    id: int
    numero_ata: str
    numero_controle_pncp_ata: str
    nome_unidade_gerenciadora: Optional[str]
    nome_modalidade_compra: Optional[str]
    data_assinatura: Optional[date]
    data_vigencia_inicial: Optional[date]
    data_vigencia_final: Optional[date]
    days_until_expiry: Optional[int]
    tier: Optional[ValidityTier]
    link_pncp: Optional[str]
    items: List[AgreementLine]


class ItemSearchResult(BaseModel):
    codigo_item: int
    tipo_item: Optional[str]
    descricao_principal: Optional[str]
    active_atas: int
    expired_atas: int
    other_descriptions: List[str]


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def list_by_validity(db: Session, tier: Optional[ValidityTier] = None, limit: int = 100,
                     today: Optional[date] = None) -> List[AgreementSummary]:
    """
    Agreements ordered by end of validity. Without a tier only agreements
    that have not expired yet are listed.
    """
    today = today or date.today()

    totals = db.query(
        AgreementItem.ata_id,
        func.count(AgreementItem.id).label('item_count'),
        func.coalesce(func.sum(AgreementItem.valor_total), 0).label('total_value'),
    ).group_by(AgreementItem.ata_id).subquery()

    query = db.query(
        PriceRegistration, totals.c.item_count, totals.c.total_value
    ).outerjoin(
        totals, totals.c.ata_id == PriceRegistration.id
    ).filter(
        PriceRegistration.data_vigencia_final.isnot(None)
    )

    if tier is None:
        query = query.filter(PriceRegistration.data_vigencia_final > today)
    else:
        min_days, max_days = tier_day_range(tier)
        if min_days is not None:
            query = query.filter(PriceRegistration.data_vigencia_final >= today + timedelta(days=min_days))
        if max_days is not None:
            query = query.filter(PriceRegistration.data_vigencia_final <= today + timedelta(days=max_days))

    order = PriceRegistration.data_vigencia_final
    if tier == ValidityTier.EXPIRED:
        order = order.desc()

    rows = query.order_by(order).limit(limit).all()
    return [
        AgreementSummary(
            id=ata.id,
            numero_ata=ata.numero_ata,
            nome_unidade_gerenciadora=ata.nome_unidade_gerenciadora,
            data_vigencia_final=ata.data_vigencia_final,
            days_until_expiry=days_until_expiry(ata.data_vigencia_final, today),
            tier=validity_tier(ata.data_vigencia_final, today),
            item_count=item_count or 0,
            total_value=float(total_value or 0),
        )
        for ata, item_count, total_value in rows
    ]


def get_agreement(db: Session, ata_id: int, today: Optional[date] = None) -> Optional[AgreementDetail]:
    ata = db.get(PriceRegistration, ata_id)
    if not ata:
        return None

    lines = db.query(AgreementItem, CatalogItem.tipo_item).join(
        CatalogItem, AgreementItem.codigo_item == CatalogItem.codigo_item
    ).filter(
        AgreementItem.ata_id == ata.id
    ).order_by(AgreementItem.id).all()

    return AgreementDetail(
        id=ata.id,
        numero_ata=ata.numero_ata,
        numero_controle_pncp_ata=ata.numero_controle_pncp_ata,
        nome_unidade_gerenciadora=ata.nome_unidade_gerenciadora,
        nome_modalidade_compra=ata.nome_modalidade_compra,
        data_assinatura=ata.data_assinatura,
        data_vigencia_inicial=ata.data_vigencia_inicial,
        data_vigencia_final=ata.data_vigencia_final,
        days_until_expiry=days_until_expiry(ata.data_vigencia_final, today),
        tier=validity_tier(ata.data_vigencia_final, today),
        link_pncp=pncp_file_link(ata.numero_controle_pncp_ata),
        items=[
            AgreementLine(
                codigo_item=line.codigo_item,
                numero_item=line.numero_item,
                descricao=line.descricao_item_original,
                tipo_item=tipo_item,
                fornecedor=line.nome_razao_social_fornecedor,
                valor_unitario=_as_float(line.valor_unitario),
                quantidade_homologada=_as_float(line.quantidade_homologada_item),
                quantidade_empenhada=_as_float(line.quantidade_empenhada),
                item_excluido=line.item_excluido,
            )
            for line, tipo_item in lines
        ],
    )


MIN_SEARCH_LENGTH = 3
OTHER_DESCRIPTIONS_SHOWN = 3


def search_items(db: Session, q: str, only_active: bool = False, limit: int = 50,
                 today: Optional[date] = None) -> List[ItemSearchResult]:
    """
    Catalog items having at least one recorded description that contains every
    term of the query, in any order and case. "dipirona 500mg" finds
    "DIPIRONA SODICA 500MG COMPRIMIDO".

    Items with live agreements come first, then those with more expired ones.
    """
    q = (q or '').strip()
    if len(q) < MIN_SEARCH_LENGTH:
        raise ValueError(f"Search must have at least {MIN_SEARCH_LENGTH} characters")
    today = today or date.today()

    matching_codes = select(ItemDescription.codigo_item).where(
        *[ItemDescription.descricao_item.icontains(term, autoescape=True) for term in q.split()]
    )

    end = PriceRegistration.data_vigencia_final
    active_atas = func.count(distinct(case((end > today, AgreementItem.ata_id)))).label('active_atas')
    expired_atas = func.count(distinct(case((end <= today, AgreementItem.ata_id)))).label('expired_atas')

    query = db.query(CatalogItem, active_atas, expired_atas).outerjoin(
        AgreementItem, AgreementItem.codigo_item == CatalogItem.codigo_item
    ).outerjoin(
        PriceRegistration, PriceRegistration.id == AgreementItem.ata_id
    ).filter(
        CatalogItem.codigo_item.in_(matching_codes)
    ).group_by(CatalogItem.codigo_item)

    if only_active:
        query = query.having(active_atas > 0)

    rows = query.order_by(
        active_atas.desc(), expired_atas.desc(), CatalogItem.descricao_principal
    ).limit(limit).all()

    codes = [item.codigo_item for item, _, _ in rows]
    variants = {}
    if codes:
        for codigo_item, text in db.query(ItemDescription.codigo_item, ItemDescription.descricao_item).filter(
            ItemDescription.codigo_item.in_(codes)
        ).order_by(ItemDescription.id):
            variants.setdefault(codigo_item, []).append(text)

    return [
        ItemSearchResult(
            codigo_item=item.codigo_item,
            tipo_item=item.tipo_item,
            descricao_principal=item.descricao_principal,
            active_atas=active or 0,
            expired_atas=expired or 0,
            other_descriptions=[
                text for text in variants.get(item.codigo_item, []) if text != item.descricao_principal
            ][:OTHER_DESCRIPTIONS_SHOWN],
        )
        for item, active, expired in rows
    ]
