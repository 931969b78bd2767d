from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PriceRegistration(Base):
    """
    A price-registration agreement ("ata de registro de preço").
    Identified by the PNCP control number; (numero_ata, codigo_unidade_gerenciadora)
    is unique as well.
    """
    __tablename__ = 'atas'
    __table_args__ = (
        UniqueConstraint('numero_ata', 'codigo_unidade_gerenciadora', name='uq_atas_numero_unidade'),
    )

    id = Column(Integer, primary_key=True)
    numero_controle_pncp_ata = Column(String(100), unique=True, nullable=False)
    numero_ata = Column(String(20), nullable=False)
    codigo_unidade_gerenciadora = Column(String(10), nullable=False)
    nome_unidade_gerenciadora = Column(String(255))

    # Purchase the agreement came out of
    numero_compra = Column(String(10))
    ano_compra = Column(String(4))
    codigo_modalidade_compra = Column(String(5))
    nome_modalidade_compra = Column(String(50))
    id_compra = Column(String(50))
    numero_controle_pncp_compra = Column(String(100))

    data_assinatura = Column(Date)
    data_vigencia_inicial = Column(Date)
    data_vigencia_final = Column(Date, index=True)

    data_hora_inclusao = Column(DateTime, default=utcnow)
    data_hora_atualizacao = Column(DateTime, default=utcnow)

    items = relationship("AgreementItem", back_populates="ata", cascade="all, delete-orphan")


class CatalogItem(Base):
    """
    A material or service from the federal catalog (CATMAT/CATSER).
    The code is stable across agreements.
    """
    __tablename__ = 'items'

    codigo_item = Column(Integer, primary_key=True, autoincrement=False)
    tipo_item = Column(String(50), nullable=False, default="Material")
    descricao_principal = Column(Text)      # First description seen, backfilled while empty
    codigo_pdm = Column(Integer)            # Classification (PDM) code
    nome_pdm = Column(String(255))
    data_criacao = Column(DateTime, default=utcnow)

    descriptions = relationship("ItemDescription", back_populates="item")
    agreement_items = relationship("AgreementItem", back_populates="item")


class ItemDescription(Base):
    """
    Every distinct free-text description observed for a catalog item.
    """
    __tablename__ = 'item_descriptions'
    __table_args__ = (
        UniqueConstraint('codigo_item', 'descricao_item', name='uq_item_descriptions_codigo_texto'),
    )

    id = Column(Integer, primary_key=True)
    codigo_item = Column(Integer, ForeignKey('items.codigo_item'), nullable=False)
    descricao_item = Column(Text, nullable=False)
    data_registro = Column(DateTime, default=utcnow)

    item = relationship("CatalogItem", back_populates="descriptions")


class AgreementItem(Base):
    """
    One priced catalog entry inside an agreement. The source is authoritative:
    every field is rewritten on each sighting.
    """
    __tablename__ = 'ata_items'
    __table_args__ = (
        UniqueConstraint('ata_id', 'codigo_item', 'numero_item', name='uq_ata_items_ata_codigo_numero'),
        Index('ix_ata_items_codigo_item', 'codigo_item'),
    )

    id = Column(Integer, primary_key=True)
    ata_id = Column(Integer, ForeignKey('atas.id'), nullable=False)
    codigo_item = Column(Integer, ForeignKey('items.codigo_item'), nullable=False)
    numero_item = Column(String(10))
    descricao_item_original = Column(Text)

    quantidade_homologada_item = Column(Numeric(18, 4))
    quantidade_homologada_vencedor = Column(Numeric(18, 4))
    quantidade_empenhada = Column(Numeric(18, 4))
    maximo_adesao = Column(Numeric(18, 4))
    valor_unitario = Column(Numeric(18, 4))
    valor_total = Column(Numeric(18, 4))
    percentual_maior_desconto = Column(Numeric(10, 4))

    # Supplier that won the item
    classificacao_fornecedor = Column(String(10))
    ni_fornecedor = Column(String(20))
    nome_razao_social_fornecedor = Column(String(255))
    situacao_sicaf = Column(String(5))

    item_excluido = Column(Boolean, nullable=False, default=False)
    data_hora_exclusao = Column(DateTime)

    ata = relationship("PriceRegistration", back_populates="items")
    item = relationship("CatalogItem", back_populates="agreement_items")


class SystemSetting(Base):
    """
    Generic key/value configuration. Holds the timestamp of the last sync.
    """
    __tablename__ = 'settings'

    id = Column(Integer, primary_key=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(500), nullable=False)
    description = Column(String(255))
    updated_at = Column(DateTime, default=utcnow)
