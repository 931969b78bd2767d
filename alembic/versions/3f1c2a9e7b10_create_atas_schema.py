"""create atas schema

Revision ID: 3f1c2a9e7b10
Revises: 
Create Date: 2026-10-19 10:12:41.201733

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'items',
        sa.Column('codigo_item', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('tipo_item', sa.String(length=50), nullable=False),
        sa.Column('descricao_principal', sa.Text(), nullable=True),
        sa.Column('codigo_pdm', sa.Integer(), nullable=True),
        sa.Column('nome_pdm', sa.String(length=255), nullable=True),
        sa.Column('data_criacao', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('codigo_item'),
    )
    op.create_table(
        'atas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('numero_controle_pncp_ata', sa.String(length=100), nullable=False),
        sa.Column('numero_ata', sa.String(length=20), nullable=False),
        sa.Column('codigo_unidade_gerenciadora', sa.String(length=10), nullable=False),
        sa.Column('nome_unidade_gerenciadora', sa.String(length=255), nullable=True),
        sa.Column('numero_compra', sa.String(length=10), nullable=True),
        sa.Column('ano_compra', sa.String(length=4), nullable=True),
        sa.Column('codigo_modalidade_compra', sa.String(length=5), nullable=True),
        sa.Column('nome_modalidade_compra', sa.String(length=50), nullable=True),
        sa.Column('id_compra', sa.String(length=50), nullable=True),
        sa.Column('numero_controle_pncp_compra', sa.String(length=100), nullable=True),
        sa.Column('data_assinatura', sa.Date(), nullable=True),
        sa.Column('data_vigencia_inicial', sa.Date(), nullable=True),
        sa.Column('data_vigencia_final', sa.Date(), nullable=True),
        sa.Column('data_hora_inclusao', sa.DateTime(), nullable=True),
        sa.Column('data_hora_atualizacao', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('numero_controle_pncp_ata'),
        sa.UniqueConstraint('numero_ata', 'codigo_unidade_gerenciadora', name='uq_atas_numero_unidade'),
    )
    op.create_index('ix_atas_data_vigencia_final', 'atas', ['data_vigencia_final'], unique=False)
    op.create_table(
        'item_descriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('codigo_item', sa.Integer(), nullable=False),
        sa.Column('descricao_item', sa.Text(), nullable=False),
        sa.Column('data_registro', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['codigo_item'], ['items.codigo_item']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('codigo_item', 'descricao_item', name='uq_item_descriptions_codigo_texto'),
    )
    op.create_table(
        'ata_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ata_id', sa.Integer(), nullable=False),
        sa.Column('codigo_item', sa.Integer(), nullable=False),
        sa.Column('numero_item', sa.String(length=10), nullable=True),
        sa.Column('descricao_item_original', sa.Text(), nullable=True),
        sa.Column('quantidade_homologada_item', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('quantidade_homologada_vencedor', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('quantidade_empenhada', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('maximo_adesao', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('valor_unitario', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('valor_total', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('percentual_maior_desconto', sa.Numeric(precision=10, scale=4), nullable=True),
        sa.Column('classificacao_fornecedor', sa.String(length=10), nullable=True),
        sa.Column('ni_fornecedor', sa.String(length=20), nullable=True),
        sa.Column('nome_razao_social_fornecedor', sa.String(length=255), nullable=True),
        sa.Column('situacao_sicaf', sa.String(length=5), nullable=True),
        sa.Column('item_excluido', sa.Boolean(), nullable=False),
        sa.Column('data_hora_exclusao', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['ata_id'], ['atas.id']),
        sa.ForeignKeyConstraint(['codigo_item'], ['items.codigo_item']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ata_id', 'codigo_item', 'numero_item', name='uq_ata_items_ata_codigo_numero'),
    )
    op.create_index('ix_ata_items_codigo_item', 'ata_items', ['codigo_item'], unique=False)
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=500), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('settings')
    op.drop_index('ix_ata_items_codigo_item', table_name='ata_items')
    op.drop_table('ata_items')
    op.drop_table('item_descriptions')
    op.drop_index('ix_atas_data_vigencia_final', table_name='atas')
    op.drop_table('atas')
    op.drop_table('items')
