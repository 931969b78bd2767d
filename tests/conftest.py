import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from atas.db.models import Base
from atas.etl.client import FULL_WINDOW, RawPage


def make_record(**overrides):
    record = {
        "numeroControlePncpAta": "42498600000171-1-000586/2023-000007",
        "numeroAtaRegistroPreco": "00007/2023",
        "codigoUnidadeGerenciadora": "986001",
        "nomeUnidadeGerenciadora": "COMANDO DA 1A REGIAO MILITAR",
        "numeroCompra": "00586",
        "anoCompra": "2023",
        "codigoModalidadeCompra": "05",
        "nomeModalidadeCompra": "Pregão",
        "idCompra": "98600105000586202",
        "numeroControlePncpCompra": "42498600000171-1-000586/2023",
        "dataAssinatura": "2023-06-01",
        "dataVigenciaInicial": "2023-06-02",
        "dataVigenciaFinal": "2024-06-01",
        "codigoItem": 150563,
        "tipoItem": "Material",
        "descricaoItem": "Papel A4, 75 g/m2",
        "codigoPdm": 1234,
        "nomePdm": "PAPEL",
        "numeroItem": "00001",
        "quantidadeHomologadaItem": "100",
        "classificacaoFornecedor": "1",
        "niFornecedor": "12345678000190",
        "nomeRazaoSocialFornecedor": "PAPELARIA CENTRAL LTDA",
        "quantidadeHomologadaVencedor": 100,
        "valorUnitario": "25.50",
        "valorTotal": 2550.0,
        "maximoAdesao": None,
        "quantidadeEmpenhada": "10",
        "percentualMaiorDesconto": "3,5",
        "situacaoSicaf": "1",
        "itemExcluido": False,
        "dataHoraExclusao": None,
    }
    record.update(overrides)
    return record


class FakeClient:
    """In-memory stand-in for ComprasClient, pages keyed by number."""

    unit_code = "986001"

    def __init__(self, pages=None, failing=None, total_records=None, on_fetch=None, delay=0.0):
        self.pages = pages or {}
        self.failing = set(failing or ())
        self.total_records = total_records
        self.on_fetch = on_fetch
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def total_pages(self):
        return max(self.pages) if self.pages else 0

    def fetch_page(self, page, window=FULL_WINDOW, cancel_event=None):
        with self._lock:
            self.calls.append((page, window))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_fetch:
                self.on_fetch(page)
            if self.delay:
                threading.Event().wait(self.delay)
            if page in self.failing:
                return None
            records = self.pages.get(page, [])
            total_records = self.total_records
            if total_records is None:
                total_records = sum(len(r) for r in self.pages.values())
            return RawPage(number=page, total_pages=self.total_pages, total_records=total_records,
                           records=list(records))
        finally:
            with self._lock:
                self.in_flight -= 1

    def fetched_pages(self):
        return [page for page, _ in self.calls]


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'atas.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
