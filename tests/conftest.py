import pytest
import sys
import os

# 将项目根目录添加到sys.path，以便导入 commission_ledger
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../")))

from commission_ledger.database import Database
from commission_ledger.migrations import run_migrations

ACCESS_KEY = "35240112345678000190550010000012341000012345"

DEFAULT_DUPS = (
    ("001", "2024-02-15", "500.00"),
    ("002", "2024-03-15", "1000.00"),
)

NFE_TEXT = """DANFE
NF-e Nº 000001234
SÉRIE: 1
DATA DE EMISSÃO: 10/01/2024
CHAVE DE ACESSO
3524 0112 3456 7800 0190 5500 1000 0012 3410 0001 2345
RAZÃO SOCIAL: ACME COMERCIO LTDA
CNPJ: 12.345.678/0001-90
DESTINATÁRIO: CLIENTE EXEMPLO SA
CNPJ: 98.765.432/0001-10
VALOR TOTAL DA NOTA: R$ 1.500,00
FATURA
001 15/02/2024 R$ 500,00
002 15/03/2024 R$ 1.000,00
"""


def _build_nfe_xml(access_key=ACCESS_KEY, dups=DEFAULT_DUPS, total="1500.00", with_dest=True, root="nfeProc"):
    dup_xml = "".join(
        f"<dup><nDup>{number}</nDup><dVenc>{due}</dVenc><vDup>{value}</vDup></dup>"
        for number, due, value in dups
    )
    cobr_xml = f"<cobr><fat><nFat>1234</nFat></fat>{dup_xml}</cobr>" if dups else ""
    dest_xml = (
        "<dest><CNPJ>98765432000110</CNPJ><xNome>CLIENTE EXEMPLO SA</xNome></dest>" if with_dest else ""
    )
    id_attr = f' Id="NFe{access_key}"' if access_key else ""
    inf_nfe = (
        f'<infNFe{id_attr} versao="4.00">'
        "<ide><nNF>1234</nNF><serie>1</serie><dhEmi>2024-01-10T10:00:00-03:00</dhEmi></ide>"
        "<emit><CNPJ>12345678000190</CNPJ><xNome>ACME COMERCIO LTDA</xNome></emit>"
        f"{dest_xml}"
        f"<total><ICMSTot><vProd>{total}</vProd><vNF>{total}</vNF></ICMSTot></total>"
        f"{cobr_xml}"
        "</infNFe>"
    )
    nfe = f'<NFe xmlns="http://www.portalfiscal.inf.br/nfe">{inf_nfe}</NFe>'
    if root == "nfeProc":
        body = f'<nfeProc xmlns="http://www.portalfiscal.inf.br/nfe" versao="4.00">{nfe}</nfeProc>'
    else:
        body = nfe
    return ('<?xml version="1.0" encoding="UTF-8"?>' + body).encode("utf-8")


@pytest.fixture
def nfe_xml_factory():
    return _build_nfe_xml


@pytest.fixture
def nfe_text():
    return NFE_TEXT


@pytest.fixture
def database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    run_migrations(database.engine)
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    with database.session() as session:
        yield session
