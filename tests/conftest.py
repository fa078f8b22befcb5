import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from specaudit.spec_ingestor import SpecIngestor
from specaudit.xref_graph import GraphBuilder
from tests.doc_fixtures import TEXTS, write_docs


@pytest.fixture
def ingestor():
    return SpecIngestor()


@pytest.fixture
def documents(ingestor):
    return [ingestor.parse(path, text) for path, text in sorted(TEXTS.items())]


@pytest.fixture
def graph(documents):
    return GraphBuilder().build(documents)


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    return write_docs(tmp_path)
