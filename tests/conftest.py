import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from provgraph.cdm import CDMTranslator, ProcessIdentityCache
from provgraph.lineage import SQLLineageStore


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "lineage.sqlite"


@pytest.fixture
def store(db_path):
    s = SQLLineageStore()
    assert s.initialize(f"sqlite3 {db_path} null null")
    yield s
    s.shutdown()


@pytest.fixture
def translator():
    return CDMTranslator(ProcessIdentityCache(max_entries=128))
