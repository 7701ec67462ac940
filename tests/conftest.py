import pytest
from fastapi.testclient import TestClient

from opencanvas.archive import ArchiveCodec
from opencanvas.main import create_app
from opencanvas.workflow_store import WorkflowStore


@pytest.fixture
def store(tmp_path):
    return WorkflowStore(tmp_path / "store", creation_grace=0.0, autosave_delay=0.05)


@pytest.fixture
def archive(store):
    return ArchiveCodec(store)


@pytest.fixture
def client(tmp_path):
    app = create_app(tmp_path / "api", creation_grace=0.0)
    with TestClient(app) as client:
        yield client
