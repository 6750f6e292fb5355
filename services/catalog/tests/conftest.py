import os
import tempfile

import pytest

# must be set before repo creates its engine
os.environ.setdefault("DATABASE_URL", f"sqlite:///{tempfile.mkdtemp()}/catalog.db")

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
import repo  # noqa: E402


@pytest.fixture
def api():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def sneaker(api):
    body = {
        "name": "Sneaker",
        "price": "900.00",
        "old_price": "1000.00",
        "image": "https://img/p1.jpg",
        "stock": 7,
        "color_stocks": [{"name": "Red", "stock": 3}, {"name": "Blue", "stock": 4}],
    }
    r = api.put("/products/p1", json=body)
    assert r.status_code == 200
    return r.json()
