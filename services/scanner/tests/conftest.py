import os
import tempfile

# Must be set before the service modules build their engine
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'stockscan-test.db')}")
os.environ.setdefault("RUN_MIGRATIONS", "false")

import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from stockscan.main import app
from stockscan.domain.models import Base, Product, InventoryMovement
from stockscan.infrastructure.db import get_db


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scanner.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_session():
    """A session double; any store access shows up in ``method_calls``."""
    session = MagicMock(spec=Session)

    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    yield session
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(session_factory):
    def _make(sku="ABC123", quantity=5, name="Kabel USB-C", category="Elektronik", **kwargs):
        with session_factory() as db:
            product = Product(sku=sku, quantity=quantity, name=name, category=category, **kwargs)
            db.add(product)
            db.commit()
            db.refresh(product)
            return product
    return _make


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as db:
            return db.execute(select(Product.quantity).where(Product.id == product_id)).scalar_one()
    return _stock


@pytest.fixture
def movements_of(session_factory):
    def _movements(product_id=None):
        with session_factory() as db:
            stmt = select(InventoryMovement).order_by(InventoryMovement.id)
            if product_id is not None:
                stmt = stmt.where(InventoryMovement.product_id == product_id)
            return list(db.execute(stmt).scalars().all())
    return _movements


@pytest.fixture
def movement_count(session_factory):
    def _count():
        with session_factory() as db:
            return db.execute(select(func.count(InventoryMovement.id))).scalar_one()
    return _count
