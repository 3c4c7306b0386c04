import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import posledger.models  # noqa: F401
from posledger.core.deps import get_db
from posledger.db.base import Base
from posledger.db.session import build_engine
from posledger.main import app
from posledger.models.product import Product
from posledger.services.inventory_service import record_stock_in

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def session_local():
    engine = build_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def test_context(session_local):
    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()


def make_product(
    db,
    code: str,
    *,
    name: str | None = None,
    selling_price: str | None = None,
    exclude_from_stock: bool = False,
) -> Product:
    product = Product(
        code=code,
        name=name or f"Product {code}",
        selling_price=Decimal(selling_price) if selling_price is not None else None,
        exclude_from_stock=exclude_from_stock,
    )
    db.add(product)
    db.flush()
    return product


def stock_in(db, product: Product, qty: int, unit_cost: str, *, minutes: int = 0):
    return record_stock_in(
        db,
        product_id=product.id,
        qty=qty,
        unit_cost=Decimal(unit_cost),
        occurred_at=BASE_TIME + timedelta(minutes=minutes),
    )
