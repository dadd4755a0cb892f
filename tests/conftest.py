"""Pytest configuration and fixtures."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session

from olxsync.models import Base, OlxCategory, OlxCategoryAttribute, OlxCategoryTemplate, Product, Shop
from olxsync.services.storage_service import StorageService


# in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False
)

TestSessionLocal = sessionmaker(
    bind=test_engine,
    autoflush=False,
    expire_on_commit=False,
)


def _patch_jsonb_to_json(base):
    """
    Swap JSONB for JSON so the schema compiles on SQLite.
    Test-only.
    """
    from sqlalchemy.dialects.postgresql import JSONB

    for table in base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()


@pytest.fixture(scope="function")
def test_session() -> Session:
    """
    Database session for one test.
    Every test gets a fresh in-memory schema.
    """
    _patch_jsonb_to_json(Base)
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db_session(test_session: Session):
    """Alias of test_session."""
    yield test_session


@pytest.fixture
def shop(db_session: Session) -> Shop:
    shop = Shop(name="Auto Dijelovi Sarajevo", olx_username="shop@example.ba", olx_password="secret")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture
def make_category(db_session: Session):
    def _make(external_id: int, name: str, parent: OlxCategory | None = None, attributes=()) -> OlxCategory:
        category = OlxCategory(external_id=external_id, name=name, parent=parent, extra={})
        db_session.add(category)
        for attribute_id, attribute_name, attribute_type, options in attributes:
            db_session.add(
                OlxCategoryAttribute(
                    category=category,
                    external_id=attribute_id,
                    name=attribute_name,
                    attribute_type=attribute_type,
                    options=options,
                )
            )
        db_session.flush()
        return category

    return _make


@pytest.fixture
def make_template(db_session: Session, shop: Shop):
    def _make(category: OlxCategory, **kwargs) -> OlxCategoryTemplate:
        template = OlxCategoryTemplate(
            shop=shop,
            name=kwargs.pop("name", f"{category.name} template"),
            olx_category=category,
            attribute_mappings=kwargs.pop("attribute_mappings", {}),
            description_filter=kwargs.pop("description_filter", []),
            **kwargs,
        )
        db_session.add(template)
        db_session.flush()
        return template

    return _make


@pytest.fixture
def make_product(db_session: Session, shop: Shop):
    def _make(**kwargs) -> Product:
        values = {"title": "Akumulator Varta 77Ah", "price": Decimal("100"), "currency": "BAM"}
        values.update(kwargs)
        product = Product(shop=shop, **values)
        db_session.add(product)
        db_session.flush()
        return product

    return _make


@pytest.fixture
def storage_client() -> MagicMock:
    client = MagicMock()
    bucket = client.storage.from_.return_value
    bucket.get_public_url.side_effect = lambda path: f"https://cdn.example.test/{path}"
    return client


@pytest.fixture
def storage(storage_client: MagicMock) -> StorageService:
    return StorageService(client=storage_client, bucket="test-bucket")


@pytest.fixture
def log_dir(tmp_path):
    return str(tmp_path / "log")


def pytest_configure(config):
    """Register test markers."""
    config.addinivalue_line("markers", "unit: unit tests (no external services)")
    config.addinivalue_line("markers", "integration: integration tests (real DB/API required)")
    config.addinivalue_line("markers", "slow: slow tests (> 1 minute)")
