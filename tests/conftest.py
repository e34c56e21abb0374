"""Shared fixtures: an in-memory database built from the models and small factories."""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import retail_ledger.models  # noqa: F401
from retail_ledger.core.permissions import Actor, UserRole
from retail_ledger.db.database import Base
from retail_ledger.models.accounting import Account
from retail_ledger.models.parties import PartyRole
from retail_ledger.schemas.documents import PurchaseCreate, PurchaseItemIn, SaleCreate, SaleItemIn
from retail_ledger.schemas.inventory import ProductCreate
from retail_ledger.schemas.parties import PartyCreate
from retail_ledger.services import catalog, documents
from retail_ledger.services.general_ledger import seed_chart_of_accounts


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    seed_chart_of_accounts(session)
    session.commit()
    yield session
    session.close()


@pytest.fixture
def owner() -> Actor:
    return Actor(user_id=1, role=UserRole.BUSINESS_OWNER)


@pytest.fixture
def employee() -> Actor:
    return Actor(user_id=2, role=UserRole.EMPLOYEE)


@pytest.fixture
def make_product(db, owner):
    def _make(
        sku: str = "SKU-1",
        *,
        cost: str = "0",
        sale_price: str = "150",
        opening: int = 0,
        tax_rate: str = "0",
        min_stock: int = 0,
    ):
        payload = ProductCreate(
            sku=sku,
            name=f"Product {sku}",
            cost_price=Decimal(cost),
            sale_price=Decimal(sale_price),
            tax_rate=Decimal(tax_rate),
            min_stock=min_stock,
            opening_stock=opening,
        )
        return catalog.create_product(db, payload, owner)

    return _make


@pytest.fixture
def make_party(db, owner):
    def _make(role: PartyRole, name: str = "Acme Traders", opening: str = "0", side: str = "debit"):
        payload = PartyCreate(role=role, name=name, opening_balance=Decimal(opening), opening_side=side)
        return catalog.create_party(db, payload, owner)

    return _make


@pytest.fixture
def purchase(db, owner):
    def _purchase(product_id: int, quantity: int, unit_price: str, **kwargs):
        payload = PurchaseCreate(
            items=[PurchaseItemIn(product_id=product_id, quantity=quantity, unit_price=Decimal(unit_price))],
            **kwargs,
        )
        return documents.create_purchase(db, payload, owner)

    return _purchase


@pytest.fixture
def sell(db, owner):
    def _sell(product_id: int, quantity: int, **kwargs):
        payload = SaleCreate(items=[SaleItemIn(product_id=product_id, quantity=quantity)], **kwargs)
        return documents.create_sale(db, payload, owner)

    return _sell


@pytest.fixture
def balances(db):
    """Current balance of every account keyed by code."""

    def _balances() -> dict[str, Decimal]:
        db.expire_all()
        return {account.code: Decimal(account.balance) for account in db.scalars(select(Account)).all()}

    return _balances
