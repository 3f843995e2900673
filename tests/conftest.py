import os

# Must be set before dineflow reads its cached settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_DELAY_SECONDS", "0")
os.environ.setdefault("PAYMENT_FAILURE_RATE", "0")

from dataclasses import dataclass
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dineflow.core.config import Settings
from dineflow.database import Base
from dineflow.models import ActorRole, MenuItem, Restaurant, StaffMember
from dineflow.services.orders import LineRequest, OrderService
from dineflow.services.payment import MockPaymentService
from dineflow.services.store import InMemoryOrderStore, SqlOrderStore


@dataclass
class Seed:
    """Ids of the fixture data every store is filled with."""
    restaurant_id: int      # 12 tables
    other_restaurant_id: int  # no table count configured
    pasta: int              # 10.00
    salad: int              # 5.00
    soup: int               # 4.50, out of stock
    foreign_item: int       # belongs to the other restaurant
    kitchen_id: int
    staff_id: int
    admin_id: int
    other_staff_id: int     # STAFF of the other restaurant


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        payment_delay_seconds=0,
        payment_failure_rate=0.0,
        frontend_url="https://menu.example.com",
        default_table_count=20,
    )


def seed_memory(store: InMemoryOrderStore) -> Seed:
    restaurant = store.add_restaurant("Trattoria", table_count=12)
    other = store.add_restaurant("Noodle Bar")
    pasta = store.add_menu_item(restaurant.id, "Carbonara", "10.00", "Mains")
    salad = store.add_menu_item(restaurant.id, "Caesar Salad", "5.00", "Starters", is_vegetarian=True)
    soup = store.add_menu_item(restaurant.id, "Minestrone", "4.50", "Starters", is_out_of_stock=True)
    foreign = store.add_menu_item(other.id, "Ramen", "12.00", "Mains")
    kitchen = store.add_staff_member(restaurant.id, "Marco", ActorRole.KITCHEN)
    staff = store.add_staff_member(restaurant.id, "Giulia", ActorRole.STAFF)
    admin = store.add_staff_member(restaurant.id, "Owner", ActorRole.ADMIN)
    other_staff = store.add_staff_member(other.id, "Ken", ActorRole.STAFF)
    return Seed(
        restaurant_id=restaurant.id,
        other_restaurant_id=other.id,
        pasta=pasta.id,
        salad=salad.id,
        soup=soup.id,
        foreign_item=foreign.id,
        kitchen_id=kitchen.id,
        staff_id=staff.id,
        admin_id=admin.id,
        other_staff_id=other_staff.id,
    )


async def seed_sql(session: AsyncSession) -> Seed:
    restaurant = Restaurant(name="Trattoria", table_count=12)
    other = Restaurant(name="Noodle Bar")
    session.add_all([restaurant, other])
    await session.flush()

    pasta = MenuItem(restaurant_id=restaurant.id, name="Carbonara", price=Decimal("10.00"), category="Mains")
    salad = MenuItem(
        restaurant_id=restaurant.id, name="Caesar Salad", price=Decimal("5.00"),
        category="Starters", is_vegetarian=True,
    )
    soup = MenuItem(
        restaurant_id=restaurant.id, name="Minestrone", price=Decimal("4.50"),
        category="Starters", is_out_of_stock=True,
    )
    foreign = MenuItem(restaurant_id=other.id, name="Ramen", price=Decimal("12.00"), category="Mains")
    kitchen = StaffMember(restaurant_id=restaurant.id, name="Marco", role=ActorRole.KITCHEN)
    staff = StaffMember(restaurant_id=restaurant.id, name="Giulia", role=ActorRole.STAFF)
    admin = StaffMember(restaurant_id=restaurant.id, name="Owner", role=ActorRole.ADMIN)
    other_staff = StaffMember(restaurant_id=other.id, name="Ken", role=ActorRole.STAFF)
    session.add_all([pasta, salad, soup, foreign, kitchen, staff, admin, other_staff])
    await session.commit()

    return Seed(
        restaurant_id=restaurant.id,
        other_restaurant_id=other.id,
        pasta=pasta.id,
        salad=salad.id,
        soup=soup.id,
        foreign_item=foreign.id,
        kitchen_id=kitchen.id,
        staff_id=staff.id,
        admin_id=admin.id,
        other_staff_id=other_staff.id,
    )


@pytest.fixture
async def test_db():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_session

    await engine.dispose()


@pytest.fixture
async def file_db(tmp_path):
    """File-backed database so separate sessions get separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        seed = await seed_sql(session)

    yield async_session, seed

    await engine.dispose()


@pytest.fixture
def memory_store():
    store = InMemoryOrderStore()
    return store, seed_memory(store)


@pytest.fixture(params=["memory", "sql"])
async def store(request, test_db):
    """Every store backend, seeded with the same data."""
    if request.param == "memory":
        memory = InMemoryOrderStore()
        yield memory, seed_memory(memory)
        return
    async with test_db() as session:
        seed = await seed_sql(session)
        yield SqlOrderStore(session), seed


@pytest.fixture
def payment_service():
    return MockPaymentService(delay_seconds=0)


@pytest.fixture
def service(store, payment_service, settings):
    backend, seed = store
    return OrderService(backend, payment_service=payment_service, settings=settings), seed


@pytest.fixture
def memory_service(memory_store, payment_service, settings):
    backend, seed = memory_store
    return OrderService(backend, payment_service=payment_service, settings=settings), seed


def scenario_a_lines(seed: Seed) -> list[LineRequest]:
    """Two carbonara at 10.00 and one salad at 5.00: 25.00."""
    return [
        LineRequest(menu_item_id=seed.pasta, quantity=2),
        LineRequest(menu_item_id=seed.salad, quantity=1),
    ]
