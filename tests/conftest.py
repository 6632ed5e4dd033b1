import pytest
from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy.orm import Session

from backoffice import create_app
from backoffice import database
from backoffice.database import Base, create_schema, get_session
from backoffice.models import (
    AppUser, Warehouse, Category, Unit, Material, CurrentAccount, Recipe, RecipeIngredient
)
from backoffice.services.stock_movement_service import record_movement


@pytest.fixture(scope='function')
def app():
    """Application bound to a fresh in-memory database for each test."""
    app = create_app('config.TestConfig')
    with app.app_context():
        create_schema()
        yield app
        get_session().remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def other_session(app):
    """Second session on the same database, as a concurrent request would hold."""
    other = Session(bind=database.engine, autoflush=False)
    yield other
    other.close()


@pytest.fixture(scope='function')
def user(session):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(email=f'user-{suffix}@test.com', full_name='Usuario Test', active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def approver(session):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(email=f'approver-{suffix}@test.com', full_name='Encargado Test', active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def warehouse(session):
    warehouse = Warehouse(name='Depósito Central', active=True)
    session.add(warehouse)
    session.commit()
    return warehouse


@pytest.fixture(scope='function')
def other_warehouse(session):
    warehouse = Warehouse(name='Depósito Cocina', active=True)
    session.add(warehouse)
    session.commit()
    return warehouse


@pytest.fixture(scope='function')
def kg(session):
    unit = Unit(name='Kilogramo', abbreviation='kg', is_base_unit=True, conversion_factor=1)
    session.add(unit)
    session.commit()
    return unit


@pytest.fixture(scope='function')
def gram(session, kg):
    unit = Unit(name='Gramo', abbreviation='g', is_base_unit=False, base_unit_id=kg.id,
                conversion_factor=Decimal('0.001'))
    session.add(unit)
    session.commit()
    return unit


@pytest.fixture(scope='function')
def liter(session):
    unit = Unit(name='Litro', abbreviation='lt', is_base_unit=True, conversion_factor=1)
    session.add(unit)
    session.commit()
    return unit


@pytest.fixture(scope='function')
def category(session):
    main = Category(name='Almacén')
    session.add(main)
    session.flush()
    sub = Category(name='Harinas', parent_id=main.id)
    session.add(sub)
    session.commit()
    return sub


@pytest.fixture(scope='function')
def material(session, kg, category):
    material = Material(name='Harina 000', code='HAR-000', category_id=category.id,
                        consumption_unit_id=kg.id, average_cost=Decimal('2.5'), active=True)
    session.add(material)
    session.commit()
    return material


@pytest.fixture(scope='function')
def make_material(session, kg):
    """Factory for extra materials."""
    def _make(name, **kwargs):
        kwargs.setdefault('consumption_unit_id', kg.id)
        material = Material(name=name, active=True, **kwargs)
        session.add(material)
        session.commit()
        return material
    return _make


@pytest.fixture(scope='function')
def post(session, warehouse, user):
    """Post a dated movement to the default warehouse."""
    def _post(material, movement_type, quantity, date, warehouse_id=None, unit_cost=None):
        return record_movement(
            session, material.id, warehouse_id or warehouse.id, movement_type, quantity,
            user_id=user.id, unit_cost=unit_cost, date=date
        )
    return _post


@pytest.fixture(scope='function')
def stocked_material(material, post):
    """+100 on 2024-01-01 and -30 on 2024-01-05."""
    post(material, 'IN', 100, datetime(2024, 1, 1, 10, 0))
    post(material, 'OUT', 30, datetime(2024, 1, 5, 10, 0))
    return material


@pytest.fixture(scope='function')
def account(session):
    account = CurrentAccount(code='PROV-001', name='Proveedor Harinas',
                             opening_balance=Decimal('1000'), current_balance=Decimal('1000'))
    session.add(account)
    session.commit()
    return account


@pytest.fixture(scope='function')
def recipe(session, material, gram):
    recipe = Recipe(name='Pan casero', serving_size=Decimal('4'))
    session.add(recipe)
    session.flush()
    session.add(RecipeIngredient(recipe_id=recipe.id, material_id=material.id,
                                 unit_id=gram.id, quantity=Decimal('500')))
    session.commit()
    return recipe
