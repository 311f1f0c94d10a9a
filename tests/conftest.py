# tests/conftest.py
import pytest

from config import Settings
from database import DatabaseManager
from logic import BusinessLogic
from seed import load_demo_data

ADMIN = {'id': 1, 'username': 'admin', 'full_name': 'Administrateur', 'role': 'ADMIN'}
ASSISTANT = {'id': 2, 'username': 'assistant', 'full_name': 'Assistant Commercial', 'role': 'ASSISTANT'}


@pytest.fixture
def settings(tmp_path):
    # No config.ini in tmp_path: built-in defaults
    return Settings(str(tmp_path / "config.ini"))


@pytest.fixture
def db():
    manager = DatabaseManager(":memory:")
    yield manager
    manager.close()


@pytest.fixture
def logic(db, settings):
    return BusinessLogic(db=db, user=ADMIN, settings=settings)


@pytest.fixture
def assistant_logic(db, settings):
    return BusinessLogic(db=db, user=ASSISTANT, settings=settings)


@pytest.fixture
def demo(db):
    return load_demo_data(db)


@pytest.fixture
def product_draft():
    def make(**overrides):
        draft = {
            'name': 'Pagne Wax',
            'buying_price': 3000,
            'buying_unit': 'Pièce',
            'quantity_total': 20,
            'image_url': '',
            'selling_options': [{'unit': 'Pièce', 'price': 10000, 'is_default': True}],
            'transport_fee': 0,
            'customs_fee': 0,
        }
        draft.update(overrides)
        return draft
    return make


@pytest.fixture
def shop(logic, product_draft):
    """One open groupage with one product (20 units at 10 000) and one client"""
    _, _, groupage_id = logic.create_groupage("Lomé Décembre", start_date="2025-12-01",
                                              origin_country="Togo", transport_mode="Route",
                                              products=[product_draft()])
    product_id = logic.db.get_products_by_groupage(groupage_id)[0]['id']
    _, _, client_id = logic.save_client("Fatou Sow", "96001122", city="Zinder",
                                        address="Quartier Birni")
    return {'groupage_id': groupage_id, 'product_id': product_id, 'client_id': client_id}
