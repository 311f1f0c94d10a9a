# tests/test_auth.py
import pytest

from auth import (
    ROLE_ADMIN, ROLE_ASSISTANT, ALL_PERMISSIONS, AccessDenied,
    StaticAuthenticator, DatabaseAuthenticator,
    has_permission, require_permission, visible_menu, login,
)
from logic import BusinessLogic

GUEST = {'id': 2, 'username': 'invite', 'full_name': 'Invité', 'role': 'GUEST'}


def test_role_table():
    admin = {'role': ROLE_ADMIN}
    assistant = {'role': ROLE_ASSISTANT}

    assert all(has_permission(admin, p) for p in ALL_PERMISSIONS)
    assert not has_permission(assistant, 'finance')
    assert has_permission(assistant, 'orders')
    assert not has_permission(None, 'dashboard')

    with pytest.raises(AccessDenied):
        require_permission(assistant, 'finance')


def test_visible_menu():
    assert 'finance' in [p for p, _ in visible_menu({'role': ROLE_ADMIN})]
    assistant_menu = [p for p, _ in visible_menu({'role': ROLE_ASSISTANT})]
    assert 'finance' not in assistant_menu
    assert assistant_menu[0] == 'dashboard'
    assert visible_menu({'role': 'GUEST'}) == []


def test_static_login():
    authenticator = StaticAuthenticator()

    ok, msg, user = login(authenticator, "admin", "admin")
    assert ok
    assert msg == "Bienvenue Administrateur"
    assert user['role'] == ROLE_ADMIN
    assert 'password' not in user

    assert login(authenticator, "admin", "1234") == (False, "Identifiants incorrects", None)
    assert login(authenticator, " ", "x") == (False, "Veuillez remplir tous les champs", None)


def test_database_login(db):
    authenticator = DatabaseAuthenticator(db)

    ok, _, user = login(authenticator, "assistant", "1234")
    assert ok
    assert user['role'] == ROLE_ASSISTANT

    db.create_user("caissier", "secret", "Caissier Principal", ROLE_ADMIN)
    ok, msg, _ = login(authenticator, "caissier", "secret")
    assert ok
    assert msg == "Bienvenue Caissier Principal"
    assert login(authenticator, "caissier", "wrong")[0] is False


def test_commands_check_permissions(db, settings, demo):
    guest = BusinessLogic(db=db, user=GUEST, settings=settings)
    before = db.get_app_data()

    assert guest.save_client("Pirate", "90000000") == (False, "Accès non autorisé (clients)", None)
    assert guest.delete_article(demo['a1']) == (False, "Accès non autorisé (articles)")
    assert guest.settle_balance(demo['o2'])[0] is False
    assert guest.process_delivery(demo['o2'], driver='X')[0] is False
    assert guest.create_groupage("Lot")[0] is False
    assert db.get_app_data() == before

    with pytest.raises(AccessDenied):
        guest.list_clients()
    with pytest.raises(AccessDenied):
        guest.get_dashboard_stats()


def test_system_context_has_full_access(db, settings, demo):
    system = BusinessLogic(db=db, settings=settings)
    assert system.get_finance_summary()['total_expense'] == 500000
    ok, _, _ = system.save_client("Import Auto", "98000000")
    assert ok
    assert db.get_audit_logs('CREATE_CLIENT')[0]['username'] == 'system'


def test_commands_are_audited(logic, demo):
    logic.settle_balance(demo['o2'])
    entry = logic.db.get_audit_logs('SETTLE_BALANCE')[0]
    assert entry['user_id'] == 1
    assert entry['username'] == 'admin'
    assert "CMD-0002-2025" in entry['details']


def test_set_user_switches_permissions(db, settings, demo):
    handler = BusinessLogic(db=db, settings=settings)
    handler.set_user({'id': 2, 'username': 'assistant', 'full_name': 'Assistant Commercial',
                      'role': ROLE_ASSISTANT})
    with pytest.raises(AccessDenied):
        handler.get_finance_summary()

    handler.set_user({'id': 1, 'username': 'admin', 'full_name': 'Administrateur', 'role': ROLE_ADMIN})
    assert handler.get_finance_summary()['total_expense'] == 500000


def test_get_logic_is_shared(monkeypatch, db, settings):
    import config
    import database
    import logic

    monkeypatch.setattr(config, '_settings_instance', settings)
    monkeypatch.setattr(database, '_db_instance', db)
    monkeypatch.setattr(logic, '_logic_instance', None)

    shared = logic.get_logic()
    assert shared is logic.get_logic()
    assert shared.db is db
    assert shared.settings is settings
    assert shared.user is None
