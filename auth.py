"""
Authentication Module - Import Pro
Pluggable user authentication and role-based permission table
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, Tuple


ROLE_ADMIN = 'ADMIN'
ROLE_ASSISTANT = 'ASSISTANT'

# Menu entries: (permission, label)
MENU_ITEMS: List[Tuple[str, str]] = [
    ('dashboard', 'Tableau de Bord'),
    ('groupages', 'Groupages (Logistique)'),
    ('orders', 'Commandes'),
    ('deliveries', 'Livraisons'),
    ('clients', 'Clients'),
    ('articles', 'Catalogue Articles'),
    ('finance', 'Caisse & Profit'),
]

ALL_PERMISSIONS = frozenset(permission for permission, _ in MENU_ITEMS)

# Finance is reserved to administrators
ROLE_PERMISSIONS: Dict[str, frozenset] = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_ASSISTANT: ALL_PERMISSIONS - {'finance'},
}


class AccessDenied(Exception):
    """Raised when a user reads data outside of its role"""

    def __init__(self, permission: str):
        super().__init__(f"Accès non autorisé ({permission})")
        self.permission = permission


def has_permission(user: Optional[Dict[str, Any]], permission: str) -> bool:
    """Check a permission against the role table"""
    if not user:
        return False
    return permission in ROLE_PERMISSIONS.get(user.get('role'), frozenset())


def require_permission(user: Optional[Dict[str, Any]], permission: str):
    if not has_permission(user, permission):
        raise AccessDenied(permission)


def visible_menu(user: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """Menu entries the user is allowed to open"""
    return [item for item in MENU_ITEMS if has_permission(user, item[0])]


# ==================== AUTHENTICATORS ====================

class Authenticator(ABC):
    """Authentication backend interface"""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        """Return the user record (id, username, full_name, role) or None"""


class StaticAuthenticator(Authenticator):
    """In-memory credentials, used for demos and tests"""

    DEFAULT_USERS = [
        {'id': 1, 'username': 'admin', 'password': 'admin',
         'full_name': 'Administrateur', 'role': ROLE_ADMIN},
        {'id': 2, 'username': 'assistant', 'password': '1234',
         'full_name': 'Assistant Commercial', 'role': ROLE_ASSISTANT},
    ]

    def __init__(self, users: Optional[List[Dict[str, Any]]] = None):
        self.users = users if users is not None else self.DEFAULT_USERS

    def authenticate(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        for user in self.users:
            if user['username'] == username and user['password'] == password:
                return {k: v for k, v in user.items() if k != 'password'}
        return None


class DatabaseAuthenticator(Authenticator):
    """Credentials stored in the users table"""

    def __init__(self, db=None):
        if db is None:
            from database import get_db
            db = get_db()
        self.db = db

    def authenticate(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        username = (username or '').strip()
        if not username or not password:
            return None
        return self.db.authenticate_user(username, password)


def login(authenticator: Authenticator, username: str, password: str) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
    """
    Authenticate user
    Returns (success, message, user)
    """
    if not (username or '').strip() or not password:
        return (False, "Veuillez remplir tous les champs", None)

    user = authenticator.authenticate(username.strip(), password)
    if not user:
        return (False, "Identifiants incorrects", None)

    return (True, f"Bienvenue {user['full_name']}", user)
