"""
Database Layer - Import Pro
Handles schema creation, data access and atomic units of work
"""

import sqlite3
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, List, Dict, Any

from config import get_settings


# ==================================================================================
# MASTER SCHEMA - The Single Source of Truth for Database Structure
# ==================================================================================
# Any structural change goes here first. Missing tables and columns are created
# on the next start by repair_schema().
# ==================================================================================

MASTER_SCHEMA = {
    "users": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "username": "TEXT UNIQUE NOT NULL",
        "password": "TEXT NOT NULL",
        "full_name": "TEXT NOT NULL",
        "role": "TEXT DEFAULT 'ASSISTANT'",
        "active": "INTEGER DEFAULT 1",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "articles": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL",
        "category": "TEXT NOT NULL",
        "description": "TEXT",
        "image_url": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "groupages": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL",
        "start_date": "TEXT NOT NULL",
        "end_date": "TEXT",
        "status": "TEXT DEFAULT 'Ouvert'",
        "min_advance_amount": "REAL DEFAULT 0.0",
        "is_shipping_included": "INTEGER DEFAULT 0",
        "origin_country": "TEXT",
        "transport_mode": "TEXT",
        "estimated_transport_cost": "REAL DEFAULT 0.0",
        "estimated_customs_cost": "REAL DEFAULT 0.0",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "products": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "groupage_id": "INTEGER NOT NULL REFERENCES groupages(id) ON DELETE CASCADE",
        "name": "TEXT NOT NULL",
        "buying_price": "REAL NOT NULL",
        "buying_unit": "TEXT NOT NULL",
        "cost_price": "REAL DEFAULT 0.0",
        "selling_price": "REAL DEFAULT 0.0",
        "customs_fee": "REAL DEFAULT 0.0",
        "transport_fee": "REAL DEFAULT 0.0",
        "quantity_total": "REAL DEFAULT 0.0",
        "quantity_sold": "REAL DEFAULT 0.0",
        "image_url": "TEXT",
        "date_added": "TEXT",
        "supplier": "TEXT",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "selling_options": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "product_id": "INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE",
        "unit": "TEXT NOT NULL",
        "price": "REAL NOT NULL",
        "is_default": "INTEGER DEFAULT 0",
        "position": "INTEGER DEFAULT 0"
    },
    "clients": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "name": "TEXT NOT NULL",
        "phone": "TEXT UNIQUE NOT NULL",
        "whatsapp": "TEXT",
        "city": "TEXT",
        "address": "TEXT",
        "total_spent": "REAL DEFAULT 0.0",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "orders": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "numero": "TEXT UNIQUE NOT NULL",
        "annee": "INTEGER NOT NULL",
        "client_id": "INTEGER NOT NULL REFERENCES clients(id)",
        "groupage_id": "INTEGER",
        "date": "TEXT NOT NULL",
        "total_amount": "REAL DEFAULT 0.0",
        "advance_paid": "REAL DEFAULT 0.0",
        "balance_remaining": "REAL DEFAULT 0.0",
        "status": "TEXT NOT NULL",
        "is_delivery_paid": "INTEGER DEFAULT 0",
        "delivery_driver": "TEXT",
        "delivery_note": "TEXT",
        "delivery_date": "TEXT",
        "delivery_address": "TEXT",
        "delivery_fee": "REAL DEFAULT 0.0",
        "payment_method": "TEXT",
        "created_by": "INTEGER REFERENCES users(id)",
        "created_at": "TEXT DEFAULT CURRENT_TIMESTAMP"
    },
    "order_items": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "order_id": "INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE",
        "product_id": "INTEGER NOT NULL",
        "quantity": "REAL NOT NULL",
        "unit_price": "REAL NOT NULL",
        "unit": "TEXT NOT NULL"
    },
    "transactions": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "date": "TEXT NOT NULL",
        "type": "TEXT NOT NULL",
        "category": "TEXT NOT NULL",
        "amount": "REAL NOT NULL",
        "description": "TEXT",
        "reference_type": "TEXT",
        "reference_id": "INTEGER",
        "created_by": "INTEGER REFERENCES users(id)"
    },
    "audit_logs": {
        "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "user_id": "INTEGER REFERENCES users(id)",
        "username": "TEXT",
        "action": "TEXT NOT NULL",
        "details": "TEXT",
        "timestamp": "TEXT DEFAULT CURRENT_TIMESTAMP"
    }
}

BOOL_COLUMNS = {'is_default', 'is_shipping_included', 'is_delivery_paid', 'active'}


def _to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for col in BOOL_COLUMNS.intersection(data):
        data[col] = bool(data[col])
    return data


class DatabaseManager:
    """Manages the SQLite connection and data access"""

    def __init__(self, db_path: str = None):
        if db_path is None:
            db_path = get_settings().database_path
        self.db_path = db_path

        self.connection: Optional[sqlite3.Connection] = None
        self._tx_depth = 0

        if self.db_path != ':memory:':
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.repair_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection (explicit transactions only)"""
        if self.connection is None:
            self.connection = sqlite3.connect(self.db_path, isolation_level=None)
            self.connection.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ':memory:':
                self.connection.execute("PRAGMA journal_mode=WAL;")
            self.connection.row_factory = sqlite3.Row
        return self.connection

    @contextmanager
    def atomic(self):
        """
        Unit of work: every write inside the block is committed together,
        or rolled back together if anything raises. Re-entrant.
        """
        conn = self._get_connection()
        if self._tx_depth == 0:
            conn.execute("BEGIN")
        self._tx_depth += 1
        try:
            yield conn
        except Exception:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.rollback()
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.commit()

    def repair_schema(self):
        """
        SELF-HEALING SYSTEM
        Compares the physical database with MASTER_SCHEMA.
        Adds missing tables and columns without data loss.
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        for table_name, columns in MASTER_SCHEMA.items():
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
            if not cursor.fetchone():
                if self.db_path != ':memory:':
                    print(f"[Self-Healing] Creating new table: {table_name}")
                col_defs = [f"{col} {definition}" for col, definition in columns.items()]
                cursor.execute(f"CREATE TABLE {table_name} ({', '.join(col_defs)})")
            else:
                cursor.execute(f"PRAGMA table_info({table_name})")
                existing_cols = {row['name'] for row in cursor.fetchall()}

                for col_name, col_def in columns.items():
                    if col_name not in existing_cols:
                        print(f"[Self-Healing] Adding missing column: {table_name}.{col_name}")
                        try:
                            # SQLite cannot add UNIQUE / PRIMARY KEY columns through ALTER TABLE
                            cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {col_name} {col_def}")
                        except sqlite3.OperationalError as e:
                            print(f"[Error] Could not add column {col_name} to {table_name}: {e}")

        self._initialize_default_data()

    def _initialize_default_data(self):
        """Insert the default accounts if the users table is empty"""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM users")
        if cursor.fetchone()[0] == 0:
            cursor.executemany("""
                INSERT INTO users (username, password, full_name, role)
                VALUES (?, ?, ?, ?)
            """, [
                ('admin', 'admin', 'Administrateur', 'ADMIN'),
                ('assistant', '1234', 'Assistant Commercial', 'ASSISTANT'),
            ])

    def close(self):
        """Close database connection"""
        if self.connection:
            self.connection.close()
            self.connection = None

    def _update(self, table: str, row_id: int, fields: Dict[str, Any]):
        if not fields:
            return
        unknown = set(fields) - set(MASTER_SCHEMA[table])
        if unknown:
            raise ValueError(f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}")
        assignments = ', '.join(f"{k} = ?" for k in fields.keys())
        values = list(fields.values()) + [row_id]
        self._get_connection().execute(f"UPDATE {table} SET {assignments} WHERE id = ?", values)

    # ==================== USER OPERATIONS ====================

    def authenticate_user(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        """Authenticate user and return user data"""
        cursor = self._get_connection().execute("""
            SELECT id, username, full_name, role, active
            FROM users
            WHERE username = ? AND password = ? AND active = 1
        """, (username, password))
        return _to_dict(cursor.fetchone())

    def create_user(self, username: str, password: str, full_name: str, role: str = 'ASSISTANT') -> int:
        """Create new user"""
        cursor = self._get_connection().execute("""
            INSERT INTO users (username, password, full_name, role)
            VALUES (?, ?, ?, ?)
        """, (username, password, full_name, role))
        return cursor.lastrowid

    def get_all_users(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT id, username, full_name, role, active FROM users ORDER BY full_name")
        return [_to_dict(row) for row in cursor.fetchall()]

    def log_action(self, user_id: Optional[int], action: str, details: str = None, username: str = None):
        """Log user action to audit_logs"""
        conn = self._get_connection()

        if not username and user_id:
            row = conn.execute("SELECT username FROM users WHERE id = ?", (user_id,)).fetchone()
            if row:
                username = row[0]

        conn.execute("""
            INSERT INTO audit_logs (user_id, username, action, details)
            VALUES (?, ?, ?, ?)
        """, (user_id, username, action, details))

    def get_audit_logs(self, action: str = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM audit_logs"
        params = []
        if action:
            query += " WHERE action = ?"
            params.append(action)
        cursor = self._get_connection().execute(query + " ORDER BY id DESC", params)
        return [_to_dict(row) for row in cursor.fetchall()]

    # ==================== ARTICLE OPERATIONS ====================

    def create_article(self, name: str, category: str, description: str = None,
                       image_url: str = None) -> int:
        cursor = self._get_connection().execute("""
            INSERT INTO articles (name, category, description, image_url)
            VALUES (?, ?, ?, ?)
        """, (name, category, description, image_url))
        return cursor.lastrowid

    def update_article(self, article_id: int, **kwargs):
        self._update('articles', article_id, kwargs)

    def delete_article(self, article_id: int):
        self._get_connection().execute("DELETE FROM articles WHERE id = ?", (article_id,))

    def get_all_articles(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM articles ORDER BY id")
        return [_to_dict(row) for row in cursor.fetchall()]

    def get_article_by_id(self, article_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM articles WHERE id = ?", (article_id,))
        return _to_dict(cursor.fetchone())

    # ==================== GROUPAGE OPERATIONS ====================

    def create_groupage(self, name: str, start_date: str, end_date: str = None,
                        status: str = 'Ouvert', min_advance_amount: float = 0.0,
                        is_shipping_included: bool = False, origin_country: str = None,
                        transport_mode: str = None, estimated_transport_cost: float = 0.0,
                        estimated_customs_cost: float = 0.0) -> int:
        cursor = self._get_connection().execute("""
            INSERT INTO groupages (name, start_date, end_date, status, min_advance_amount,
                                   is_shipping_included, origin_country, transport_mode,
                                   estimated_transport_cost, estimated_customs_cost)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (name, start_date, end_date, status, min_advance_amount,
              int(bool(is_shipping_included)), origin_country, transport_mode,
              estimated_transport_cost, estimated_customs_cost))
        return cursor.lastrowid

    def update_groupage(self, groupage_id: int, **kwargs):
        if 'is_shipping_included' in kwargs:
            kwargs['is_shipping_included'] = int(bool(kwargs['is_shipping_included']))
        self._update('groupages', groupage_id, kwargs)

    def delete_groupage(self, groupage_id: int):
        """Delete groupage; products and selling options cascade"""
        self._get_connection().execute("DELETE FROM groupages WHERE id = ?", (groupage_id,))

    def get_groupage_by_id(self, groupage_id: int, with_products: bool = True) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM groupages WHERE id = ?", (groupage_id,))
        groupage = _to_dict(cursor.fetchone())
        if groupage and with_products:
            groupage['products'] = self.get_products_by_groupage(groupage_id)
        return groupage

    def get_all_groupages(self, with_products: bool = True) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM groupages ORDER BY id")
        groupages = [_to_dict(row) for row in cursor.fetchall()]
        if with_products:
            for groupage in groupages:
                groupage['products'] = self.get_products_by_groupage(groupage['id'])
        return groupages

    # ==================== PRODUCT OPERATIONS ====================

    def create_product(self, groupage_id: int, name: str, buying_price: float,
                       buying_unit: str, quantity_total: float,
                       selling_options: List[Dict[str, Any]],
                       cost_price: float = 0.0, selling_price: float = 0.0,
                       customs_fee: float = 0.0, transport_fee: float = 0.0,
                       quantity_sold: float = 0.0, image_url: str = None,
                       date_added: str = None, supplier: str = None) -> int:
        """Create product with its selling options (first default wins)"""
        with self.atomic() as conn:
            cursor = conn.execute("""
                INSERT INTO products (groupage_id, name, buying_price, buying_unit, cost_price,
                                      selling_price, customs_fee, transport_fee, quantity_total,
                                      quantity_sold, image_url, date_added, supplier)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (groupage_id, name, buying_price, buying_unit, cost_price, selling_price,
                  customs_fee, transport_fee, quantity_total, quantity_sold, image_url,
                  date_added, supplier))
            product_id = cursor.lastrowid

            default_index = next((i for i, o in enumerate(selling_options) if o.get('is_default')), 0)
            for position, option in enumerate(selling_options):
                conn.execute("""
                    INSERT INTO selling_options (product_id, unit, price, is_default, position)
                    VALUES (?, ?, ?, ?, ?)
                """, (product_id, option['unit'], option['price'],
                      int(position == default_index), position))
        return product_id

    def update_product(self, product_id: int, **kwargs):
        self._update('products', product_id, kwargs)

    def increment_quantity_sold(self, product_id: int, quantity: float):
        self._get_connection().execute("""
            UPDATE products SET quantity_sold = quantity_sold + ? WHERE id = ?
        """, (quantity, product_id))

    def get_product_by_id(self, product_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM products WHERE id = ?", (product_id,))
        product = _to_dict(cursor.fetchone())
        if product:
            product['selling_options'] = self.get_selling_options(product_id)
        return product

    def get_products_by_groupage(self, groupage_id: int) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT * FROM products WHERE groupage_id = ? ORDER BY id", (groupage_id,))
        products = [_to_dict(row) for row in cursor.fetchall()]
        for product in products:
            product['selling_options'] = self.get_selling_options(product['id'])
        return products

    def get_all_products(self) -> List[Dict[str, Any]]:
        """All products with their groupage name, status and start date"""
        cursor = self._get_connection().execute("""
            SELECT p.*, g.name as groupage_name, g.status as groupage_status,
                   g.start_date as groupage_start_date
            FROM products p
            JOIN groupages g ON p.groupage_id = g.id
            ORDER BY p.id
        """)
        products = [_to_dict(row) for row in cursor.fetchall()]
        for product in products:
            product['selling_options'] = self.get_selling_options(product['id'])
        return products

    # ==================== SELLING OPTION OPERATIONS ====================

    def get_selling_options(self, product_id: int) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT * FROM selling_options WHERE product_id = ? ORDER BY position, id
        """, (product_id,))
        return [_to_dict(row) for row in cursor.fetchall()]

    def get_selling_option_by_id(self, option_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM selling_options WHERE id = ?", (option_id,))
        return _to_dict(cursor.fetchone())

    def add_selling_option(self, product_id: int, unit: str, price: float) -> int:
        conn = self._get_connection()
        position = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM selling_options WHERE product_id = ?",
            (product_id,)).fetchone()[0]
        cursor = conn.execute("""
            INSERT INTO selling_options (product_id, unit, price, is_default, position)
            VALUES (?, ?, ?, 0, ?)
        """, (product_id, unit, price, position))
        return cursor.lastrowid

    def delete_selling_option(self, option_id: int):
        self._get_connection().execute("DELETE FROM selling_options WHERE id = ?", (option_id,))

    def set_default_selling_option(self, product_id: int, option_id: int):
        """Mark one option as default and clear the flag on the others"""
        self._get_connection().execute("""
            UPDATE selling_options SET is_default = CASE WHEN id = ? THEN 1 ELSE 0 END
            WHERE product_id = ?
        """, (option_id, product_id))

    # ==================== CLIENT OPERATIONS ====================

    def create_client(self, name: str, phone: str, whatsapp: str = None, city: str = None,
                      address: str = None, total_spent: float = 0.0) -> int:
        cursor = self._get_connection().execute("""
            INSERT INTO clients (name, phone, whatsapp, city, address, total_spent)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (name, phone, whatsapp, city, address, total_spent))
        return cursor.lastrowid

    def update_client(self, client_id: int, **kwargs):
        self._update('clients', client_id, kwargs)

    def delete_client(self, client_id: int):
        self._get_connection().execute("DELETE FROM clients WHERE id = ?", (client_id,))

    def add_client_spent(self, client_id: int, amount: float):
        self._get_connection().execute("""
            UPDATE clients SET total_spent = total_spent + ? WHERE id = ?
        """, (amount, client_id))

    def get_all_clients(self) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM clients ORDER BY id")
        return [_to_dict(row) for row in cursor.fetchall()]

    def get_client_by_id(self, client_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM clients WHERE id = ?", (client_id,))
        return _to_dict(cursor.fetchone())

    def find_client_by_phone(self, phone: str, exclude_id: int = None) -> Optional[Dict[str, Any]]:
        query = "SELECT * FROM clients WHERE phone = ?"
        params = [phone]
        if exclude_id:
            query += " AND id != ?"
            params.append(exclude_id)
        cursor = self._get_connection().execute(query, params)
        return _to_dict(cursor.fetchone())

    # ==================== ORDER OPERATIONS ====================

    def generate_order_number(self, annee: int) -> str:
        """Generate unique order number for the year"""
        count = self._get_connection().execute(
            "SELECT COUNT(*) FROM orders WHERE annee = ?", (annee,)).fetchone()[0] + 1
        return f"CMD-{count:04d}-{annee}"

    def create_order(self, client_id: int, date: str, items: List[Dict[str, Any]],
                     total_amount: float, advance_paid: float, balance_remaining: float,
                     status: str, groupage_id: int = None, created_by: int = None,
                     **delivery_fields) -> int:
        """Insert order header and its items"""
        annee = int(date[:4])
        with self.atomic() as conn:
            numero = self.generate_order_number(annee)
            cursor = conn.execute("""
                INSERT INTO orders (numero, annee, client_id, groupage_id, date, total_amount,
                                    advance_paid, balance_remaining, status, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (numero, annee, client_id, groupage_id, date, total_amount,
                  advance_paid, balance_remaining, status, created_by))
            order_id = cursor.lastrowid

            conn.executemany("""
                INSERT INTO order_items (order_id, product_id, quantity, unit_price, unit)
                VALUES (?, ?, ?, ?, ?)
            """, [(order_id, item['product_id'], item['quantity'], item['unit_price'], item['unit'])
                  for item in items])

            if delivery_fields:
                self.update_order(order_id, **delivery_fields)
        return order_id

    def update_order(self, order_id: int, **kwargs):
        if 'is_delivery_paid' in kwargs:
            kwargs['is_delivery_paid'] = int(bool(kwargs['is_delivery_paid']))
        self._update('orders', order_id, kwargs)

    def get_order_items(self, order_id: int) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(
            "SELECT * FROM order_items WHERE order_id = ? ORDER BY id", (order_id,))
        return [_to_dict(row) for row in cursor.fetchall()]

    def get_order_by_id(self, order_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("""
            SELECT o.*, c.name as client_name, c.city as client_city, c.phone as client_phone
            FROM orders o
            LEFT JOIN clients c ON o.client_id = c.id
            WHERE o.id = ?
        """, (order_id,))
        order = _to_dict(cursor.fetchone())
        if order:
            order['items'] = self.get_order_items(order_id)
        return order

    def get_all_orders(self, status: str = None, client_id: int = None) -> List[Dict[str, Any]]:
        """Orders newest first"""
        query = """
            SELECT o.*, c.name as client_name, c.city as client_city, c.phone as client_phone
            FROM orders o
            LEFT JOIN clients c ON o.client_id = c.id
            WHERE 1 = 1
        """
        params = []
        if status:
            query += " AND o.status = ?"
            params.append(status)
        if client_id:
            query += " AND o.client_id = ?"
            params.append(client_id)
        cursor = self._get_connection().execute(query + " ORDER BY o.id DESC", params)
        orders = [_to_dict(row) for row in cursor.fetchall()]
        for order in orders:
            order['items'] = self.get_order_items(order['id'])
        return orders

    def count_client_orders(self, client_id: int) -> int:
        return self._get_connection().execute(
            "SELECT COUNT(*) FROM orders WHERE client_id = ?", (client_id,)).fetchone()[0]

    # ==================== TRANSACTION OPERATIONS ====================

    def create_transaction(self, type: str, category: str, amount: float, description: str,
                           reference_type: str = None, reference_id: int = None,
                           date: str = None, created_by: int = None) -> int:
        """Append a ledger entry (the ledger is never updated)"""
        if date is None:
            date = datetime.now().isoformat(timespec='seconds')
        cursor = self._get_connection().execute("""
            INSERT INTO transactions (date, type, category, amount, description,
                                      reference_type, reference_id, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (date, type, category, amount, description, reference_type, reference_id, created_by))
        return cursor.lastrowid

    def get_all_transactions(self, reference_type: str = None, reference_id: int = None) -> List[Dict[str, Any]]:
        """Ledger newest first"""
        query = "SELECT * FROM transactions WHERE 1 = 1"
        params = []
        if reference_type:
            query += " AND reference_type = ?"
            params.append(reference_type)
        if reference_id is not None:
            query += " AND reference_id = ?"
            params.append(reference_id)
        cursor = self._get_connection().execute(query + " ORDER BY id DESC", params)
        return [_to_dict(row) for row in cursor.fetchall()]

    def get_transaction_by_id(self, transaction_id: int) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        return _to_dict(cursor.fetchone())

    # ==================== SNAPSHOT & MAINTENANCE ====================

    def get_app_data(self) -> Dict[str, Any]:
        """Whole domain state as plain collections"""
        return {
            'articles': self.get_all_articles(),
            'groupages': self.get_all_groupages(with_products=True),
            'clients': self.get_all_clients(),
            'orders': self.get_all_orders(),
            'transactions': self.get_all_transactions(),
        }

    def reset_data(self):
        """
        Reset all operational data except users.
        """
        tables_to_clear = [
            "order_items",
            "orders",
            "transactions",
            "selling_options",
            "products",
            "groupages",
            "clients",
            "articles",
            "audit_logs",
        ]

        with self.atomic() as conn:
            for table in tables_to_clear:
                conn.execute(f"DELETE FROM {table}")
                conn.execute("DELETE FROM sqlite_sequence WHERE name=?", (table,))


# Global database instance
_db_instance: Optional[DatabaseManager] = None

def get_db() -> DatabaseManager:
    """Get global database instance"""
    global _db_instance
    if _db_instance is None:
        _db_instance = DatabaseManager()
        if get_settings().seed_demo and not _db_instance.get_all_groupages(with_products=False):
            from seed import load_demo_data
            load_demo_data(_db_instance)
    return _db_instance
