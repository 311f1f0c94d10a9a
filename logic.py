"""
Business Logic Module - Import Pro
Handles orders, stock, deliveries, the cash ledger and business rules
"""

from collections import Counter
from datetime import datetime
from typing import Dict, Any, Optional, List, Tuple

from auth import has_permission, require_permission
from config import get_settings
from database import get_db
from utils import round_half_up, paginate, today, normalize_image_url, placeholder_image_url


class GroupageStatus:
    OPEN = 'Ouvert'             # Orders allowed
    CLOSED = 'Fermé'            # No more orders
    IN_TRANSIT = 'En Transit'
    ARRIVED = 'Arrivé'          # Ready for delivery
    COMPLETED = 'Terminé'
    ALL = [OPEN, CLOSED, IN_TRANSIT, ARRIVED, COMPLETED]


class OrderStatus:
    PENDING = 'En Attente'
    CONFIRMED = 'Confirmé'
    READY = 'Prêt à livrer'
    DELIVERED = 'Livré'
    CANCELLED = 'Annulé'
    ALL = [PENDING, CONFIRMED, READY, DELIVERED, CANCELLED]


INCOME = 'INCOME'
EXPENSE = 'EXPENSE'
TRANSACTION_CATEGORIES = ['VENTE', 'ACHAT_STOCK', 'TRANSPORT', 'DOUANE', 'AUTRE']

ARTICLE_CATEGORIES = [
    'Mode & Accessoires',
    'Électronique',
    'Cosmétiques & Beauté',
    'Maison & Cuisine',
    'Textile & Tissus',
    'Chaussures',
    'Enfants & Jouets',
    'Pièces Auto/Moto',
    'Divers',
]

COUNTRIES = ['Chine', 'Nigeria', 'Dubaï', 'Turquie', 'USA', 'France', 'Bénin', 'Togo', 'Autre']
TRANSPORT_MODES = ['Avion', 'Bateau', 'Route', 'Train', 'Autre']
PAYMENT_METHODS = ['Espèces', 'Mobile Money', 'Virement', 'Chèque']

GROUPAGE_EDITABLE_FIELDS = {
    'name', 'start_date', 'end_date', 'status', 'origin_country', 'transport_mode',
    'min_advance_amount', 'is_shipping_included',
    'estimated_transport_cost', 'estimated_customs_cost',
}


def new_product_draft() -> Dict[str, Any]:
    """Empty product form"""
    return {
        'name': '',
        'buying_price': 0.0,
        'buying_unit': 'Pièce',
        'quantity_total': 0.0,
        'image_url': '',
        'selling_options': [{'unit': 'Pièce', 'price': 0.0, 'is_default': True}],
        'transport_fee': 0.0,
        'customs_fee': 0.0,
        'supplier': '',
    }


def valid_selling_options(options: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep options with a unit and a positive price; exactly one stays default"""
    kept = [dict(o) for o in options or []
            if (o.get('unit') or '').strip() and (o.get('price') or 0) > 0]
    default_index = next((i for i, o in enumerate(kept) if o.get('is_default')), 0)
    for i, option in enumerate(kept):
        option['unit'] = option['unit'].strip()
        option['is_default'] = (i == default_index)
    return kept


def _unit_key(unit: str) -> str:
    return (unit or '').strip().lower()


def has_duplicate_units(options: List[Dict[str, Any]]) -> bool:
    """Two options of a product may not share a unit (case and spaces ignored)"""
    units = [_unit_key(o.get('unit')) for o in options]
    return len(units) != len(set(units))


def validate_product_draft(draft: Dict[str, Any]) -> Dict[str, bool]:
    """Per-field error flags of a product form (empty dict when valid)"""
    errors = {}
    if not (draft.get('name') or '').strip():
        errors['name'] = True
    if not draft.get('buying_price') or draft['buying_price'] <= 0:
        errors['buying_price'] = True
    if not (draft.get('buying_unit') or '').strip():
        errors['buying_unit'] = True
    if not draft.get('quantity_total') or draft['quantity_total'] <= 0:
        errors['quantity'] = True
    options = valid_selling_options(draft.get('selling_options'))
    if not options or has_duplicate_units(options):
        errors['selling_options'] = True
    return errors


class BusinessLogic:
    """Main business logic handler"""

    def __init__(self, db=None, user: Optional[Dict[str, Any]] = None, settings=None):
        self.db = db or get_db()
        self.settings = settings or get_settings()
        self.user = user
        # Per-field validation flags of the last failed form
        self.last_errors: Dict[str, Any] = {}

    def set_user(self, user: Optional[Dict[str, Any]]):
        self.user = user

    # ==================== PERMISSIONS & AUDIT ====================

    def _allowed(self, permission: str) -> bool:
        """Permission gate opening every command; also clears the previous form flags"""
        self.last_errors = {}
        # No user means an internal context (demo seeding, maintenance scripts)
        return self.user is None or has_permission(self.user, permission)

    def _require(self, permission: str):
        if self.user is not None:
            require_permission(self.user, permission)

    @staticmethod
    def _denied(permission: str) -> str:
        return f"Accès non autorisé ({permission})"

    def _user_id(self) -> Optional[int]:
        return self.user.get('id') if self.user else None

    def _log(self, action: str, details: str = None):
        username = self.user.get('username') if self.user else 'system'
        self.db.log_action(self._user_id(), action, details, username=username)

    # ==================== CATALOG (ARTICLES) ====================

    def save_article(self, name: str, category: str, description: str = None,
                     image_url: str = None, article_id: Optional[int] = None) -> Tuple[bool, str, Optional[int]]:
        """
        Create or update a catalog article.
        Returns (success, message, article_id)
        """
        if not self._allowed('articles'):
            return (False, self._denied('articles'), None)

        if not (name or '').strip():
            self.last_errors['name'] = True
        if not (category or '').strip():
            self.last_errors['category'] = True
        if self.last_errors:
            return (False, "Le nom et la catégorie sont obligatoires", None)

        fields = {
            'name': name.strip(),
            'category': category.strip(),
            'description': description or '',
            'image_url': normalize_image_url(image_url),
        }

        if article_id:
            if not self.db.get_article_by_id(article_id):
                return (False, "Article introuvable", None)
            self.db.update_article(article_id, **fields)
            self._log('UPDATE_ARTICLE', f"Article {article_id}: {fields['name']}")
            return (True, "Article modifié", article_id)

        article_id = self.db.create_article(**fields)
        self._log('CREATE_ARTICLE', f"Article {article_id}: {fields['name']}")
        return (True, "Article ajouté au catalogue", article_id)

    def delete_article(self, article_id: int) -> Tuple[bool, str]:
        """Delete from the catalog; products copied from it are kept"""
        if not self._allowed('articles'):
            return (False, self._denied('articles'))
        article = self.db.get_article_by_id(article_id)
        if not article:
            return (False, "Article introuvable")
        self.db.delete_article(article_id)
        self._log('DELETE_ARTICLE', f"Article {article_id}: {article['name']}")
        return (True, "Article supprimé du catalogue")

    def list_articles(self, search: str = '', category: str = '', page: int = 1) -> Dict[str, Any]:
        self._require('articles')
        term = (search or '').lower()

        def matches(article):
            matches_search = (term in article['name'].lower()
                              or term in (article.get('description') or '').lower())
            matches_category = article['category'] == category if category else True
            return matches_search and matches_category

        articles = [a for a in self.db.get_all_articles() if matches(a)]
        return paginate(articles, page, self.settings.per_page('articles'))

    def product_draft_from_article(self, article_id: int, draft: Dict[str, Any] = None) -> Dict[str, Any]:
        """Copy an article's name and image into a product form"""
        draft = dict(draft or new_product_draft())
        article = self.db.get_article_by_id(article_id)
        if article:
            draft['name'] = article['name']
            draft['image_url'] = article.get('image_url') or draft.get('image_url')
        return draft

    # ==================== GROUPAGES & INVENTORY ====================

    def _insert_product(self, groupage_id: int, draft: Dict[str, Any], cost_price: float,
                        transport_fee: float, customs_fee: float, seed: Any = None) -> int:
        options = valid_selling_options(draft.get('selling_options'))
        return self.db.create_product(
            groupage_id=groupage_id,
            name=draft['name'].strip(),
            buying_price=draft['buying_price'],
            buying_unit=draft['buying_unit'].strip(),
            quantity_total=draft['quantity_total'],
            selling_options=options,
            cost_price=cost_price,
            selling_price=options[0]['price'] if options else 0.0,
            transport_fee=transport_fee,
            customs_fee=customs_fee,
            quantity_sold=0.0,
            image_url=normalize_image_url(draft.get('image_url')) or placeholder_image_url(seed),
            date_added=draft.get('date_added') or today(),
            supplier=draft.get('supplier') or None,
        )

    def create_groupage(self, name: str, start_date: str = None, end_date: str = None,
                        status: str = GroupageStatus.OPEN, origin_country: str = 'Chine',
                        transport_mode: str = 'Avion', min_advance_amount: float = 0.0,
                        is_shipping_included: bool = False, estimated_transport_cost: float = 0.0,
                        estimated_customs_cost: float = 0.0,
                        products: List[Dict[str, Any]] = None) -> Tuple[bool, str, Optional[int]]:
        """
        Create a groupage with its initial products.
        Transport and customs are not allocated per product here: cost price = buying price.
        Returns (success, message, groupage_id)
        """
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'), None)

        if start_date is None:
            start_date = today()
        if not (name or '').strip() or not start_date:
            self.last_errors = {'name': not (name or '').strip(), 'start_date': not start_date}
            return (False, "Le nom et la date de début sont obligatoires", None)
        if status not in GroupageStatus.ALL:
            return (False, f"Statut inconnu: {status}", None)
        if origin_country not in COUNTRIES:
            self.last_errors = {'origin_country': True}
            return (False, f"Pays d'origine inconnu: {origin_country}", None)
        if transport_mode not in TRANSPORT_MODES:
            self.last_errors = {'transport_mode': True}
            return (False, f"Mode de transport inconnu: {transport_mode}", None)

        products = products or []
        product_errors = {i: errs for i, errs in
                          ((i, validate_product_draft(p)) for i, p in enumerate(products)) if errs}
        if product_errors:
            self.last_errors = {'products': product_errors}
            first = min(product_errors)
            return (False, f"Produit n°{first + 1} incomplet", None)

        try:
            with self.db.atomic():
                groupage_id = self.db.create_groupage(
                    name=name.strip(), start_date=start_date, end_date=end_date, status=status,
                    min_advance_amount=min_advance_amount, is_shipping_included=is_shipping_included,
                    origin_country=origin_country, transport_mode=transport_mode,
                    estimated_transport_cost=estimated_transport_cost,
                    estimated_customs_cost=estimated_customs_cost)

                for index, draft in enumerate(products):
                    self._insert_product(groupage_id, draft, cost_price=draft['buying_price'],
                                         transport_fee=0.0, customs_fee=0.0,
                                         seed=f"{groupage_id}{index}")

                self._log('CREATE_GROUPAGE', f"Groupage {groupage_id}: {name} ({len(products)} produits)")
        except Exception as e:
            print(f"[Error] create_groupage: {e}")
            return (False, str(e), None)

        return (True, "Groupage créé", groupage_id)

    def add_product(self, groupage_id: int, draft: Dict[str, Any]) -> Tuple[bool, str, Optional[int]]:
        """
        Add a product to an existing groupage.
        Cost price = buying price + transport fee + customs fee.
        Returns (success, message, product_id)
        """
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'), None)

        if not self.db.get_groupage_by_id(groupage_id, with_products=False):
            return (False, "Groupage introuvable", None)

        errors = validate_product_draft(draft)
        if errors:
            self.last_errors = errors
            return (False, "Veuillez compléter les champs obligatoires du produit", None)

        transport_fee = draft.get('transport_fee') or 0.0
        customs_fee = draft.get('customs_fee') or 0.0
        cost_price = (draft.get('buying_price') or 0.0) + transport_fee + customs_fee

        with self.db.atomic():
            product_id = self._insert_product(groupage_id, draft, cost_price=cost_price,
                                              transport_fee=transport_fee, customs_fee=customs_fee,
                                              seed=datetime.now().strftime("%Y%m%d%H%M%S%f"))
            self._log('ADD_PRODUCT', f"Produit {product_id} -> groupage {groupage_id}")

        return (True, "Produit ajouté", product_id)

    def update_groupage(self, groupage_id: int, **fields) -> Tuple[bool, str]:
        """Merge editable fields into the groupage"""
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'))

        groupage = self.db.get_groupage_by_id(groupage_id, with_products=False)
        if not groupage:
            return (False, "Groupage introuvable")

        unknown = set(fields) - GROUPAGE_EDITABLE_FIELDS
        if unknown:
            return (False, f"Champ(s) non modifiable(s): {', '.join(sorted(unknown))}")
        if 'name' in fields and not (fields['name'] or '').strip():
            self.last_errors = {'name': True}
            return (False, "Le nom du groupage est obligatoire")
        if 'start_date' in fields and not (fields['start_date'] or '').strip():
            self.last_errors = {'start_date': True}
            return (False, "La date de début est obligatoire")
        if 'origin_country' in fields and fields['origin_country'] not in COUNTRIES:
            self.last_errors = {'origin_country': True}
            return (False, f"Pays d'origine inconnu: {fields['origin_country']}")
        if 'transport_mode' in fields and fields['transport_mode'] not in TRANSPORT_MODES:
            self.last_errors = {'transport_mode': True}
            return (False, f"Mode de transport inconnu: {fields['transport_mode']}")
        if 'status' in fields and fields['status'] not in GroupageStatus.ALL:
            return (False, f"Statut inconnu: {fields['status']}")

        self.db.update_groupage(groupage_id, **fields)
        self._log('UPDATE_GROUPAGE', f"Groupage {groupage_id}: {', '.join(sorted(fields))}")
        return (True, "Groupage mis à jour")

    def update_groupage_status(self, groupage_id: int, status: str) -> Tuple[bool, str]:
        """Any status may follow any status"""
        return self.update_groupage(groupage_id, status=status)

    def delete_groupage(self, groupage_id: int) -> Tuple[bool, str]:
        """Delete a groupage and its products. Orders and ledger entries are left as they are."""
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'))

        groupage = self.db.get_groupage_by_id(groupage_id, with_products=False)
        if not groupage:
            return (False, "Groupage introuvable")

        with self.db.atomic():
            self.db.delete_groupage(groupage_id)
            self._log('DELETE_GROUPAGE', f"Groupage {groupage_id}: {groupage['name']}")
        return (True, f"Groupage \"{groupage['name']}\" supprimé")

    def calculate_groupage_profit(self, groupage_id: int) -> float:
        """Realized margin: sum of (selling price - cost price) x quantity sold"""
        self._require('groupages')
        return sum((p['selling_price'] - p['cost_price']) * p['quantity_sold']
                   for p in self.db.get_products_by_groupage(groupage_id))

    def get_groupage_summary(self, groupage_id: int) -> Optional[Dict[str, Any]]:
        self._require('groupages')
        groupage = self.db.get_groupage_by_id(groupage_id)
        if not groupage:
            return None

        products = groupage['products']
        return {
            'groupage': groupage,
            'total_buying_cost': sum(p['buying_price'] * p['quantity_total'] for p in products),
            'total_transport': groupage.get('estimated_transport_cost') or 0.0,
            'total_customs': groupage.get('estimated_customs_cost') or 0.0,
            'profit': self.calculate_groupage_profit(groupage_id),
            'units_total': sum(p['quantity_total'] for p in products),
            'units_sold': sum(p['quantity_sold'] for p in products),
        }

    def list_groupages(self, search: str = '', status: str = None, page: int = 1) -> Dict[str, Any]:
        self._require('groupages')
        term = (search or '').lower()
        groupages = [
            g for g in self.db.get_all_groupages(with_products=True)
            if (term in g['name'].lower() or term in (g.get('origin_country') or '').lower())
            and (not status or status == 'ALL' or g['status'] == status)
        ]
        return paginate(groupages, page, self.settings.per_page('groupages'))

    # ---------- Selling options ----------

    def _sync_selling_price(self, product_id: int):
        """Reference selling price follows the first option"""
        options = self.db.get_selling_options(product_id)
        if options:
            self.db.update_product(product_id, selling_price=options[0]['price'])

    def add_selling_option(self, product_id: int, unit: str, price: float,
                           is_default: bool = False) -> Tuple[bool, str, Optional[int]]:
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'), None)

        if not self.db.get_product_by_id(product_id):
            return (False, "Produit introuvable", None)
        if not (unit or '').strip() or not price or price <= 0:
            self.last_errors = {'selling_options': True}
            return (False, "Unité et prix de vente obligatoires", None)
        if any(_unit_key(o['unit']) == _unit_key(unit) for o in self.db.get_selling_options(product_id)):
            self.last_errors = {'selling_options': True}
            return (False, f"L'unité {unit.strip()} existe déjà pour ce produit", None)

        with self.db.atomic():
            option_id = self.db.add_selling_option(product_id, unit.strip(), price)
            has_default = any(o['is_default'] for o in self.db.get_selling_options(product_id))
            if is_default or not has_default:
                self.db.set_default_selling_option(product_id, option_id)
            self._sync_selling_price(product_id)
            self._log('ADD_SELLING_OPTION', f"Produit {product_id}: {unit} @ {price}")

        return (True, "Option de vente ajoutée", option_id)

    def remove_selling_option(self, option_id: int) -> Tuple[bool, str]:
        """The last option cannot be removed; removing the default promotes the first remaining one"""
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'))

        option = self.db.get_selling_option_by_id(option_id)
        if not option:
            return (False, "Option de vente introuvable")

        product_id = option['product_id']
        if len(self.db.get_selling_options(product_id)) <= 1:
            return (False, "Un produit doit conserver au moins une option de vente")

        with self.db.atomic():
            self.db.delete_selling_option(option_id)
            remaining = self.db.get_selling_options(product_id)
            if option['is_default']:
                self.db.set_default_selling_option(product_id, remaining[0]['id'])
            self._sync_selling_price(product_id)
            self._log('REMOVE_SELLING_OPTION', f"Produit {product_id}: {option['unit']}")

        return (True, "Option de vente supprimée")

    def set_default_selling_option(self, option_id: int) -> Tuple[bool, str]:
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'))

        option = self.db.get_selling_option_by_id(option_id)
        if not option:
            return (False, "Option de vente introuvable")

        self.db.set_default_selling_option(option['product_id'], option_id)
        self._log('DEFAULT_SELLING_OPTION', f"Produit {option['product_id']}: {option['unit']}")
        return (True, f"Unité par défaut: {option['unit']}")

    # ---------- Stock ----------

    def update_product_stock(self, product_id: int, quantity_total: float) -> Tuple[bool, str]:
        """Inventory entry: set the total quantity of a product"""
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'))

        product = self.db.get_product_by_id(product_id)
        if not product:
            return (False, "Produit introuvable")
        if quantity_total is None or quantity_total <= 0:
            self.last_errors = {'quantity': True}
            return (False, "La quantité doit être supérieure à zéro")
        if quantity_total < product['quantity_sold']:
            return (False, f"Quantité inférieure aux ventes déjà enregistrées ({product['quantity_sold']:g})")

        self.db.update_product(product_id, quantity_total=quantity_total)
        self._log('UPDATE_STOCK', f"Produit {product_id}: {product['quantity_total']:g} -> {quantity_total:g}")
        return (True, "Stock mis à jour")

    def record_purchase(self, groupage_id: int, article_id: int, quantity: float,
                        buying_price: float, buying_unit: str = 'Pièce', supplier: str = '',
                        selling_price: float = 0.0, selling_unit: str = 'Pièce') -> Tuple[bool, str, Optional[int]]:
        """
        Stock purchase: creates the product from a catalog article and books the expense.
        Returns (success, message, product_id)
        """
        if not self._allowed('groupages'):
            return (False, self._denied('groupages'), None)

        if not groupage_id or not article_id or not quantity or quantity <= 0:
            return (False, "Groupage, article et quantité sont obligatoires", None)
        if buying_price is None or buying_price < 0:
            return (False, "Prix d'achat invalide", None)

        groupage = self.db.get_groupage_by_id(groupage_id, with_products=False)
        article = self.db.get_article_by_id(article_id)
        if not groupage or not article:
            return (False, "Groupage ou article introuvable", None)

        total_cost = buying_price * quantity

        try:
            with self.db.atomic():
                product_id = self.db.create_product(
                    groupage_id=groupage_id,
                    name=article['name'],
                    buying_price=buying_price,
                    buying_unit=buying_unit,
                    quantity_total=quantity,
                    selling_options=[{'unit': selling_unit, 'price': selling_price, 'is_default': True}],
                    cost_price=buying_price,
                    selling_price=selling_price,
                    image_url=article.get('image_url') or '',
                    date_added=datetime.now().isoformat(timespec='seconds'),
                    supplier=supplier or None,
                )
                self.db.create_transaction(
                    type=EXPENSE, category='ACHAT_STOCK', amount=total_cost,
                    description=f"Achat Stock: {article['name']} x{quantity:g}",
                    reference_type='product', reference_id=product_id,
                    created_by=self._user_id())
                self._log('RECORD_PURCHASE', f"Produit {product_id}: {article['name']} x{quantity:g} = {total_cost:g}")
        except Exception as e:
            print(f"[Error] record_purchase: {e}")
            return (False, str(e), None)

        return (True, "Achat enregistré", product_id)

    def list_inventory(self, search: str = '', page: int = 1) -> Dict[str, Any]:
        """Products of every groupage, newest purchase first"""
        self._require('groupages')
        products = []
        for p in self.db.get_all_products():
            remaining = p['quantity_total'] - p['quantity_sold']
            p['remaining'] = remaining
            p['stock_value'] = remaining * p['selling_price']
            p['purchase_date'] = p.get('date_added') or p['groupage_start_date']
            products.append(p)
        products.sort(key=lambda p: p['purchase_date'] or '', reverse=True)

        term = (search or '').lower()
        filtered = [p for p in products
                    if term in p['name'].lower() or term in p['groupage_name'].lower()]

        result = paginate(filtered, page, self.settings.per_page('stock'))
        result['stock_value_total'] = sum(p['stock_value'] for p in products)
        return result

    # ==================== ORDERS ====================

    def list_available_products(self, groupage_id: int = None, search: str = '') -> List[Dict[str, Any]]:
        """Products offered in the order form, most remaining stock first"""
        self._require('orders')
        term = (search or '').lower()
        products = []
        for p in self.db.get_all_products():
            if groupage_id and p['groupage_id'] != groupage_id:
                continue
            if term not in p['name'].lower() and term not in p['groupage_name'].lower():
                continue
            p['remaining'] = p['quantity_total'] - p['quantity_sold']
            products.append(p)
        products.sort(key=lambda p: p['remaining'], reverse=True)
        return products

    def create_order(self, client_id: int, items, manual_advance: Optional[float] = None,
                     groupage_filter: Optional[int] = None,
                     order_date: str = None) -> Tuple[bool, str, Optional[int]]:
        """
        Create a sales order from cart lines.
        Stock, ledger, client spending and the order itself are written in one transaction.
        Returns (success, message, order_id)
        """
        if not self._allowed('orders'):
            return (False, self._denied('orders'), None)

        lines = list(items or [])
        if not client_id or not lines:
            return (False, "Veuillez sélectionner un client et ajouter au moins un produit", None)

        client = self.db.get_client_by_id(client_id)
        if not client:
            return (False, "Client introuvable", None)

        if manual_advance is not None and manual_advance < 0:
            return (False, "Le montant encaissé ne peut pas être négatif", None)

        # Validate lines and gather requested quantities per product
        products: Dict[int, Dict[str, Any]] = {}
        requested: Counter = Counter()
        for line in lines:
            product = products.get(line['product_id']) or self.db.get_product_by_id(line['product_id'])
            if not product:
                return (False, f"Produit introuvable ({line['product_id']})", None)
            if not line.get('quantity') or line['quantity'] <= 0:
                return (False, f"Quantité invalide pour {product['name']}", None)
            if line.get('unit_price') is None or line['unit_price'] < 0:
                return (False, f"Prix invalide pour {product['name']}", None)
            products[product['id']] = product
            requested[product['id']] += line['quantity']

        if self.settings.prevent_oversell:
            for product_id, quantity in requested.items():
                product = products[product_id]
                remaining = product['quantity_total'] - product['quantity_sold']
                if quantity > remaining:
                    return (False, f"Stock insuffisant pour {product['name']} (disponible: {remaining:g})", None)

        total = sum(line['unit_price'] * line['quantity'] for line in lines)
        if manual_advance is not None:
            advance = manual_advance
        else:
            advance = round_half_up(total * self.settings.advance_rate)
        balance = max(0, total - advance)

        # Single-source order when filtered or when every line comes from the same groupage
        groupage_ids = {products[line['product_id']]['groupage_id'] for line in lines}
        groupage_id = groupage_filter or (groupage_ids.pop() if len(groupage_ids) == 1 else None)

        date = order_date or today()

        try:
            with self.db.atomic():
                order_id = self.db.create_order(
                    client_id=client_id, date=date,
                    items=[{'product_id': l['product_id'], 'quantity': l['quantity'],
                            'unit_price': l['unit_price'], 'unit': l['unit']} for l in lines],
                    total_amount=total, advance_paid=advance, balance_remaining=balance,
                    status=OrderStatus.READY, groupage_id=groupage_id,
                    created_by=self._user_id())
                numero = self.db.get_order_by_id(order_id)['numero']

                for product_id, quantity in requested.items():
                    self.db.increment_quantity_sold(product_id, quantity)

                if advance > 0:
                    label = 'Solde Total' if advance >= total else 'Avance'
                    self.db.create_transaction(
                        type=INCOME, category='VENTE', amount=advance,
                        description=f"Encaissement Commande {numero} - {label}",
                        reference_type='order', reference_id=order_id,
                        created_by=self._user_id())

                self.db.add_client_spent(client_id, total)
                self._log('CREATE_ORDER', f"{numero}: client {client_id}, total {total:g}, avance {advance:g}")
        except Exception as e:
            print(f"[Error] create_order: {e}")
            return (False, str(e), None)

        return (True, f"Commande {numero} enregistrée", order_id)

    def validate_order(self, order_id: int) -> Tuple[bool, str]:
        """Pending order becomes ready for delivery"""
        if not self._allowed('orders'):
            return (False, self._denied('orders'))

        order = self.db.get_order_by_id(order_id)
        if not order:
            return (False, "Commande introuvable")
        if order['status'] == OrderStatus.READY:
            return (True, "Commande déjà prête à livrer")
        if order['status'] not in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
            return (False, f"Impossible de valider une commande au statut « {order['status']} »")

        self.db.update_order(order_id, status=OrderStatus.READY)
        self._log('VALIDATE_ORDER', order['numero'])
        return (True, "Commande prête à livrer")

    def settle_balance(self, order_id: int, payment_method: str = None) -> Tuple[bool, str]:
        """Collect the remaining balance before delivery. The status is not changed."""
        if not self._allowed('orders'):
            return (False, self._denied('orders'))

        order = self.db.get_order_by_id(order_id)
        if not order:
            return (False, "Commande introuvable")
        if order['status'] == OrderStatus.CANCELLED:
            return (False, "Commande annulée")

        amount = order['balance_remaining']
        if amount <= 0:
            return (False, "Cette commande est déjà soldée")

        payment_method = payment_method or self.settings.default_payment_method
        if payment_method not in PAYMENT_METHODS:
            return (False, f"Mode de paiement inconnu: {payment_method}")

        with self.db.atomic():
            self.db.update_order(order_id, balance_remaining=0, payment_method=payment_method)
            self.db.create_transaction(
                type=INCOME, category='VENTE', amount=amount,
                description=f"Solde Commande {order['numero']} (Paiement anticipé)",
                reference_type='order', reference_id=order_id,
                created_by=self._user_id())
            self._log('SETTLE_BALANCE', f"{order['numero']}: {amount:g} ({payment_method})")

        return (True, f"Solde de {amount:g} FCFA encaissé")

    def get_order(self, order_id: int) -> Optional[Dict[str, Any]]:
        self._require('orders')
        return self.db.get_order_by_id(order_id)

    def list_orders(self, status: str = None, search: str = '') -> List[Dict[str, Any]]:
        self._require('orders')
        return self._search_orders(self.db.get_all_orders(status=status), search)

    @staticmethod
    def _search_orders(orders: List[Dict[str, Any]], search: str) -> List[Dict[str, Any]]:
        term = (search or '').lower()
        if not term:
            return orders
        return [o for o in orders
                if term in (o.get('client_name') or '').lower()
                or term in (o.get('client_city') or '').lower()
                or term in str(o['id'])
                or term in o['numero'].lower()]

    # ==================== DELIVERIES ====================

    def list_pending_deliveries(self, search: str = '') -> List[Dict[str, Any]]:
        self._require('deliveries')
        return self._search_orders(self.db.get_all_orders(status=OrderStatus.READY), search)

    def list_delivery_history(self, search: str = '') -> List[Dict[str, Any]]:
        self._require('deliveries')
        return self._search_orders(self.db.get_all_orders(status=OrderStatus.DELIVERED), search)

    def process_delivery(self, order_id: int, driver: str = '', vehicle: str = '',
                         driver_phone: str = '', delivery_address: str = None, note: str = '',
                         delivery_date: str = None, delivery_fee: float = 0.0,
                         collect_payment: Optional[bool] = None,
                         payment_method: str = None) -> Tuple[bool, str]:
        """
        Hand a ready order to a driver and mark it delivered.
        When collecting, the balance and the delivery fee each produce an income entry.
        """
        if not self._allowed('deliveries'):
            return (False, self._denied('deliveries'))

        order = self.db.get_order_by_id(order_id)
        if not order:
            return (False, "Commande introuvable")
        if order['status'] != OrderStatus.READY:
            return (False, f"Seule une commande prête à livrer peut être livrée (statut: {order['status']})")

        delivery_fee = delivery_fee or 0.0
        if delivery_fee < 0:
            return (False, "Les frais de livraison ne peuvent pas être négatifs")

        balance = order['balance_remaining']
        if collect_payment is None:
            collect_payment = balance > 0

        # A driver is mandatory as soon as money is collected
        driver = (driver or '').strip()
        if collect_payment and (balance > 0 or delivery_fee > 0) and not driver:
            self.last_errors = {'driver': True}
            return (False, "Le nom du livreur est obligatoire pour valider l'encaissement.")

        if collect_payment:
            payment_method = payment_method or self.settings.default_payment_method
            if payment_method not in PAYMENT_METHODS:
                return (False, f"Mode de paiement inconnu: {payment_method}")
        if delivery_address is None:
            client = self.db.get_client_by_id(order['client_id'])
            delivery_address = (client or {}).get('address') or ''

        updates = {
            'status': OrderStatus.DELIVERED,
            'delivery_driver': driver or 'Non assigné',
            'delivery_note': f"{note or ''} [Livreur: {driver_phone or ''}, Vehicule: {vehicle or ''}]",
            'delivery_date': delivery_date or today(),
            'delivery_address': delivery_address,
            'delivery_fee': delivery_fee,
        }
        if collect_payment:
            updates.update(balance_remaining=0, is_delivery_paid=True, payment_method=payment_method)

        with self.db.atomic():
            self.db.update_order(order_id, **updates)

            if collect_payment and balance > 0:
                self.db.create_transaction(
                    type=INCOME, category='VENTE', amount=balance,
                    description=f"Solde Commande {order['numero']} - {order.get('client_name') or 'Client'}",
                    reference_type='order', reference_id=order_id,
                    created_by=self._user_id())

            if collect_payment and delivery_fee > 0:
                self.db.create_transaction(
                    type=INCOME, category='TRANSPORT', amount=delivery_fee,
                    description=f"Service Livraison - Commande {order['numero']}",
                    reference_type='order', reference_id=order_id,
                    created_by=self._user_id())

            self._log('PROCESS_DELIVERY',
                      f"{order['numero']}: livreur {updates['delivery_driver']}, "
                      f"encaissement {'oui' if collect_payment else 'non'}")

        return (True, f"Commande {order['numero']} livrée")

    # ==================== FINANCE ====================

    def get_finance_summary(self) -> Dict[str, Any]:
        """Cash position, income/expense breakdown and stock units"""
        self._require('finance')
        transactions = self.db.get_all_transactions()

        def total(entries):
            return sum(t['amount'] for t in entries)

        income_entries = [t for t in transactions if t['type'] == INCOME]
        expense_entries = [t for t in transactions if t['type'] == EXPENSE]

        income = total(income_entries)
        expense = total(expense_entries)
        income_sales = total(t for t in income_entries if t['category'] == 'VENTE')
        income_delivery = total(t for t in income_entries if t['category'] == 'TRANSPORT')
        expense_stock = total(t for t in expense_entries if t['category'] == 'ACHAT_STOCK')
        expense_logistics = total(t for t in expense_entries if t['category'] in ('TRANSPORT', 'DOUANE'))

        units_sold = 0.0
        units_in_stock = 0.0
        for product in self.db.get_all_products():
            units_sold += product['quantity_sold']
            units_in_stock += product['quantity_total'] - product['quantity_sold']

        return {
            'total_income': income,
            'total_expense': expense,
            'balance': income - expense,
            'income_by_category': {
                'VENTE': income_sales,
                'TRANSPORT': income_delivery,
                'AUTRE': income - income_sales - income_delivery,
            },
            'expense_by_category': {
                'ACHAT_STOCK': expense_stock,
                'TRANSPORT_DOUANE': expense_logistics,
                'AUTRE': expense - expense_stock - expense_logistics,
            },
            'stock': {
                'units_sold': units_sold,
                'units_in_stock': units_in_stock,
            },
        }

    def list_transactions(self, type: str = None, category: str = None) -> List[Dict[str, Any]]:
        """Ledger newest first, optionally restricted to one type and/or category"""
        self._require('finance')
        if type and type not in (INCOME, EXPENSE):
            raise ValueError(f"Type de transaction inconnu: {type}")
        if category and category not in TRANSACTION_CATEGORIES:
            raise ValueError(f"Catégorie inconnue: {category}")
        return [t for t in self.db.get_all_transactions()
                if (not type or t['type'] == type) and (not category or t['category'] == category)]

    def get_transaction(self, transaction_id: int) -> Optional[Dict[str, Any]]:
        """Ledger entry with the order it refers to, if any"""
        self._require('finance')
        transaction = self.db.get_transaction_by_id(transaction_id)
        if transaction and transaction['reference_type'] == 'order':
            transaction['order'] = self.db.get_order_by_id(transaction['reference_id'])
        return transaction

    # ==================== CLIENTS ====================

    def save_client(self, name: str, phone: str, whatsapp: str = '', city: str = '',
                    address: str = '', client_id: Optional[int] = None) -> Tuple[bool, str, Optional[int]]:
        """
        Create or update a client. The phone number identifies the client.
        Returns (success, message, client_id)
        """
        if not self._allowed('clients'):
            return (False, self._denied('clients'), None)

        name = (name or '').strip()
        phone = (phone or '').strip()
        if not name or not phone:
            self.last_errors = {'name': not name, 'phone': not phone}
            return (False, "Le nom et le numéro de téléphone sont obligatoires.", None)

        if self.db.find_client_by_phone(phone, exclude_id=client_id):
            self.last_errors = {'phone': True}
            return (False, "Ce numéro de téléphone est déjà associé à un autre client.", None)

        fields = {
            'name': name,
            'phone': phone,
            'whatsapp': (whatsapp or '').strip() or phone,
            'city': (city or '').strip() or 'Non renseigné',
            'address': (address or '').strip(),
        }

        if client_id:
            if not self.db.get_client_by_id(client_id):
                return (False, "Client introuvable", None)
            self.db.update_client(client_id, **fields)
            self._log('UPDATE_CLIENT', f"Client {client_id}: {name}")
            return (True, "Client modifié", client_id)

        client_id = self.db.create_client(**fields)
        self._log('CREATE_CLIENT', f"Client {client_id}: {name}")
        return (True, "Client ajouté", client_id)

    def delete_client(self, client_id: int) -> Tuple[bool, str]:
        """Clients with an order history cannot be deleted"""
        if not self._allowed('clients'):
            return (False, self._denied('clients'))

        client = self.db.get_client_by_id(client_id)
        if not client:
            return (False, "Client introuvable")
        if self.db.count_client_orders(client_id) > 0:
            return (False, "Impossible de supprimer ce client car il possède un historique de commandes. "
                           "Archivez-le plutôt.")

        self.db.delete_client(client_id)
        self._log('DELETE_CLIENT', f"Client {client_id}: {client['name']}")
        return (True, "Client supprimé")

    def list_clients(self, search: str = '', page: int = 1) -> Dict[str, Any]:
        self._require('clients')
        term = search or ''
        clients = [c for c in self.db.get_all_clients()
                   if term.lower() in c['name'].lower() or term in c['phone']]
        return paginate(clients, page, self.settings.per_page('clients'))

    def get_client_history(self, client_id: int) -> List[Dict[str, Any]]:
        """Orders of a client, most recent first, with groupage and product names"""
        self._require('clients')
        groupages = {g['id']: g for g in self.db.get_all_groupages(with_products=False)}
        product_names = {p['id']: p['name'] for p in self.db.get_all_products()}

        orders = self.db.get_all_orders(client_id=client_id)
        orders.sort(key=lambda o: (o['date'], o['id']), reverse=True)

        for order in orders:
            groupage = groupages.get(order['groupage_id'])
            order['groupage_name'] = groupage['name'] if groupage else None
            order['origin_country'] = groupage['origin_country'] if groupage else None
            order['is_paid'] = order['balance_remaining'] <= 0
            for item in order['items']:
                item['product_name'] = product_names.get(item['product_id'], 'Produit supprimé')
        return orders

    # ==================== DASHBOARD ====================

    def get_dashboard_stats(self) -> Dict[str, Any]:
        self._require('dashboard')
        orders = self.db.get_all_orders()
        clients = self.db.get_all_clients()
        products = self.db.get_all_products()
        status_counts = Counter(o['status'] for o in orders)

        cities = Counter((c.get('city') or 'Inconnu') for c in clients)

        return {
            'total_groupages': len(self.db.get_all_groupages(with_products=False)),
            'total_orders': len(orders),
            'total_clients': len(clients),
            'total_deliveries': status_counts[OrderStatus.DELIVERED],
            'orders_by_status': {
                OrderStatus.DELIVERED: status_counts[OrderStatus.DELIVERED],
                OrderStatus.PENDING: status_counts[OrderStatus.PENDING],
                OrderStatus.READY: status_counts[OrderStatus.READY],
            },
            'top_clients': sorted(clients, key=lambda c: c['total_spent'], reverse=True)[:10],
            'top_products': sorted(products, key=lambda p: p['quantity_sold'], reverse=True)[:10],
            'top_cities': cities.most_common(10),
        }


# Global business logic instance
_logic_instance: Optional[BusinessLogic] = None

def get_logic() -> BusinessLogic:
    """Get global business logic instance"""
    global _logic_instance
    if _logic_instance is None:
        _logic_instance = BusinessLogic()
    return _logic_instance
