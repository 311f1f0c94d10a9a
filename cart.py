"""
Cart Module - Import Pro
Order cart: unit/price resolution and quantity edits before an order is created
"""

from typing import Dict, Any, Optional, List, Tuple


def resolve_unit_price(product: Dict[str, Any], explicit: Optional[Tuple[str, float]] = None) -> Tuple[str, float]:
    """
    Pick the unit and price a product is added to the cart with.
    Priority: explicit choice > default selling option > first option > buying unit / selling price.
    """
    if explicit:
        return explicit[0], explicit[1]

    options = product.get('selling_options') or []
    if options:
        option = next((o for o in options if o.get('is_default')), options[0])
        return option['unit'], option['price']

    return product['buying_unit'], product['selling_price']


class Cart:
    """Lines waiting to become an order"""

    def __init__(self):
        self.lines: List[Dict[str, Any]] = []
        # Unit picked on a product card, by product id
        self.selected_units: Dict[int, Tuple[str, float]] = {}

    def select_unit(self, product: Dict[str, Any], unit: str):
        """Remember the unit chosen on a product card for the next add()"""
        for option in product.get('selling_options') or []:
            if option['unit'] == unit:
                self.selected_units[product['id']] = (option['unit'], option['price'])
                return
        raise ValueError(f"Unité inconnue pour {product['name']}: {unit}")

    def add(self, product: Dict[str, Any], unit: Optional[str] = None) -> Dict[str, Any]:
        """Add one unit of a product; same product and unit bumps the existing line"""
        if unit is not None:
            self.select_unit(product, unit)

        unit_to_use, price_to_use = resolve_unit_price(product, self.selected_units.get(product['id']))

        for line in self.lines:
            if line['product_id'] == product['id'] and line['unit'] == unit_to_use:
                line['quantity'] += 1
                return line

        line = {
            'product_id': product['id'],
            'quantity': 1,
            'unit': unit_to_use,
            'unit_price': price_to_use,
            'groupage_id': product['groupage_id'],
        }
        self.lines.append(line)
        return line

    def update_quantity(self, index: int, delta: int) -> bool:
        """Stepper: the quantity never goes below 1 (use remove())"""
        new_qty = self.lines[index]['quantity'] + delta
        if new_qty > 0:
            self.lines[index]['quantity'] = new_qty
            return True
        return False

    def remove(self, index: int):
        del self.lines[index]

    def total(self) -> float:
        return sum(line['unit_price'] * line['quantity'] for line in self.lines)

    def clear(self):
        self.lines = []
        self.selected_units = {}

    def __len__(self):
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)
