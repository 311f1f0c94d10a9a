"""
Utilities Module - Import Pro
Handles amount formatting, listing pagination and image input
"""

import io
import math
import base64
from datetime import datetime
from typing import List, Dict, Any, Optional
from PIL import Image, UnidentifiedImageError


# ==================== AMOUNTS ====================

def round_half_up(value: float) -> int:
    """Round to the nearest unit, halves going up (2.5 -> 3)"""
    return int(math.floor(value + 0.5))


def format_number(value: float, decimals: int = 0) -> str:
    """Format a number with thousand separators (space) and fixed decimals."""
    if value is None:
        value = 0.0
    try:
        s = f"{float(value):,.{decimals}f}"
    except (TypeError, ValueError):
        return f"{0:.{decimals}f}"
    return s.replace(",", " ")


def format_currency(value: float) -> str:
    """Format an amount in FCFA: 12000 -> '12 000 FCFA'"""
    return f"{format_number(value, 0)} FCFA"


def parse_currency(value_str: Any) -> float:
    """Parse string with spaces to float. Handles '1 234,50' -> 1234.50"""
    if not value_str:
        return 0.0
    if isinstance(value_str, (int, float)):
        return float(value_str)

    clean = str(value_str).replace("FCFA", "").replace("F", "")
    clean = clean.replace(" ", "").replace("\u00a0", "").replace("\u202f", "").replace(",", ".")
    try:
        return float(clean)
    except ValueError:
        return 0.0


def format_quantity(value: float, unit: str) -> str:
    """Whole quantities without decimals: (5.0, 'Pièce') -> '5 Pièce'"""
    decimals = 0 if float(value).is_integer() else 2
    return f"{format_number(value, decimals)} {unit}"


def today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


# ==================== PAGINATION ====================

def paginate(items: List[Any], page: int = 1, per_page: int = 10) -> Dict[str, Any]:
    """
    Slice a filtered list into one page.
    Out of range pages are clamped to the last (or first) page.
    """
    total = len(items)
    total_pages = max(1, math.ceil(total / per_page)) if per_page > 0 else 1
    page = min(max(1, int(page or 1)), total_pages)
    start = (page - 1) * per_page
    return {
        'items': items[start:start + per_page],
        'page': page,
        'per_page': per_page,
        'total': total,
        'total_pages': total_pages,
    }


class ListingState:
    """
    Filters and current page of a paginated listing.
    Any filter change sends the listing back to page 1.
    """

    def __init__(self, **filters):
        self.filters: Dict[str, Any] = dict(filters)
        self.page = 1

    def set_filter(self, **changes):
        changed = any(self.filters.get(k) != v for k, v in changes.items())
        self.filters.update(changes)
        if changed:
            self.page = 1

    def go_to(self, page: int):
        self.page = max(1, int(page))

    def after_delete(self, items_on_page: int):
        """Step back one page when the last item of a page was removed"""
        if items_on_page == 1 and self.page > 1:
            self.page -= 1


# ==================== IMAGES ====================

PLACEHOLDER_IMAGE_URL = "https://picsum.photos/200/200?random={seed}"


def placeholder_image_url(seed: Any = None) -> str:
    if seed is None:
        seed = int(datetime.now().timestamp() * 1000)
    return PLACEHOLDER_IMAGE_URL.format(seed=seed)


def is_data_uri(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("data:image/")


def image_to_data_uri(source) -> str:
    """
    Encode a user-selected image file (path, bytes or file object) to a data URI.
    Raises ValueError if the content is not an image Pillow can read.
    """
    if isinstance(source, (bytes, bytearray)):
        raw = bytes(source)
    elif hasattr(source, 'read'):
        raw = source.read()
    else:
        with open(source, 'rb') as f:
            raw = f.read()

    try:
        with Image.open(io.BytesIO(raw)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Fichier image invalide: {e}")

    mime = Image.MIME.get(image_format, f"image/{image_format.lower()}")
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


def normalize_image_url(value: Optional[str]) -> Optional[str]:
    """Pasted URL or data URI, stored verbatim (blank -> None)"""
    if value is None:
        return None
    value = value.strip()
    return value or None
