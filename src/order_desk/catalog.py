"""Shop catalog records and the helpers that group and summarize them."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Optional

from rapidfuzz import fuzz, process

from .currency import MAX_AMOUNT

UNLIMITED_STOCK = -1
LOW_STOCK_THRESHOLD = 5
DEFAULT_CATEGORY = "Other"
#: Select option values are capped at 100 characters.
CATEGORY_NAME_LIMIT = 100
TRADE_REQUEST_TTL_SECONDS = 24 * 60 * 60

CATEGORY_EMOJI = {
    "Roblox": "🎮",
    "Fortnite": "🔫",
    "Minecraft": "⛏️",
    "Steam": "🎯",
    "Accounts": "👤",
    "Currency": "💰",
    "Skins": "🎨",
    "Limited": "💎",
    "Other": "📦",
}


@dataclass
class ShopItem:
    item_id: int
    name: str
    description: str
    price: Decimal
    category: str
    stock: int = UNLIMITED_STOCK
    image_url: str = ""
    created_by: Optional[int] = None
    created_at: float = 0.0
    is_active: bool = True

    @classmethod
    def from_row(cls, row: tuple) -> "ShopItem":
        item_id, name, description, price, category, stock, image_url, created_by, created_at, is_active = row
        return cls(
            item_id=item_id,
            name=name,
            description=description or "",
            price=Decimal(price),
            category=category or DEFAULT_CATEGORY,
            stock=stock,
            image_url=image_url or "",
            created_by=created_by,
            created_at=created_at or 0.0,
            is_active=bool(is_active),
        )

    @property
    def unlimited(self) -> bool:
        return self.stock == UNLIMITED_STOCK

    @property
    def in_stock(self) -> bool:
        return self.stock != 0


class PaymentResult(str, Enum):
    PAID = "paid"
    ALREADY_HANDLED = "already_handled"
    OUT_OF_STOCK = "out_of_stock"


@dataclass
class Purchase:
    purchase_id: int
    user_id: int
    item_id: int
    item_name: str
    price: Decimal
    status: str
    channel_id: Optional[int]
    created_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "Purchase":
        purchase_id, user_id, item_id, item_name, price, status, channel_id, created_at = row
        return cls(purchase_id, user_id, item_id, item_name, Decimal(price), status, channel_id, created_at)


@dataclass
class TradeRequest:
    trade_id: int
    requester_id: int
    target_id: int
    game_platform: str
    requester_offer: str
    target_offer: str
    notes: str
    status: str
    created_at: float
    expires_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "TradeRequest":
        return cls(*row)

    def is_expired(self, now: float) -> bool:
        return self.status == "pending" and now >= self.expires_at


@dataclass(frozen=True)
class CategorySummary:
    name: str
    count: int
    total_value: Decimal

    @property
    def average_price(self) -> Decimal:
        return (self.total_value / self.count).quantize(Decimal("0.01")) if self.count else Decimal("0.00")


@dataclass(frozen=True)
class CatalogStats:
    total_items: int
    categories: int
    total_value: Decimal
    in_stock: int
    unlimited: int

    @property
    def average_price(self) -> Decimal:
        if not self.total_items:
            return Decimal("0.00")
        return (self.total_value / self.total_items).quantize(Decimal("0.01"))


def category_emoji(category: str) -> str:
    return CATEGORY_EMOJI.get(category, CATEGORY_EMOJI[DEFAULT_CATEGORY])


def stock_label(stock: int) -> str:
    if stock == UNLIMITED_STOCK:
        return "Unlimited"
    if stock == 0:
        return "Out of Stock"
    return f"{stock} left"


def stock_emoji(stock: int) -> str:
    if stock == 0:
        return "❌"
    if stock != UNLIMITED_STOCK and stock <= LOW_STOCK_THRESHOLD:
        return "⚠️"
    return "✅"


def group_by_category(items: Iterable[ShopItem]) -> dict[str, list[ShopItem]]:
    """Group items by category, keeping first-seen category order."""

    grouped: dict[str, list[ShopItem]] = {}
    for item in items:
        grouped.setdefault(item.category or DEFAULT_CATEGORY, []).append(item)
    return grouped


def summarize_categories(items: Iterable[ShopItem]) -> list[CategorySummary]:
    return [
        CategorySummary(name, len(entries), sum((item.price for item in entries), Decimal("0")))
        for name, entries in group_by_category(items).items()
    ]


def catalog_stats(items: Iterable[ShopItem]) -> CatalogStats:
    items = list(items)
    return CatalogStats(
        total_items=len(items),
        categories=len(group_by_category(items)),
        total_value=sum((item.price for item in items), Decimal("0")),
        in_stock=sum(1 for item in items if item.in_stock),
        unlimited=sum(1 for item in items if item.unlimited),
    )


def match_category(term: str, categories: Iterable[str], *, cutoff: int = 60) -> Optional[str]:
    """Fuzzy match a typed category name against the known ones."""

    term = term.strip()
    names = list(categories)
    if not term or not names:
        return None
    for name in names:
        if name.lower() == term.lower():
            return name
    match = process.extractOne(term, names, scorer=fuzz.WRatio)
    if not match or match[1] < cutoff:
        return None
    return match[0]


@dataclass(frozen=True)
class ItemSpec:
    name: str
    price: Decimal
    category: str
    description: str
    stock: int
    image_url: str


def parse_item_spec(raw: str) -> ItemSpec:
    """Parse ``Name | Price | Category | Description | Stock | Image URL``.

    Stock and image URL are optional; stock defaults to unlimited.
    """

    parts = [part.strip() for part in raw.split("|")]
    if len(parts) < 4:
        raise ValueError(
            "Use the format: Name | Price | Category | Description | Stock | Image URL"
        )
    name, price_raw, category, description = parts[:4]
    stock_raw = parts[4] if len(parts) > 4 and parts[4] else str(UNLIMITED_STOCK)
    image_url = parts[5] if len(parts) > 5 else ""
    return build_item_spec(name, price_raw, category, description, stock_raw, image_url)


def build_item_spec(
    name: str,
    price_raw: str,
    category: str,
    description: str,
    stock_raw: str = str(UNLIMITED_STOCK),
    image_url: str = "",
) -> ItemSpec:
    name = name.strip()
    if not name:
        raise ValueError("Item name is required.")
    try:
        price = Decimal(price_raw.strip().lstrip("$").replace(",", ""))
    except InvalidOperation as exc:
        raise ValueError("Invalid price! Please enter a valid number.") from exc
    if not price.is_finite() or price < 0:
        raise ValueError("Invalid price! Please enter a valid number.")
    if price > MAX_AMOUNT:
        raise ValueError(f"Price cannot be more than ${MAX_AMOUNT:,}.")
    try:
        stock = int((stock_raw or str(UNLIMITED_STOCK)).strip())
    except ValueError as exc:
        raise ValueError("Invalid stock amount! Use a number or -1 for unlimited.") from exc
    if stock < UNLIMITED_STOCK:
        raise ValueError("Invalid stock amount! Use a number or -1 for unlimited.")
    category = category.strip() or DEFAULT_CATEGORY
    if len(category) > CATEGORY_NAME_LIMIT:
        raise ValueError(f"Category names can be at most {CATEGORY_NAME_LIMIT} characters.")
    image_url = image_url.strip()
    if image_url and not image_url.startswith(("http://", "https://")):
        raise ValueError("Image URL must start with http:// or https://")
    return ItemSpec(
        name=name,
        price=price.quantize(Decimal("0.01")),
        category=category,
        description=description.strip(),
        stock=stock,
        image_url=image_url,
    )
