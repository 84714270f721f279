# backend/tabacaria/services/products_service.py
"""
Products Service

Catalog CRUD, image list management and the stock views (low stock,
per-category counts, the shareable price table). Every stock change made
here goes through the ledger in inventory_service.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..config import ShopSettings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, Product, SaleLine, Supplier
from ..models.inventory import PRODUCT_CATEGORIES
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    normalize_category,
    parse_positive_int,
    validate_payload,
)
from .concurrency import run_in_transaction
from .inventory_service import append_ledger_entry, get_product_for_update, move_stock
from .pagination import Page, paginate


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "description",
        "category",
        "price_cents",
        "cost_price_cents",
        "stock",
        "min_stock",
        "barcode",
        "supplier_id",
        "expiry_date",
        "images",
        "flavors",
        "attributes",
        "is_active",
    },
    required_on_create={"name", "price_cents", "cost_price_cents"},
)

CATEGORY_EMOJIS = {
    "Essências": "💨",
    "Tabaco": "🚬",
    "Acessórios": "🔧",
    "Narguilés": "💭",
    "Carvão": "🔥",
    "Bebidas": "🥤",
    "Pod": "🔥",
    "Outros": "🎁",
}
FLAVORED_CATEGORIES = {"Pod", "Essências"}


def _truthy(value) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "sim"}


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _ensure_barcode_free(barcode: str | None, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product.id).filter(Product.barcode == barcode)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Barcode {barcode} is already in use")


def _ensure_supplier_exists(supplier_id: int | None) -> None:
    if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")


def list_products(filters: dict, *, page: int, limit: int) -> Page:
    query = db.session.query(Product)

    keyword = (filters.get("keyword") or "").strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(or_(
            Product.name.ilike(like),
            Product.description.ilike(like),
            Product.barcode.ilike(like),
        ))
    if filters.get("category"):
        query = query.filter(Product.category == normalize_category(filters["category"]))
    if filters.get("is_active") not in (None, ""):
        query = query.filter(Product.is_active.is_(_truthy(filters["is_active"])))
    if _truthy(filters.get("low_stock", "")):
        query = query.filter(Product.stock <= Product.min_stock)
    if filters.get("supplier_id"):
        query = query.filter(Product.supplier_id == parse_positive_int(filters["supplier_id"], "supplier_id"))

    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    return paginate(query, page=page, limit=limit)


def create_product(payload: dict, *, user_id: int, settings: ShopSettings) -> Product:
    """
    Create a product; a positive initial stock is recorded as an "in" entry.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    initial_stock = patch.pop("stock", None) or 0
    patch.setdefault("min_stock", settings.stock_low_threshold)

    def _op() -> Product:
        _ensure_barcode_free(patch.get("barcode"))
        _ensure_supplier_exists(patch.get("supplier_id"))

        product = Product(stock=0, **patch)
        db.session.add(product)
        db.session.flush()

        if initial_stock > 0:
            product.stock = initial_stock
            append_ledger_entry(
                product,
                kind="in",
                previous_stock=0,
                new_stock=initial_stock,
                user_id=user_id,
                reason="initial stock",
            )
        db.session.flush()
        return product

    product = run_in_transaction(_op)
    current_app.logger.info("Product %s created (%s)", product.id, product.name)
    return product


def update_product(product_id: int, payload: dict, *, user_id: int) -> Product:
    """
    Patch a product. A changed stock value is recorded as an adjustment.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    new_stock = patch.pop("stock", None)

    def _op() -> Product:
        product = get_product_for_update(product_id)
        if "barcode" in patch:
            _ensure_barcode_free(patch["barcode"], exclude_id=product.id)
        if "supplier_id" in patch:
            _ensure_supplier_exists(patch["supplier_id"])

        for key, value in patch.items():
            setattr(product, key, value)

        if new_stock is not None and new_stock != product.stock:
            move_stock(
                product,
                kind="adjustment",
                quantity=new_stock,
                user_id=user_id,
                reason="product edit",
            )
        db.session.flush()
        return product

    return run_in_transaction(_op)


def has_dependents(product: Product) -> bool:
    """A product that was ever sold must keep its row."""
    sold = db.session.query(SaleLine.id).filter(SaleLine.product_id == product.id).first()
    if sold is not None:
        return True
    sale_entry = (
        db.session.query(InventoryTransaction.id)
        .filter(
            InventoryTransaction.product_id == product.id,
            or_(InventoryTransaction.kind == "sale", InventoryTransaction.reference_kind == "sale"),
        )
        .first()
    )
    return sale_entry is not None


def delete_product(product_id: int) -> dict:
    """
    Deactivate a product with sale history; physically remove it otherwise.
    """
    def _op() -> dict:
        product = get_product_for_update(product_id)
        if has_dependents(product):
            product.is_active = False
            return {"deleted": False, "deactivated": True}

        db.session.query(InventoryTransaction).filter(
            InventoryTransaction.product_id == product.id
        ).delete(synchronize_session=False)
        db.session.delete(product)
        return {"deleted": True, "deactivated": False}

    result = run_in_transaction(_op)
    current_app.logger.info("Product %s delete: %s", product_id, result)
    return result


def low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


def category_counts() -> list[dict]:
    rows = (
        db.session.query(Product.category, func.count(Product.id))
        .filter(Product.is_active.is_(True))
        .group_by(Product.category)
        .order_by(func.count(Product.id).desc(), Product.category)
        .all()
    )
    return [{"category": category, "count": int(count)} for category, count in rows]


def format_brl(cents: int) -> str:
    """12345 -> 'R$ 123,45'"""
    whole, frac = divmod(abs(cents), 100)
    grouped = f"{whole:,}".replace(",", ".")
    sign = "-" if cents < 0 else ""
    return f"{sign}R$ {grouped},{frac:02d}"


def price_table(category: str | None = None) -> str:
    """Text price list of what is in stock, formatted for WhatsApp."""
    query = db.session.query(Product).filter(Product.is_active.is_(True), Product.stock > 0)
    if category:
        query = query.filter(Product.category == normalize_category(category))
    products = query.order_by(Product.category.asc(), Product.name.asc()).all()

    if not products:
        return "Nenhum produto disponível no momento"

    by_category: dict[str, list[Product]] = {}
    for product in products:
        by_category.setdefault(product.category, []).append(product)

    bar = "━━━━━━━━━"
    out: list[str] = []
    for name in sorted(by_category, key=lambda c: PRODUCT_CATEGORIES.index(c) if c in PRODUCT_CATEGORIES else 99):
        emoji = CATEGORY_EMOJIS.get(name, "📦")
        out.append(f"\n{bar}\n{emoji} *{name.upper()}* {emoji}\n{bar}\n\n")
        for product in by_category[name]:
            out.append(f"*{product.name.upper()}:* *{format_brl(product.price_cents)}*\n")
            if name in FLAVORED_CATEGORIES and product.flavors:
                out.append("_Sabores disponíveis:_\n\n")
                out.extend(f"   • *{flavor}*\n" for flavor in product.flavors)
            if product.is_low_stock:
                out.append("⚠️ *Últimas unidades!* ⚠️\n")
            out.append("\n")

    out.append(f"\n{bar}\n")
    out.append("💬 *Avise qual tiver interesse!*\n")
    return "".join(out).strip()


# =============================================================================
# Images
# =============================================================================

def _parse_index(value, key: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    try:
        index = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")
    if index < 0:
        raise ValidationError(f"{key} must be >= 0")
    return index


def add_image(product_id: int, image_url, image_index=None) -> Product:
    """
    Store image_url at image_index (overwriting) or append it.

    An index past the end appends.
    """
    if not isinstance(image_url, str) or not image_url.strip():
        raise ValidationError("image_url is required")
    index = _parse_index(image_index, "image_index") if image_index is not None else None

    def _op() -> Product:
        product = get_product_for_update(product_id)
        images = list(product.images or [])
        if index is not None and index < len(images):
            images[index] = image_url.strip()
        else:
            images.append(image_url.strip())
        product.images = images
        db.session.flush()
        return product

    return run_in_transaction(_op)


def remove_image(product_id: int, index) -> Product:
    position = _parse_index(index, "index")

    def _op() -> Product:
        product = get_product_for_update(product_id)
        images = list(product.images or [])
        if position >= len(images):
            raise NotFoundError(f"Image {position} not found")
        del images[position]
        product.images = images
        db.session.flush()
        return product

    return run_in_transaction(_op)


def reorder_images(product_id: int, order) -> Product:
    """
    Replace the image list with images picked in the given index order.

    order must be a permutation of range(len(images)).
    """
    if not isinstance(order, list):
        raise ValidationError("order must be a list of indices")

    def _op() -> Product:
        product = get_product_for_update(product_id)
        images = list(product.images or [])
        if not images:
            raise ValidationError("Product has no images")
        if len(order) != len(images):
            raise ValidationError("order must list every image exactly once")
        if any(isinstance(i, bool) or not isinstance(i, int) for i in order):
            raise ValidationError("order must contain integer indices")
        if sorted(order) != list(range(len(images))):
            raise ValidationError("order is not a permutation of the image indices")
        product.images = [images[i] for i in order]
        db.session.flush()
        return product

    return run_in_transaction(_op)
