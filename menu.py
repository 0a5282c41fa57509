"""
Menu management for service providers: sections, items, item images and
promos, plus the customer-facing menu with live discounts applied.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pymongo.errors import PyMongoError

from cart import CartItem
from database import (
    MENU_ITEMS,
    MENU_SECTIONS,
    PROMOS,
    SERVICE_PROVIDERS,
    create_document,
    delete_document,
    get_document,
    get_documents,
    serialize_doc,
    update_document,
)
from promos import discounted_price, find_active_promo, parse_percentage, promo_status, snapshot_of, to_decimal
from schemas import (
    MenuEntry,
    MenuItem,
    MenuItemCreate,
    MenuItemUpdate,
    MenuSection,
    MenuSectionCreate,
    Promo,
    PromoCreate,
    PromoUpdate,
)
from storage import ObjectStorage, object_path, url_for

logger = structlog.get_logger()

PROMO_FILTERS = ("all", "active", "upcoming", "expired")


class MenuRecordNotFound(LookupError):
    pass


class ImageUploadError(Exception):
    """Image could not be stored or attached to its item."""


def _owned(db, collection: str, doc_id: str, owner_id: str) -> Dict[str, Any]:
    doc = get_document(db, collection, doc_id)
    if not doc or doc.get("owner_id") != owner_id:
        raise MenuRecordNotFound(f"{collection} record not found: {doc_id}")
    return doc


def _item_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    item = serialize_doc(doc)
    item["image_url"] = url_for(item["image_path"]) if item.get("image_path") else None
    return item


# ----------------------------
# Sections
# ----------------------------
def create_section(db, owner_id: str, data: MenuSectionCreate) -> Dict[str, Any]:
    section = MenuSection(name=data.name.strip(), owner_id=owner_id)
    section_id = create_document(db, MENU_SECTIONS, section)
    logger.info("section_created", section_id=section_id, owner_id=owner_id)
    return serialize_doc(get_document(db, MENU_SECTIONS, section_id))


def list_sections(db, owner_id: str) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in get_documents(db, MENU_SECTIONS, {"owner_id": owner_id})]


def delete_section(db, storage: ObjectStorage, owner_id: str, section_id: str) -> int:
    """Remove a section and every item filed under it. Returns the item count."""
    _owned(db, MENU_SECTIONS, section_id, owner_id)
    items = get_documents(db, MENU_ITEMS, {"owner_id": owner_id, "section_id": section_id})
    for doc in items:
        delete_item(db, storage, owner_id, str(doc["_id"]))
    delete_document(db, MENU_SECTIONS, section_id)
    logger.info("section_deleted", section_id=section_id, items_removed=len(items))
    return len(items)


# ----------------------------
# Items
# ----------------------------
def create_item(db, owner_id: str, data: MenuItemCreate) -> Dict[str, Any]:
    _owned(db, MENU_SECTIONS, data.section_id, owner_id)
    item = MenuItem(**data.model_dump(), owner_id=owner_id)
    item_id = create_document(db, MENU_ITEMS, item)
    logger.info("item_created", item_id=item_id, owner_id=owner_id)
    return _item_out(get_document(db, MENU_ITEMS, item_id))


def list_items(db, owner_id: str, section_id: Optional[str] = None) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {"owner_id": owner_id}
    if section_id:
        filt["section_id"] = section_id
    return [_item_out(d) for d in get_documents(db, MENU_ITEMS, filt)]


def update_item(db, owner_id: str, item_id: str, patch: MenuItemUpdate) -> Dict[str, Any]:
    _owned(db, MENU_ITEMS, item_id, owner_id)
    update_data = patch.model_dump(exclude_unset=True)
    if update_data.get("section_id"):
        _owned(db, MENU_SECTIONS, update_data["section_id"], owner_id)
    if update_data:
        update_document(db, MENU_ITEMS, item_id, update_data)
    return _item_out(get_document(db, MENU_ITEMS, item_id))


def delete_item(db, storage: ObjectStorage, owner_id: str, item_id: str) -> None:
    doc = _owned(db, MENU_ITEMS, item_id, owner_id)
    delete_document(db, MENU_ITEMS, item_id)
    if doc.get("image_path"):
        try:
            storage.delete(doc["image_path"])
        except PyMongoError as exc:
            logger.error("image_cleanup_failed", path=doc["image_path"], error=str(exc))


def replace_item_image(db, storage: ObjectStorage, owner_id: str, item_id: str,
                       filename: str, data: bytes, content_type: Optional[str] = None) -> str:
    """Upload a new image and point the item at it.

    The upload is undone when the record update fails, and the previous
    image is removed only after the record points at the new one.
    """
    doc = _owned(db, MENU_ITEMS, item_id, owner_id)
    previous = doc.get("image_path")
    path = object_path(owner_id, filename)

    try:
        url = storage.upload(path, data, content_type)
    except PyMongoError as exc:
        logger.error("image_upload_failed", item_id=item_id, error=str(exc))
        raise ImageUploadError("Could not upload the image") from exc

    try:
        if not update_document(db, MENU_ITEMS, item_id, {"image_path": path}):
            raise MenuRecordNotFound(f"menuItems record not found: {item_id}")
    except (PyMongoError, MenuRecordNotFound) as exc:
        logger.error("image_attach_failed", item_id=item_id, path=path, error=str(exc))
        try:
            storage.delete(path)
        except PyMongoError as cleanup_exc:
            logger.error("image_cleanup_failed", path=path, error=str(cleanup_exc))
        raise ImageUploadError("Could not attach the image to the item") from exc

    if previous and previous != path:
        try:
            storage.delete(previous)
        except PyMongoError as exc:
            logger.error("image_cleanup_failed", path=previous, error=str(exc))
    logger.info("item_image_replaced", item_id=item_id, path=path)
    return url


# ----------------------------
# Promos
# ----------------------------
def _check_value(promo_type: str, value: str) -> None:
    if promo_type == "discount":
        parse_percentage(value)


def _to_promo(doc: Dict[str, Any]) -> Promo:
    return Promo.model_validate(serialize_doc(doc))


def create_promo(db, owner_id: str, data: PromoCreate) -> Promo:
    _owned(db, MENU_ITEMS, data.item_id, owner_id)
    _check_value(data.type, data.value)
    promo_id = create_document(db, PROMOS, Promo(**data.model_dump(), owner_id=owner_id).model_dump(exclude={"id"}))
    logger.info("promo_created", promo_id=promo_id, item_id=data.item_id)
    return _to_promo(get_document(db, PROMOS, promo_id))


def load_promos(db, owner_id: str) -> List[Promo]:
    return [_to_promo(d) for d in get_documents(db, PROMOS, {"owner_id": owner_id})]


def list_promos(db, owner_id: str, status_filter: str, now: datetime) -> List[Promo]:
    if status_filter not in PROMO_FILTERS:
        raise ValueError(f"Unknown promo filter: {status_filter}")
    promos = load_promos(db, owner_id)
    if status_filter == "all":
        return promos
    return [p for p in promos if promo_status(p, now) == status_filter]


def update_promo(db, owner_id: str, promo_id: str, patch: PromoUpdate) -> Promo:
    current = _to_promo(_owned(db, PROMOS, promo_id, owner_id))
    update_data = patch.model_dump(exclude_unset=True)
    # Re-validate the merged record so the window and value stay consistent
    merged = Promo.model_validate({**current.model_dump(), **update_data})
    _check_value(merged.type, merged.value)
    if update_data:
        update_document(db, PROMOS, promo_id, update_data)
    return _to_promo(get_document(db, PROMOS, promo_id))


def delete_promo(db, owner_id: str, promo_id: str) -> None:
    _owned(db, PROMOS, promo_id, owner_id)
    delete_document(db, PROMOS, promo_id)


# ----------------------------
# Customer view
# ----------------------------
def _entry(doc: Dict[str, Any], promos: List[Promo], now: datetime) -> MenuEntry:
    item = _item_out(doc)
    promo = find_active_promo(promos, item["id"], now)
    promo_price = None
    if promo is not None:
        try:
            promo_price = discounted_price(item["price"], promo.value)
        except ValueError as exc:
            logger.warning("promo_ignored", promo_id=promo.id, error=str(exc))
            promo = None
    return MenuEntry(
        id=item["id"],
        name=item["name"],
        price=to_decimal(item["price"]),
        currency=item.get("currency", "USD"),
        section_id=item.get("section_id"),
        provider_id=item["owner_id"],
        image_url=item["image_url"],
        active_promo=snapshot_of(promo) if promo else None,
        promo_price=promo_price,
    )


def customer_menu(db, provider_id: str, now: datetime) -> List[MenuEntry]:
    promos = load_promos(db, provider_id)
    return [_entry(d, promos, now) for d in get_documents(db, MENU_ITEMS, {"owner_id": provider_id})]


def cart_item_for(db, item_id: str, provider_id: str, now: datetime) -> CartItem:
    """Resolve a menu item into what the cart stores, capturing its live promo."""
    doc = _owned(db, MENU_ITEMS, item_id, provider_id)
    entry = _entry(doc, load_promos(db, provider_id), now)
    provider = get_document(db, SERVICE_PROVIDERS, provider_id) or {}
    return CartItem(
        item_id=entry.id,
        name=entry.name,
        price=entry.price,
        promo=entry.active_promo,
        provider_name=provider.get("business_name"),
    )
