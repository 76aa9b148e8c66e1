"""Enumerations shared by reports, matches and chats.

Values match the strings stored in Firestore by the web client.
"""
from enum import Enum


class ReportType(str, Enum):
    LOST = "LOST"
    FOUND = "FOUND"

    @property
    def opposite(self) -> "ReportType":
        return ReportType.FOUND if self is ReportType.LOST else ReportType.LOST


class ReportStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class ItemCategory(str, Enum):
    ELECTRONICS = "Electronics"
    STATIONERY = "Stationery"
    CLOTHING = "Clothing"
    ACCESSORIES = "Accessories"
    ID_CARDS = "ID Cards"
    BOOKS = "Books"
    OTHER = "Other"


class ChatType(str, Enum):
    DIRECT = "direct"
    GLOBAL = "global"


class MessageStatus(str, Enum):
    SENT = "sent"
    READ = "read"


class AttachmentType(str, Enum):
    IMAGE = "image"
    FILE = "file"


PRIMARY_CATEGORIES = [c.value for c in ItemCategory]

# Loose aliases the model sometimes answers with instead of the exact label
CATEGORY_SYNONYMS = {
    "electronic": ItemCategory.ELECTRONICS,
    "electronics": ItemCategory.ELECTRONICS,
    "gadget": ItemCategory.ELECTRONICS,
    "stationery": ItemCategory.STATIONERY,
    "stationary": ItemCategory.STATIONERY,
    "clothing": ItemCategory.CLOTHING,
    "clothes": ItemCategory.CLOTHING,
    "apparel": ItemCategory.CLOTHING,
    "accessory": ItemCategory.ACCESSORIES,
    "accessories": ItemCategory.ACCESSORIES,
    "id card": ItemCategory.ID_CARDS,
    "id cards": ItemCategory.ID_CARDS,
    "id": ItemCategory.ID_CARDS,
    "book": ItemCategory.BOOKS,
    "books": ItemCategory.BOOKS,
    "other": ItemCategory.OTHER,
}

CONDITIONS = ["New", "Good", "Used", "Damaged"]


def coerce_category(value) -> ItemCategory:
    """Map a loosely formatted label onto a known category (Other when unknown)."""
    if isinstance(value, ItemCategory):
        return value
    if not isinstance(value, str):
        return ItemCategory.OTHER
    raw = value.strip()
    for cat in ItemCategory:
        if raw == cat.value:
            return cat
    return CATEGORY_SYNONYMS.get(raw.lower(), ItemCategory.OTHER)
