# Export collaborator: turns the catalog (and optionally the price ledger) into tabular sheets
# Sheets are plain rows so any writer (CSV here, a spreadsheet library elsewhere) can consume them

import csv
import os
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from core.catalog.history import PriceHistoryEntry
from core.catalog.product import Product
from core.catalog.sanitizer import Priced, Price

CURRENT_SHEET = "الاسعار_الحالية"
MAIN_SHEET = "القائمة_الرئيسية_الشاملة"
NAME_COLUMN = "اسم_المنتج"
PRICE_COLUMN = "السعر_الحالي"
LAST_UPDATE_COLUMN = "تاريخ_آخر_تحديث"
DATED_PRICE_COLUMN = "السعر_في_هذا_التاريخ"
UNPRICED_LABEL = "غير مسعر"
UNKNOWN_DATE_LABEL = "قديم"
DELETED_PRODUCT_LABEL = "منتج محذوف"

_UNSAFE_SHEET_CHARS = re.compile(r"[/\\?*\[\]]")

Sheets = Dict[str, List[Dict[str, object]]]


def _price_cell(price: Price):
    return price.amount if isinstance(price, Priced) else UNPRICED_LABEL


def safe_sheet_name(name: str) -> str:
    """Spreadsheet-safe sheet name: no /\\?*[] and at most 31 characters."""
    return _UNSAFE_SHEET_CHARS.sub("-", name)[:31]


def build_current_list(products: Iterable[Product]) -> Sheets:
    """Single sheet of current name/price pairs."""
    rows = [{NAME_COLUMN: p.name, PRICE_COLUMN: p.price} for p in products]
    return OrderedDict([(CURRENT_SHEET, rows)])


def build_history_workbook(products: Sequence[Product],
                           history: Optional[Iterable[PriceHistoryEntry]] = None) -> Sheets:
    """Main sheet with every product, then one sheet per recorded date, newest first."""
    sheets = OrderedDict()
    sheets[MAIN_SHEET] = [
        {
            NAME_COLUMN: p.name,
            PRICE_COLUMN: _price_cell(p.price_variant),
            LAST_UPDATE_COLUMN: p.last_updated.date().isoformat() if p.last_updated else UNKNOWN_DATE_LABEL,
        }
        for p in products
    ]

    entries = list(history or [])
    names = {p.id: p.name for p in products}
    for day in sorted({entry.recorded_date for entry in entries}, reverse=True):
        sheets[safe_sheet_name(day.isoformat())] = [
            {
                NAME_COLUMN: names.get(entry.product_id, DELETED_PRODUCT_LABEL),
                DATED_PRICE_COLUMN: entry.price,
            }
            for entry in entries
            if entry.recorded_date == day
        ]
    return sheets


def write_csv_bundle(sheets: Sheets, directory: str) -> List[str]:
    """Write each sheet to ``<directory>/<sheet>.csv`` and return the paths."""
    os.makedirs(directory, exist_ok=True)
    paths = []
    for sheet_name, rows in sheets.items():
        path = os.path.join(directory, f"{sheet_name}.csv")
        headers = list(rows[0].keys()) if rows else [NAME_COLUMN, PRICE_COLUMN]
        # utf-8-sig so spreadsheet apps detect the Arabic headers correctly
        with open(path, "w", encoding="utf-8-sig", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=headers)
            writer.writeheader()
            writer.writerows(rows)
        paths.append(path)
    return paths
