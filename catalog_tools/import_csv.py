"""CSV import pipeline: reads the phone catalogue template, outputs JSON.

Template columns:
    id, brand, model, price, image, ram, storage, os, display, processor,
    camera, battery, description, highlights, gallery, variants, colors,
    bank_offers, is_active

List cells are comma-separated. Variant, colour and bank-offer entries
split their parts on ``/``:
    variants     8GB/128GB/79900, 12GB/256GB/89900
    colors       Black/#000000, Blue/#1E3A5F
    bank_offers  HDFC/₹5000 off/On credit cards

Usage:
    python -m catalog_tools.import_csv phones.csv --output catalog_tools/sample_data/phones.json
"""

from __future__ import annotations

import argparse
import csv
import io
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from touchtrial.models import BankOffer, Phone, PhoneColor, PhoneVariant

TEMPLATE_COLUMNS = [
    "id", "brand", "model", "price", "image", "ram", "storage", "os", "display",
    "processor", "camera", "battery", "description", "highlights", "gallery",
    "variants", "colors", "bank_offers", "is_active",
]

REQUIRED_COLUMNS = ("id", "brand", "model", "price")


@dataclass
class ImportResult:
    phones: list[Phone] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)   # One reason per rejected row


def _blank(raw: str | None) -> bool:
    return raw is None or raw.strip().lower() in ("", "nan", "none")


def parse_list(raw: str | None) -> list[str]:
    if _blank(raw):
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parts(entry: str, count: int) -> list[str]:
    parts = [p.strip() for p in entry.split("/")]
    return parts + [""] * (count - len(parts))


def int_from_str(raw: str | None) -> int | None:
    """Parse prices that may carry a ₹ sign, commas or a float suffix."""
    if _blank(raw):
        return None
    cleaned = raw.replace("₹", "").replace(",", "").strip()
    try:
        return int(float(cleaned))
    except ValueError:
        return None


def parse_variants(raw: str | None) -> list[PhoneVariant]:
    variants = []
    for entry in parse_list(raw):
        ram, storage, price = _parts(entry, 3)
        variants.append(PhoneVariant(ram=ram, storage=storage, price=int_from_str(price) or 0))
    return variants


def parse_colors(raw: str | None) -> list[PhoneColor]:
    colors = []
    for entry in parse_list(raw):
        name, hex_code = _parts(entry, 2)
        colors.append(PhoneColor(name=name, hex=hex_code or "#000000"))
    return colors


def parse_bank_offers(raw: str | None) -> list[BankOffer]:
    offers = []
    for entry in parse_list(raw):
        bank, discount, description = _parts(entry, 3)
        offers.append(BankOffer(bank=bank, discount=discount, description=description))
    return offers


def parse_bool(raw: str | None) -> bool:
    """Only an explicit true value activates a phone."""
    return (raw or "").strip().lower() in ("true", "yes", "1")


def row_to_phone(row: dict, row_idx: int) -> tuple[Phone | None, str | None]:
    """Convert a CSV row to a Phone.

    Returns ``(phone, None)`` or ``(None, reason)`` when the row can't be used.
    """
    def get(column: str) -> str:
        return (row.get(column) or "").strip()

    missing = [c for c in REQUIRED_COLUMNS if not get(c)]
    if missing:
        return None, f"Row {row_idx + 2}: missing {', '.join(missing)}"

    price = int_from_str(get("price"))
    if not price:
        return None, f"Row {row_idx + 2}: invalid price {get('price')!r}"

    os_name = get("os") or "Android"
    if os_name.lower() == "ios":
        os_name = "iOS"
    elif os_name.lower() == "android":
        os_name = "Android"

    try:
        phone = Phone(
            id=get("id"),
            brand=get("brand"),
            model=get("model"),
            price=price,
            image=get("image"),
            ram=get("ram"),
            storage=get("storage"),
            os=os_name,
            display=get("display"),
            processor=get("processor"),
            camera=get("camera"),
            battery=get("battery"),
            description=get("description"),
            highlights=parse_list(get("highlights")),
            gallery=parse_list(get("gallery")),
            variants=parse_variants(get("variants")),
            colors=parse_colors(get("colors")),
            bank_offers=parse_bank_offers(get("bank_offers")),
            is_active=parse_bool(get("is_active")),
        )
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        return None, f"Row {row_idx + 2}: {where}: {first['msg']}"
    return phone, None


def import_rows(rows: Iterable[dict]) -> ImportResult:
    result = ImportResult()
    seen: set[str] = set()
    for idx, row in enumerate(rows):
        phone, reason = row_to_phone(row, idx)
        if phone is None:
            result.skipped.append(reason or f"Row {idx + 2}: invalid")
            continue
        if phone.id in seen:
            result.skipped.append(f"Row {idx + 2}: duplicate id {phone.id}")
            continue
        seen.add(phone.id)
        result.phones.append(phone)
    return result


def _detect_delimiter(header: str) -> str:
    """Detect CSV delimiter by inspecting the header line."""
    for delim in [";", "\t", "|"]:
        if header.count(delim) > header.count(","):
            return delim
    return ","


def parse_csv_text(text: str) -> ImportResult:
    """Parse CSV content already in memory (e.g. an uploaded file)."""
    text = text.lstrip("\ufeff")
    header = text.split("\n", 1)[0]
    reader = csv.DictReader(io.StringIO(text), delimiter=_detect_delimiter(header))
    if reader.fieldnames is None:
        return ImportResult()
    reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
    return import_rows(reader)


def import_csv(csv_path: str | Path) -> ImportResult:
    """Import phones from a CSV file on disk."""
    with open(csv_path, newline="", encoding="utf-8", errors="replace") as f:
        return parse_csv_text(f.read())


def template_csv() -> str:
    """Header plus one example row, for staff to fill in."""
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(TEMPLATE_COLUMNS)
    writer.writerow([
        "iphone-15", "Apple", "iPhone 15", "79900",
        "https://example.com/iphone-15.jpg", "6GB", "128GB", "iOS",
        "6.1-inch Super Retina XDR", "A16 Bionic", "48MP Main + 12MP Ultra Wide",
        "3349 mAh", "Dynamic Island and USB-C.", "Dynamic Island, USB-C, 48MP camera",
        "", "6GB/128GB/79900, 6GB/256GB/89900", "Black/#1F2020, Blue/#D4E4F7",
        "HDFC/₹5000 off/On credit cards", "true",
    ])
    return out.getvalue()


def main():
    parser = argparse.ArgumentParser(
        description="Import catalogue phones from CSV to JSON",
        prog="python -m catalog_tools.import_csv",
    )
    parser.add_argument("csv_path", nargs="?", help="Path to the input CSV file")
    parser.add_argument("--output", "-o", help="Output JSON path (default: stdout)")
    parser.add_argument("--template", action="store_true", help="Print a blank template CSV and exit")

    args = parser.parse_args()

    if args.template:
        sys.stdout.write(template_csv())
        return
    if not args.csv_path:
        parser.error("csv_path is required unless --template is given")

    result = import_csv(args.csv_path)
    for reason in result.skipped:
        print(f"Skipped: {reason}", file=sys.stderr)

    data = [p.to_row() for p in result.phones]

    if args.output:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        print(f"Exported {len(data)} phones to {args.output}", file=sys.stderr)
    else:
        json.dump(data, sys.stdout, indent=2, ensure_ascii=False)
        print(f"\n# {len(data)} phones", file=sys.stderr)


if __name__ == "__main__":
    main()
