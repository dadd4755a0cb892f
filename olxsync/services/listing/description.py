"""
Listing description composition.

A template's ``description_filter`` is an ordered allow-list of field keys.
Each key maps to the labels that field goes by in product descriptions
(Bosnian/Croatian spellings, with and without diacritics).
"""
from __future__ import annotations

import re

FIELD_LABELS: dict[str, tuple[str, ...]] = {
    "namjena": ("Namjena",),
    "sirina": ("Širina", "Sirina"),
    "profil": ("Profil",),
    "promjer": ("Promjer", "Prečnik"),
    "sezona": ("Sezona",),
    "klasa": ("Klasa",),
    "brend": ("Brend", "Brand"),
    "profil_gume": ("Profil gume",),
    "index_nosivosti": ("Index nosivosti", "Indeks nosivosti"),
    "indeks_brzine": ("Indeks brzine",),
    "indeks_potrosnje": ("Indeks potrošnje", "Indeks potrosnje"),
    "indeks_prianjanja": ("Indeks prianjanja",),
    "klasa_buke": ("Klasa razine buke", "Klasa buke"),
    "razine_buke": ("Razine buke",),
    "klasa_guma": ("Klasa guma",),
    "prianjanje_snijeg": ("Prianjanje na snijegu", "Prianjanje na sneg"),
    "prianjanje_led": ("Prianjanje na ledu",),
    "tip_konstrukcija": ("Tip (konstrukcija)", "Tip"),
    "zracnica": ("Zračnica", "Zracnica"),
    "zastitni_naplatak": ("Zaštitni naplatak", "Zastitni naplatak"),
    "tip_zastitnog_naplatka": ("Tip zaštitnog naplatka", "Tip zastitnog naplatka"),
    "primjena_osovina": ("Primjena na osovinu",),
    "stari_dot": ("Stari DOT",),
    "oznaka_ms": ("Oznaka M+S", "M+S"),
    "vrsta_gume": ("Vrsta gume",),
    "sifra_proizvodaca": ("Šifra proizvođača", "Sifra proizvodaca"),
    "ean": ("EAN", "EAN bar-kod"),
    "velicina": ("Veličina", "Velicina"),
    "tezina": ("Težina", "Tezina"),
    "sku": ("SKU",),
    "brand": ("Brand", "Brend"),
}

_BRAND_LINE = re.compile(r"Brand:|Brend:", re.IGNORECASE)


def field_labels(field: str) -> tuple[str, ...]:
    """Known labels for ``field``; unknown keys fall back to their title-cased form."""
    return FIELD_LABELS.get(field) or (field.replace("_", " ").title(),)


def filter_description(product, description_filter: list[str]) -> str:
    if not product.description:
        return product.title or ""

    lines = []
    for raw_line in product.description.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        lowered = line.lower()
        if any(label.lower() in lowered for field in description_filter for label in field_labels(field)):
            lines.append(line)

    if "sku" in description_filter and product.sku:
        if not any("SKU:" in line for line in lines):
            lines.append(f"SKU: {product.sku}")
    if "brand" in description_filter and product.brand:
        if not any(_BRAND_LINE.search(line) for line in lines):
            lines.append(f"Brand: {product.brand}")

    return "\n".join(lines) or (product.title or "")


def compose_description(product, template=None) -> str:
    """
    Filtered description when the template has a filter; otherwise the
    full description plus SKU/Brand/Stock lines; the title as last resort.
    """
    description_filter = list(getattr(template, "description_filter", None) or [])
    if description_filter:
        return filter_description(product, description_filter)

    parts = []
    if product.description:
        parts.append(product.description)
    if product.sku:
        parts.append(f"\nSKU: {product.sku}")
    if product.brand:
        parts.append(f"\nBrand: {product.brand}")
    if product.stock and int(product.stock) > 0:
        parts.append(f"\nStock: {product.stock}")
    description = "\n".join(parts).strip()
    return description or (product.title or "")


def auto_populate(product, template=None) -> bool:
    """Fill blank marketplace title/description from product fields. Returns True if changed."""
    changed = False
    if not (product.olx_title or "").strip() and product.title:
        product.olx_title = product.generate_olx_title()
        changed = True
    if not (product.olx_description or "").strip():
        description = product.generate_olx_description(template)
        if description:
            product.olx_description = description
            changed = True
    return changed
