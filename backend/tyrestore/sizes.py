"""Tyre size normalization.

Sizes arrive in many spellings ("215/60 R16", "215/60r16", "215 /60R16 94H").
Catalog rows keep the admin's spelling in ``size`` and a compacted copy in
``size_key``; every lookup compares compacted strings.
"""
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

_SIZE_RE = re.compile(r"(\d{3})[/\-](\d{2,3})Z?R(\d{2})")


def compact_size(s: Optional[str]) -> str:
    """Drop whitespace and punctuation (except '/') and upper-case."""
    return re.sub(r"[^0-9A-Z/]", "", re.sub(r"\s+", "", s or "").upper())


def size_parts(s: Optional[str]) -> Optional[Tuple[str, str, str]]:
    # compact_size would drop the dash in "215-60R16"
    m = _SIZE_RE.search(re.sub(r"\s+", "", s or "").upper())
    if not m:
        return None
    return m.group(1), m.group(2), m.group(3)


def canonical_size(s: Optional[str]) -> Optional[str]:
    """Return the size as WWW/AARDD (e.g. 205/60R16), or None when unparseable."""
    parts = size_parts(s)
    if not parts:
        return None
    return f"{parts[0]}/{parts[1]}R{parts[2]}"


def rim_of(s: Optional[str]) -> int:
    m = re.search(r"R(\d+)", compact_size(s))
    return int(m.group(1)) if m else 0


def extract_sizes(text: Optional[str]) -> List[str]:
    """All size-looking tokens in free text, canonical and de-duplicated in order."""
    out: List[str] = []
    for m in re.finditer(r"\d{3}\s*[/\-]\s*\d{2,3}\s*Z?R\s*\d{2}", (text or "").upper()):
        size = canonical_size(m.group(0))
        if size and size not in out:
            out.append(size)
    return out


def unique_sizes(values: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for v in values:
        if not v:
            continue
        size = canonical_size(str(v))
        if size and size not in out:
            out.append(size)
    return out


def _dedupe_key(row: Dict[str, Any]) -> str:
    sku = row.get("sku")
    if sku:
        return str(sku)
    return "|".join(str(row.get(k) or "").lower() for k in ("brand", "title", "size"))


def dedupe_tyres(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    out: List[Dict[str, Any]] = []
    for row in rows:
        key = _dedupe_key(row)
        if key in seen:
            continue
        seen.add(key)
        out.append(row)
    return out


def width_of(s: Optional[str]) -> Optional[str]:
    head = compact_size(s).split("/")[0]
    return head or None


def aspect_of(s: Optional[str]) -> Optional[str]:
    bits = compact_size(s).split("/")
    if len(bits) < 2:
        return None
    aspect = re.sub(r"Z?R.*", "", bits[1])
    return aspect or None


def numeric_sorted(values: Iterable[str]) -> List[str]:
    def _key(v: str):
        try:
            return (0, float(v))
        except ValueError:
            return (1, v)
    return sorted(set(v for v in values if v), key=_key)
