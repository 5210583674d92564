import json
import re
import time
import unicodedata
from typing import Any, Dict, Optional


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable matching in catalog lookups.
    Inputs/Outputs: Input is a raw string; output is a lowercase ASCII-only string with
        diacritics removed and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by slugify and catalog search.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Vietnamese keywords and category names stop matching their records.
    Testing Notes: Validate "Điện thoại" normalizes to "dien thoai".
    """
    # Normalize to lowercase and strip diacritics for consistent matching.
    if not text:
        return ""
    lowered = str(text).lower()
    lowered = lowered.replace("đ", "d")
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s\-_/.]+", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def slugify(text: str) -> str:
    """Purpose: Turn a category or product name into a URL slug.
    Inputs/Outputs: Input is a display name; output is a hyphenated lowercase slug.
    Side Effects / State: None; pure function.
    Dependencies: Calls normalize_text.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Category lookups by display name cannot find slug-keyed records.
    Testing Notes: "Áo Sơ Mi" -> "ao-so-mi".
    """
    # Collapse normalized words into a hyphen-joined slug.
    return re.sub(r"[\s_/.]+", "-", normalize_text(text)).strip("-")


def format_vnd(amount: Any) -> str:
    """Format a number as Vietnamese currency, e.g. 1200000 -> "1.200.000đ"."""
    try:
        value = round(float(amount or 0))
    except (TypeError, ValueError):
        value = 0
    return f"{value:,}".replace(",", ".") + "đ"


def time_ago(timestamp: Optional[float], now: Optional[float] = None) -> str:
    """Purpose: Render an epoch timestamp as a relative Vietnamese phrase.
    Inputs/Outputs: Inputs are epoch seconds and optional "now"; output like "5 phút trước".
    Side Effects / State: Reads the clock when now is omitted.
    Dependencies: time.time.
    Failure Modes: Missing timestamp renders as "vừa xong".
    If Removed: Social-proof handlers lose their relative purchase times.
    Testing Notes: Check boundaries at 60s, 60m, and 24h.
    """
    # Walk up the unit ladder until the value fits.
    if not timestamp:
        return "vừa xong"
    seconds = int((now if now is not None else time.time()) - float(timestamp))
    if seconds < 60:
        return f"{max(seconds, 0)} giây trước"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} phút trước"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} giờ trước"
    return f"{hours // 24} ngày trước"


def camel_to_snake(name: str) -> str:
    """Convert a catalog parameter name ("productId") to a keyword name ("product_id")."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def to_jsonable(value: Any) -> Any:
    """Purpose: Round-trip a value through JSON so it can be persisted or sent to the model.
    Inputs/Outputs: Input is any value; output is a JSON-compatible copy.
    Side Effects / State: None.
    Dependencies: json.dumps with default=str.
    Failure Modes: Unknown objects are stringified rather than raising.
    If Removed: Handler results with timestamps or sets break session persistence.
    Testing Notes: Ensure nested dicts survive and sets become strings.
    """
    # Serialize with a string fallback for non-JSON types.
    return json.loads(json.dumps(value, ensure_ascii=False, default=str))


def effective_price(product: Dict[str, Any]) -> float:
    """Selling price of a product: the sale price when one is set, else the list price."""
    return float(product.get("sale_price") or product.get("price") or 0)
