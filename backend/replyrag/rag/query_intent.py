from __future__ import annotations

import re
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from ..schemas.rag import QueryIntent

KNOWN_BRANDS: List[str] = [
    # Notebooks
    "ASUS", "Acer", "HP", "Lenovo", "Dell", "MSI", "Apple", "MacBook",
    "GIGABYTE", "Razer", "Alienware", "Huawei", "LG", "Samsung",
    "Microsoft", "Surface", "Xiaomi", "Avita",
    # CPU
    "Intel", "AMD", "Ryzen", "Core i3", "Core i5", "Core i7", "Core i9",
    # GPU
    "NVIDIA", "GeForce", "RTX", "GTX", "AMD Radeon", "Radeon",
    # Components
    "Corsair", "Kingston", "G.Skill", "Crucial", "Western Digital", "WD",
    "Seagate", "SanDisk", "Thermaltake", "Cooler Master", "NZXT",
    "Fractal Design", "be quiet!", "Seasonic", "EVGA", "Antec",
    "Silverstone", "Deepcool", "Arctic", "Noctua",
    # Peripherals
    "Logitech", "SteelSeries", "HyperX", "Asus ROG", "Redragon", "Keychron",
]

# Checked in order; the first usage whose keywords appear wins.
USAGE_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("Gaming", ["เกม", "gaming", "fps", "valorant", "elden", "gta"]),
    ("Office & Study", ["เอกสาร", "เรียน", "เรียนออนไลน์", "office", "excel", "word"]),
    (
        "Video Editing & Graphic Design",
        ["ตัดต่อ", "premiere", "photoshop", "resolve", "กราฟิก", "graphic"],
    ),
    ("Entertainment & Casual", ["ดูหนัง", "netflix", "youtube", "บันเทิง", "casual"]),
    ("Programming & Dev Work", ["เขียนโค้ด", "program", "developer", "docker", "vm", "virtual"]),
    ("AI & Data Science", ["ai", "machine learning", "data", "pytorch", "tensorflow"]),
    ("Business & Portability", ["พกพา", "ธุรกิจ", "business", "บางเบา", "เดินทาง"]),
]

USAGE_TAGS: Dict[str, List[str]] = {
    "Gaming": ["gaming", "rtx", "gtx", "144hz", "performance"],
    "Office & Study": ["office", "study", "student", "ultrabook", "lightweight"],
    "Video Editing & Graphic Design": ["creator", "oled", "srgb", "gpu", "pro"],
    "Entertainment & Casual": ["entertainment", "netflix", "youtube", "casual"],
    "Programming & Dev Work": ["developer", "dev", "programming", "docker", "vm"],
    "AI & Data Science": ["ai", "ml", "tensor", "cuda", "rtx"],
    "Business & Portability": ["business", "thin", "light", "battery"],
}

COMPONENT_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("Notebook", ["notebook", "laptop", "โน้ตบุ๊ก", "โน๊ตบุ๊ค", "โน้ตบุ๊ค", "แล็ปท็อป"]),
    ("CPU", ["cpu", "processor", "ซีพียู"]),
    ("GPU", ["gpu", "การ์ดจอ", "graphics card", "vga"]),
    ("RAM", ["ram", "แรม", "ddr4", "ddr5"]),
    ("SSD", ["ssd", "nvme", "m.2"]),
    ("HDD", ["hdd", "hard disk", "harddisk", "ฮาร์ดดิสก์"]),
    ("Mainboard", ["mainboard", "motherboard", "เมนบอร์ด"]),
    ("PSU", ["psu", "power supply", "พาวเวอร์ซัพพลาย"]),
    ("Case", ["case", "เคสคอม"]),
    ("Cooling", ["cooler", "cooling", "ชุดน้ำ", "พัดลม"]),
    ("Monitor", ["monitor", "จอมอนิเตอร์", "มอนิเตอร์"]),
    ("Keyboard", ["keyboard", "คีย์บอร์ด"]),
    ("Mouse", ["mouse", "เมาส์"]),
    ("Headset", ["headset", "headphone", "หูฟัง"]),
]

_NUM = r"(\d+(?:\.\d+)?)"

# Priority order; the first pattern that matches decides the price.
_PRICE_PATTERNS: List[Tuple[Pattern[str], int]] = [
    (re.compile(_NUM + r"\s*[kK](?![a-zA-Z])"), 1000),
    (re.compile(_NUM + r"\s*(?:บาท|baht|thb)", re.IGNORECASE), 1),
    (re.compile(r"(?:งบ|budget)\s*:?\s*" + _NUM, re.IGNORECASE), 1),
    (re.compile(r"(?:ราคา|price)\s*:?\s*" + _NUM, re.IGNORECASE), 1),
    (re.compile(r"(?:ไม่เกิน|under|below|not over|max)\s*:?\s*" + _NUM, re.IGNORECASE), 1),
    (re.compile(r"(?:ประมาณ|around|about|approx(?:imately)?)\s*:?\s*" + _NUM, re.IGNORECASE), 1),
    (re.compile(r"\$\s*" + _NUM), 1),
]

_RANGE_RE = re.compile(
    r"(?<![A-Za-z0-9.])" + _NUM + r"\s*([kK])?\s*(?:-|ถึง|to)\s*" + _NUM + r"\s*([kK])?(?![A-Za-z0-9])"
)

PRICE_RANGE_TOLERANCE = 0.2


def _strip_thousands(text: str) -> str:
    return re.sub(r"(?<=\d),(?=\d)", "", text)


def extract_price(text: str) -> Optional[float]:
    """
    Parse a single budget figure, e.g. "40K" -> 40000, "งบ 25,000" -> 25000.
    """
    if not text:
        return None

    clean = _strip_thousands(text)
    for pattern, multiplier in _PRICE_PATTERNS:
        match = pattern.search(clean)
        if match:
            return float(match.group(1)) * multiplier
    return None


def get_price_range(price: float, tolerance: float = PRICE_RANGE_TOLERANCE) -> Tuple[float, float]:
    return (price * (1 - tolerance), price * (1 + tolerance))


def extract_price_range(text: str, price: Optional[float] = None) -> Optional[Tuple[float, float]]:
    """An explicit "a-b" range wins; otherwise the parsed price ±20%."""
    clean = _strip_thousands(text)
    match = _RANGE_RE.search(clean)
    if match:
        low = float(match.group(1)) * (1000 if match.group(2) else 1)
        high = float(match.group(3)) * (1000 if match.group(4) else 1)
        if low > 0 and high > 0:
            return (min(low, high), max(low, high))

    if price is None:
        price = extract_price(text)
    if price is None or price <= 0:
        return None
    return get_price_range(price)


def _is_ascii(word: str) -> bool:
    return all(ord(ch) < 128 for ch in word)


def _mentions(text_lower: str, word: str) -> bool:
    """
    Latin keywords must appear as a whole token; Thai has no word spacing so
    Thai keywords match as substrings.
    """
    needle = word.lower()
    if not _is_ascii(needle):
        return needle in text_lower
    return re.search(r"(?<![a-z0-9])" + re.escape(needle) + r"(?![a-z0-9])", text_lower) is not None


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for v in values:
        key = v.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(v)
    return out


def detect_brands(text: str) -> List[str]:
    lowered = text.lower()
    return _dedupe([b for b in KNOWN_BRANDS if _mentions(lowered, b)])


def detect_usage_category(text: str) -> Optional[str]:
    lowered = text.lower()
    for usage, words in USAGE_KEYWORDS:
        if any(_mentions(lowered, w) for w in words):
            return usage
    return None


def detect_component_categories(text: str) -> List[str]:
    lowered = text.lower()
    return [
        component
        for component, words in COMPONENT_KEYWORDS
        if any(_mentions(lowered, w) for w in words)
    ]


def extract_query_intent(query: str) -> QueryIntent:
    if not query:
        return QueryIntent()

    price = extract_price(query)
    usage = detect_usage_category(query)
    return QueryIntent(
        brands=detect_brands(query),
        price=price,
        price_range=extract_price_range(query, price=price),
        usage_category=usage,
        component_categories=detect_component_categories(query),
        tags=list(USAGE_TAGS.get(usage, [])) if usage else [],
    )
