from types import MappingProxyType
from typing import Mapping, Optional

from rapidfuzz.distance import Levenshtein

FALLBACK_CATEGORY = "Miscellaneous"

CATEGORIES: tuple[str, ...] = (
    "Car",
    "Cellular & Wifi",
    "Dining",
    "Entertainment",
    "Fitness & Sports",
    "Fuel",
    "Gifts & Donation",
    "Groceries",
    "Health & Wellness",
    "Household",
    "Housing",
    "Learning & Development",
    "Miscellaneous",
    "Parents",
    "Parking (Public)",
    "Self Care",
    "Shopping",
    "Subscriptions",
    "Transportation",
    "Travel",
    "Utilities",
)

# Order matters for local matching: more specific tables come first so that
# "uber eats" lands in Dining before "uber" lands in Transportation.
CATEGORY_KEYWORDS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "Dining": ("restaurant", "cafe", "coffee", "starbucks", "tim hortons", "mcdonald", "fast food", "takeout", "uber eats", "doordash"),
        "Car": ("car wash", "car repair", "auto repair", "mechanic", "tire", "oil change", "honda", "toyota", "ford", "dealership"),
        "Fuel": ("esso", "shell", "petro-canada", "gas station", "fuel", "gasoline", "petroleum"),
        "Parking (Public)": ("parking", "green p", "impark", "indigo", "parkway"),
        "Transportation": ("uber", "lyft", "ttc", "transit", "presto", "go train", "via rail", "taxi", "cab"),
        "Cellular & Wifi": ("rogers", "bell", "telus", "fido", "koodo", "freedom mobile", "virgin mobile", "chatr", "internet", "wifi"),
        "Gifts & Donation": ("gift", "birthday", "wedding", "charity", "donation", "present", "flowers"),
        "Subscriptions": ("netflix", "spotify", "amazon prime", "disney", "apple", "subscription", "membership", "youtube", "hulu"),
        "Health & Wellness": ("pharmacy", "doctor", "dentist", "shoppers drug mart", "rexall", "medical", "clinic", "hospital", "prescription"),
        "Parents": ("senior", "eldercare", "parent", "mom", "dad", "family support"),
        "Learning & Development": ("course", "class", "udemy", "coursera", "book", "education", "tuition", "school", "training"),
        "Fitness & Sports": ("gym", "fitness", "yoga", "pilates", "goodlife", "equinox", "sports", "workout", "athletic"),
        "Travel": ("flight", "hotel", "airbnb", "vacation", "expedia", "booking", "airline", "resort", "travel"),
        "Groceries": ("loblaws", "sobeys", "metro", "no frills", "walmart", "costco", "freshco", "supermarket", "grocery", "food basics"),
        "Household": ("cleaning", "toiletries", "home depot", "ikea", "canadian tire", "rona", "home hardware"),
        "Housing": ("rent", "mortgage", "condo fee", "property tax", "home insurance"),
        "Utilities": ("hydro", "electricity", "water", "enbridge", "gas bill", "utility"),
        "Entertainment": ("movies", "cinema", "concert", "theatre", "bar", "pub", "nightclub", "event", "ticket"),
        "Self Care": ("salon", "spa", "hair", "nails", "beauty", "skincare", "massage", "wellness"),
        "Shopping": ("amazon", "ebay", "walmart", "target", "best buy", "clothing", "shoes", "mall", "retail", "store", "shop", "fashion", "outlet"),
        "Miscellaneous": ("other", "misc", "unknown"),
    }
)

_BY_LOWER = MappingProxyType({name.lower(): name for name in CATEGORIES})


def is_category(value: str) -> bool:
    return value in CATEGORIES


def match_category_name(value: str) -> Optional[str]:
    """Map a loosely spelled category name onto the fixed list.

    Case-insensitive exact matches win; otherwise a single category within
    one edit is accepted.
    """
    needle = (value or "").strip().lower()
    if not needle:
        return None
    exact = _BY_LOWER.get(needle)
    if exact:
        return exact

    best_distance: Optional[int] = None
    best: list[str] = []
    for lower, name in _BY_LOWER.items():
        dist = int(Levenshtein.distance(needle, lower))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [name]
        elif dist == best_distance:
            best.append(name)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]
    return None


def categorize_vendor(vendor: str) -> str:
    haystack = (vendor or "").lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in haystack for keyword in keywords):
            return category
    return FALLBACK_CATEGORY


def resolve_category(value: Optional[str], vendor: str) -> str:
    return match_category_name(value or "") or categorize_vendor(vendor)
