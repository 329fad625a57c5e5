"""
Commodity synonyms and district renames.

Farmers ask for "makka" or "dhan"; Agmarknet lists "Maize" and "Paddy(Dhan)".
Newer AP/Telangana districts are still reported under their pre-split parent.
"""
from typing import Iterable, List, Optional

# canonical -> aliases (order matters: tried left to right)
CROP_ALIASES: dict[str, list[str]] = {
    # Cereals
    "maize": ["corn", "makka", "bhutta"],
    "paddy": ["rice", "dhan", "chawal"],
    "wheat": ["gehun", "gehu"],
    "bajra": ["pearl millet", "bajri"],
    "jowar": ["sorghum", "cholam"],
    "ragi": ["finger millet", "nachni"],

    # Pulses
    "bengal gram": ["chana", "chickpea", "gram"],
    "masoor": ["lentil", "red lentil"],
    "green gram": ["moong", "mung bean"],
    "black gram": ["urad", "black lentil"],
    "arhar": ["tur", "pigeon pea", "toor", "tuar"],

    # Vegetables
    "tomato": ["tamatar"],
    "potato": ["aloo", "batata"],
    "onion": ["pyaz", "kanda"],
    "brinjal": ["eggplant", "baingan", "aubergine"],
    "capsicum": ["bell pepper", "shimla mirch"],
    "cauliflower": ["gobi", "phool gobi"],
    "cabbage": ["patta gobi", "band gobi"],
    "bhindi": ["okra", "lady finger", "lady's finger"],

    # Fruits
    "banana": ["kela"],
    "mango": ["aam"],
    "apple": ["seb"],
    "pomegranate": ["anar", "anaar"],
    "grapes": ["angoor"],

    # Spices
    "turmeric": ["haldi"],
    "coriander": ["dhania"],
    "dry chillies": ["chilli", "chili", "mirch", "red chilli"],
    "ginger": ["adrak"],
    "garlic": ["lahsun"],

    # Oil seeds
    "groundnut": ["peanut", "moongphali"],
    "mustard": ["sarson", "rai"],
    "sunflower": ["surajmukhi"],
    "sesamum": ["sesame", "til", "gingelly"],

    # Cash crops
    "cotton": ["kapas"],
    "sugarcane": ["ganna"],
    "jute": ["pat"],
}

_ALIAS_TO_CANONICAL: dict[str, str] = {
    alias: canonical
    for canonical, aliases in CROP_ALIASES.items()
    for alias in aliases
}

# new district -> parent district it was carved out of
DISTRICT_VARIATIONS: dict[str, str] = {
    # Andhra Pradesh, 2022 reorganisation
    "dr. b.r. ambedkar konaseema": "East Godavari",
    "konaseema": "East Godavari",
    "kakinada": "East Godavari",
    "eluru": "West Godavari",
    "palnadu": "Guntur",
    "bapatla": "Guntur",
    "anakapalli": "Visakhapatnam",
    "nandyal": "Kurnool",
    "sri sathya sai": "Anantapur",
    "annamayya": "Kadapa",
    # Telangana, 2016 reorganisation
    "mulugu": "Warangal",
    "narayanpet": "Mahabubnagar",
    "vikarabad": "Ranga Reddy",
    "siddipet": "Medak",
    "jagtial": "Karimnagar",
}


def canonical_crop(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    key = name.strip().lower()
    return key if key in CROP_ALIASES else _ALIAS_TO_CANONICAL.get(key, key)


def get_crop_aliases(name: Optional[str], extra: Iterable[str] = ()) -> List[str]:
    """
    All names worth searching for `name`, canonical first, no duplicates.
    `extra` carries aliases from the commodity catalog and goes last.
    """
    if not name or not name.strip():
        return []
    raw = name.strip().lower()
    canonical = canonical_crop(raw)
    ordered = [raw, canonical, *CROP_ALIASES.get(canonical, []), *(e.strip().lower() for e in extra)]
    seen: set[str] = set()
    out: List[str] = []
    for n in ordered:
        if n and n not in seen:
            seen.add(n)
            out.append(n)
    return out


def are_crop_aliases(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return canonical_crop(a) == canonical_crop(b)


def district_variants(district: Optional[str]) -> List[str]:
    """The district itself, the parent it was split from, and any children it spawned."""
    if not district:
        return []
    key = district.strip().lower()
    out = [district.strip()]
    parent = DISTRICT_VARIATIONS.get(key)
    if parent:
        out.append(parent)
    out.extend(child.title() for child, p in DISTRICT_VARIATIONS.items() if p.lower() == key)
    seen: set[str] = set()
    return [d for d in out if not (d.lower() in seen or seen.add(d.lower()))]


def same_district(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return b.strip().lower() in {v.lower() for v in district_variants(a)}
