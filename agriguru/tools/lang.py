import logging
from typing import Optional, Tuple

from openai import OpenAIError

from agriguru.config import settings

log = logging.getLogger("agriguru.lang")

# --- Script ranges we care about (Unicode blocks) ---
# One script maps to one primary language.
SCRIPT_LANG_MAP = {
    "devanagari": ("hi", "ऀ", "ॿ"),   # Hindi (Marathi is also Devanagari; treated as 'hi')
    "gurmukhi":   ("pa", "਀", "੿"),
    "gujarati":   ("gu", "઀", "૿"),
    "bengali":    ("bn", "ঀ", "৿"),
    "oriya":      ("or", "଀", "୿"),
    "tamil":      ("ta", "஀", "௿"),
    "telugu":     ("te", "ఀ", "౿"),
    "kannada":    ("kn", "ಀ", "೿"),
    "malayalam":  ("ml", "ഀ", "ൿ"),
    "arabic":     ("ur", "؀", "ۿ"),
}

HINGLISH_HINT_WORDS = {
    "kya", "kaise", "hai", "nahi", "nhi", "haan", "bhav", "bhaav", "daam", "mandi",
    "kitna", "kitne", "aaj", "kal", "mein", "ka", "ki", "ke", "fasal", "kisan",
}

LANG_NAMES = {
    "en": ("English", None),
    "hi": ("Hindi", "Devanagari"),
    "hi-Latn": ("Hindi (romanized)", "Latin"),
    "pa": ("Punjabi", "Gurmukhi"),
    "gu": ("Gujarati", "Gujarati"),
    "bn": ("Bengali", "Bengali"),
    "or": ("Odia", "Odia"),
    "ta": ("Tamil", "Tamil"),
    "te": ("Telugu", "Telugu"),
    "kn": ("Kannada", "Kannada"),
    "ml": ("Malayalam", "Malayalam"),
    "ur": ("Urdu", "Arabic"),
    "mr": ("Marathi", "Devanagari"),
}


def _dominant_script(text: str) -> Optional[str]:
    counts = {}
    for name, (_code, start, end) in SCRIPT_LANG_MAP.items():
        lo, hi = ord(start), ord(end)
        counts[name] = sum(1 for ch in text if lo <= ord(ch) <= hi)
    latin_count = sum(1 for ch in text if ("A" <= ch <= "Z") or ("a" <= ch <= "z"))
    best_script = max(counts, key=lambda k: counts[k]) if counts else None
    if best_script and counts[best_script] >= max(3, int(0.2 * len(text))):
        return best_script
    if latin_count >= max(3, int(0.2 * len(text))):
        return "latin"
    return None


def detect_lang(text: str) -> str:
    """
    Returns 'en', 'hi', 'te', ... or 'hi-Latn' for Hinglish.
    Script heuristic only; no network call.
    """
    if not text or text.strip() == "":
        return "en"
    script = _dominant_script(text)
    if script and script != "latin":
        return SCRIPT_LANG_MAP[script][0]
    tokens = {t.strip(".,!?;:()[]{}'\"").lower() for t in text.split()}
    if len(tokens & HINGLISH_HINT_WORDS) >= 2:
        return "hi-Latn"
    return "en"


def lang_name(code: str) -> Tuple[str, Optional[str]]:
    """Return (language name, script hint) for prompts."""
    return LANG_NAMES.get(code, ("English", None))


def translate(client, text: str, tgt_code: str, src_code: str = "en",
              model: Optional[str] = None) -> str:
    """
    Translate with the chat model; returns the input unchanged when there is
    no client, nothing to do, or the call fails.
    """
    if client is None or not text or tgt_code == src_code or tgt_code == "en" and src_code == "en":
        return text

    src_name, _ = lang_name(src_code)
    tgt_name, tgt_script = lang_name(tgt_code)
    script_note = f" Use the {tgt_script} script." if tgt_script else ""
    system = (
        "You are a precise translator for Indian agricultural market messages. "
        "Return ONLY the translated text, no quotes or explanations. "
        "Preserve numbers, units, dates, market and crop names."
    )
    user = f"Translate from {src_name} to {tgt_name}.{script_note}\n\nTEXT:\n{text}"
    try:
        resp = client.chat.completions.create(
            model=model or settings.OPENAI_MODEL,
            temperature=0.0,
            messages=[{"role": "system", "content": system},
                      {"role": "user", "content": user}],
        )
    except OpenAIError as e:
        log.warning("⚠️  translation to %s failed, keeping English: %s", tgt_code, e)
        return text
    out = (resp.choices[0].message.content or "").strip()
    return out or text
