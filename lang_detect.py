import re
from typing import List, Pattern, Tuple

DEFAULT_LANGUAGE = "en"

# Scheduled Indian languages + English fallback.
SUPPORTED_LANGUAGES: Tuple[str, ...] = (
    "en", "as", "bn", "brx", "doi", "gu", "hi", "kn", "ks", "kok", "mai", "ml",
    "mni-Mtei", "mr", "ne", "or", "pa", "sa", "sat", "sd", "ta", "te", "ur",
)

LANGUAGE_NAMES = {
    "as": "Assamese",
    "bn": "Bengali",
    "brx": "Bodo",
    "doi": "Dogri",
    "gu": "Gujarati",
    "hi": "Hindi",
    "kn": "Kannada",
    "ks": "Kashmiri",
    "kok": "Konkani",
    "mai": "Maithili",
    "ml": "Malayalam",
    "mni-Mtei": "Meitei (Manipuri)",
    "mr": "Marathi",
    "ne": "Nepali",
    "or": "Odia",
    "pa": "Punjabi",
    "sa": "Sanskrit",
    "sat": "Santali",
    "sd": "Sindhi",
    "ta": "Tamil",
    "te": "Telugu",
    "ur": "Urdu",
    "en": "English",
}

# Order matters on ties: the first script listed wins.
SCRIPT_RANGES: List[Tuple[str, Pattern[str]]] = [
    ("hi", re.compile(r"[\u0900-\u097F]")),                           # Devanagari
    ("bn", re.compile(r"[\u0980-\u09FF]")),                           # Bengali-Assamese
    ("pa", re.compile(r"[\u0A00-\u0A7F]")),                           # Gurmukhi
    ("gu", re.compile(r"[\u0A80-\u0AFF]")),                           # Gujarati
    ("or", re.compile(r"[\u0B00-\u0B7F]")),                           # Odia
    ("ta", re.compile(r"[\u0B80-\u0BFF]")),                           # Tamil
    ("te", re.compile(r"[\u0C00-\u0C7F]")),                           # Telugu
    ("kn", re.compile(r"[\u0C80-\u0CFF]")),                           # Kannada
    ("ml", re.compile(r"[\u0D00-\u0D7F]")),                           # Malayalam
    ("ur", re.compile(r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF]")), # Arabic scripts
    ("mni-Mtei", re.compile(r"[\uABC0-\uABFF]")),                     # Meitei Mayek
    ("sat", re.compile(r"[\u1C50-\u1C7F]")),                          # Ol Chiki
]

MIN_SCRIPT_CHARS = 6


def resolve(text) -> str:
    """Pick a language from the dominant writing system of scanned text."""
    if not isinstance(text, str) or not text.strip():
        return DEFAULT_LANGUAGE

    best_code, best_count = DEFAULT_LANGUAGE, 0
    for code, rx in SCRIPT_RANGES:
        count = len(rx.findall(text))
        if count > best_count:
            best_code, best_count = code, count

    # a handful of stray glyphs is usually OCR noise
    if best_count >= MIN_SCRIPT_CHARS:
        return best_code
    return DEFAULT_LANGUAGE


def normalize_language(lang) -> str:
    if not isinstance(lang, str):
        return DEFAULT_LANGUAGE
    t = lang.strip()
    if not t:
        return DEFAULT_LANGUAGE
    for code in SUPPORTED_LANGUAGES:
        if code.lower() == t.lower():
            return code
    base = re.split(r"[-_]", t)[0].lower()
    return base if base in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, "the selected language")
