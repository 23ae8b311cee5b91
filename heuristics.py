import re
from typing import List, Pattern

from card_contract import CONFIDENCE_MAX, CONFIDENCE_MIN, DecisionCard, Verdict

# =========================
# Rules layer (category-level signals only, never named back to the user)
# =========================
ULTRA_PROCESSED = [
    re.compile(r"artificial\s+flavou?r"),
    re.compile(r"artificial\s+sweeten"),
    re.compile(r"flavou?r\s+enhancer"),
    re.compile(r"emulsifier"),
    re.compile(r"stabili[sz]er"),
    re.compile(r"thickener"),
    re.compile(r"preservative"),
    re.compile(r"colou?r"),
    re.compile(r"hydrogenated"),
]
SWEETNESS = [
    re.compile(r"sugar"),
    re.compile(r"syrup"),
    re.compile(r"glucose"),
    re.compile(r"fructose"),
    re.compile(r"maltodextrin"),
    re.compile(r"honey"),
]
SALT = [re.compile(r"salt"), re.compile(r"sodium")]
REFINED_FAT = [
    re.compile(r"palm\s+oil"),
    re.compile(r"vegetable\s+oil"),
    re.compile(r"shortening"),
]
ALLERGEN_MENTION = [
    re.compile(r"contains"),
    re.compile(r"allergen"),
    re.compile(r"may\s+contain"),
]
ALLERGEN_CATEGORIES = [
    re.compile(r"milk|dairy"),
    re.compile(r"soy"),
    re.compile(r"wheat|gluten"),
    re.compile(r"nuts?|peanut"),
    re.compile(r"egg"),
    re.compile(r"fish|shellfish"),
]

AVOID_SCORE = 7
OCCASIONAL_SCORE = 3

SCAN_CAVEAT = "Scan may be incomplete or misread."
ALLERGEN_NOTE = "Label appears to mention common allergen categories."
NO_TEXT = "No readable label text detected."


def normalize_text(t) -> str:
    if not isinstance(t, str):
        return ""
    return re.sub(r"\s+", " ", t).strip().lower()


def count_signals(text: str, patterns: List[Pattern[str]]) -> int:
    # every occurrence counts, so repeated mentions weigh more
    return sum(len(p.findall(text)) for p in patterns)


def has_any(text: str, patterns: List[Pattern[str]]) -> bool:
    return any(p.search(text) for p in patterns)


def clamp(n: int, lo: int = CONFIDENCE_MIN, hi: int = CONFIDENCE_MAX) -> int:
    return max(lo, min(hi, n))


def insufficient_data_card() -> DecisionCard:
    return DecisionCard(
        verdict=Verdict.OKAY_OCCASIONALLY,
        why_this_matters=(
            "I can't reliably screen what's in this without a readable scan.",
            "Treating it as occasional is the calm default when details are missing.",
        ),
        why_you_might_care=("Small differences matter most when you eat something often.",),
        confidence=55,
        uncertainty=NO_TEXT,
        better_choice_hint=("For everyday picks, choose simpler, less processed options.",),
        closure="This is fine to have once in a while.",
    )


def score_signals(text: str) -> int:
    return (
        2 * count_signals(text, ULTRA_PROCESSED)
        + 2 * count_signals(text, SWEETNESS)
        + count_signals(text, SALT)
        + count_signals(text, REFINED_FAT)
    )


def decide(scanned_text) -> DecisionCard:
    """Offline decision card from broad label signals. Pure and deterministic."""
    text = normalize_text(scanned_text)
    if not text:
        return insufficient_data_card()

    up_count = count_signals(text, ULTRA_PROCESSED)
    sweet_count = count_signals(text, SWEETNESS)
    salt_count = count_signals(text, SALT)
    score = score_signals(text)

    if score >= AVOID_SCORE:
        verdict, confidence = Verdict.BETTER_TO_AVOID, 74
    elif score >= OCCASIONAL_SCORE:
        verdict, confidence = Verdict.OKAY_OCCASIONALLY, 76
    else:
        verdict, confidence = Verdict.SAFE, 78

    why: List[str] = []
    if up_count >= 2:
        why.append("It reads like a more processed packaged item, which is usually best kept occasional.")
    if sweet_count >= 2:
        why.append("It likely leans sweeter than an everyday choice.")
    elif salt_count >= 2:
        why.append("It likely leans saltier than an everyday choice.")
    if not why:
        why.append("Nothing obvious in the scan suggests it's a frequent-limit kind of item.")

    if verdict is Verdict.SAFE:
        care = "If you're trying to keep everyday choices simple, this looks compatible."
    else:
        care = "If you're choosing something often, picking a less processed option usually feels better."

    # allergen wording changes the note only, never the verdict
    uncertainty = SCAN_CAVEAT
    if has_any(text, ALLERGEN_MENTION) and has_any(text, ALLERGEN_CATEGORIES):
        uncertainty = f"{SCAN_CAVEAT} {ALLERGEN_NOTE}"

    hint = ()
    if verdict is not Verdict.SAFE:
        hint = ("For regular use, pick options that are less sweet or salty and less processed.",)

    closure = {
        Verdict.SAFE: "Go ahead and enjoy it.",
        Verdict.OKAY_OCCASIONALLY: "You're okay enjoying this occasionally.",
        Verdict.BETTER_TO_AVOID: "You might want to skip this if you're choosing often.",
    }[verdict]

    return DecisionCard(
        verdict=verdict,
        why_this_matters=tuple(why[:2]),
        why_you_might_care=(care,),
        confidence=clamp(confidence),
        uncertainty=uncertainty,
        better_choice_hint=hint,
        closure=closure,
    )
