"""
Decision card contract: the structured card, its canonical text rendering,
the parser for that rendering, and the content gate for generator output.

The text layout is a wire contract shared with the UI:

    --------------------------------------------------
    DECISION CARD

    Verdict: Okay Occasionally

    Why this matters:
    • ...

    Why you might care:
    • ...

    Confidence:
    76%

    Uncertainty:
    • ...

    Better choice hint (optional, non-pushy):
    • ...

    Closure:
    • ...
    --------------------------------------------------
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from errors import ContentPolicyViolation, InvalidFormat

DELIMITER = "-" * 50
BULLET = "• "
CONFIDENCE_MIN = 50
CONFIDENCE_MAX = 90

ENGLISH_HEADINGS: Dict[str, str] = {
    "title": "DECISION CARD",
    "verdict": "Verdict:",
    "why_this_matters": "Why this matters:",
    "why_you_might_care": "Why you might care:",
    "confidence": "Confidence:",
    "uncertainty": "Uncertainty:",
    "better_choice_hint": "Better choice hint (optional, non-pushy):",
    "closure": "Closure:",
}


class Verdict(str, Enum):
    SAFE = "Safe"
    OKAY_OCCASIONALLY = "Okay Occasionally"
    BETTER_TO_AVOID = "Better to Avoid"

    @classmethod
    def from_token(cls, token: str) -> Optional["Verdict"]:
        key = re.sub(r"[\s_\-.]+", "", token or "").lower()
        for v in cls:
            if v.value.replace(" ", "").lower() == key:
                return v
        return None


# =========================
# Structured card
# =========================
_BANNED_IN_TEXT = re.compile(r"[\d?？]")
_LEADING_BULLET = re.compile(r"^(?:[-*·]\s+|•\s*)+")


def _clean_line(value: str) -> str:
    s = re.sub(r"\s+", " ", value or "").strip()
    s = _LEADING_BULLET.sub("", s).strip()
    if not s:
        raise ValueError("empty text")
    if _BANNED_IN_TEXT.search(s):
        raise ValueError("digits and question marks are not allowed")
    return s


class DecisionCard(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    verdict: Verdict
    why_this_matters: Tuple[str, ...] = Field(min_length=1, max_length=2)
    why_you_might_care: Tuple[str, ...] = Field(min_length=1, max_length=1)
    confidence: int = Field(ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)
    uncertainty: str
    better_choice_hint: Tuple[str, ...] = Field(default=(), max_length=1)
    closure: str

    @field_validator("why_this_matters", "why_you_might_care", "better_choice_hint")
    @classmethod
    def _clean_items(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(_clean_line(item) for item in v)

    @field_validator("uncertainty", "closure")
    @classmethod
    def _clean_text(cls, v: str) -> str:
        return _clean_line(v)

    def to_payload(self) -> Dict:
        return self.model_dump(by_alias=True, mode="json")


# =========================
# Rendering
# =========================
def render_card(card: DecisionCard, headings: Mapping[str, str], verdict_text: str) -> str:
    lines: List[str] = [DELIMITER, headings["title"], ""]
    lines.append(f"{headings['verdict']} {verdict_text}")
    lines.append("")
    lines.append(headings["why_this_matters"])
    lines.extend(BULLET + r for r in card.why_this_matters[:2])
    lines.append("")
    lines.append(headings["why_you_might_care"])
    lines.extend(BULLET + r for r in card.why_you_might_care[:1])
    lines.append("")
    lines.append(headings["confidence"])
    lines.append(f"{card.confidence}%")
    lines.append("")
    lines.append(headings["uncertainty"])
    lines.append(BULLET + card.uncertainty)
    if card.better_choice_hint:
        lines.append("")
        lines.append(headings["better_choice_hint"])
        lines.append(BULLET + card.better_choice_hint[0])
    lines.append("")
    lines.append(headings["closure"])
    lines.append(BULLET + card.closure)
    lines.append(DELIMITER)
    return "\n".join(lines)


def format_card(card: DecisionCard) -> str:
    return render_card(card, ENGLISH_HEADINGS, card.verdict.value)


# =========================
# Grammar + tokenizer
# =========================
@dataclass(frozen=True)
class Section:
    key: str
    pattern: Pattern[str]
    rule: str  # title | inline | items | confidence | text
    required: bool = True
    max_items: int = 1


SECTIONS: Tuple[Section, ...] = (
    Section("title", re.compile(r"^decision\s+card\s*:?\s*$", re.I), "title"),
    Section("verdict", re.compile(r"^verdict\s*:\s*(.*)$", re.I), "inline"),
    Section("why_this_matters", re.compile(r"^why\s+this\s+matters\s*:\s*(.*)$", re.I), "items", max_items=2),
    Section("why_you_might_care", re.compile(r"^why\s+you\s+might\s+care\s*:\s*(.*)$", re.I), "items"),
    Section("confidence", re.compile(r"^confidence\s*:\s*(.*)$", re.I), "confidence"),
    Section("uncertainty", re.compile(r"^uncertainty\s*:\s*(.*)$", re.I), "text"),
    Section("better_choice_hint", re.compile(r"^better\s+choice\s+hint\b[^:]*:\s*(.*)$", re.I), "items", required=False),
    Section("closure", re.compile(r"^closure\s*:\s*(.*)$", re.I), "text"),
)
_ORDER = {s.key: i for i, s in enumerate(SECTIONS)}

_DELIM_LINE = re.compile(r"^[-—─=_]{3,}$")
_BULLET_LINE = re.compile(r"^(?:[-*·]\s+|•\s*)(.*)$")
_CONFIDENCE_VALUE = re.compile(r"^(\d{2,3})\s*%?$")


@dataclass(frozen=True)
class Token:
    kind: str  # delim | heading | bullet | text | blank
    line: str
    key: Optional[str] = None
    value: str = ""


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    for raw in (text or "").split("\n"):
        line = raw.strip()
        if not line:
            tokens.append(Token("blank", line))
            continue
        if _DELIM_LINE.match(line):
            tokens.append(Token("delim", line))
            continue
        heading = None
        for section in SECTIONS:
            m = section.pattern.match(line)
            if m:
                value = m.group(1).strip() if m.groups() else ""
                heading = Token("heading", line, section.key, value)
                break
        if heading is not None:
            tokens.append(heading)
            continue
        m = _BULLET_LINE.match(line)
        if m:
            tokens.append(Token("bullet", line, value=m.group(1).strip()))
        else:
            tokens.append(Token("text", line, value=line))
    return tokens


def _group_sections(tokens: List[Token]) -> Optional[Dict[str, List[Token]]]:
    body = [t for t in tokens if t.kind != "blank"]
    if body and body[0].kind == "delim":
        body = body[1:]
    if body and body[-1].kind == "delim":
        body = body[:-1]

    grouped: Dict[str, List[Token]] = {}
    current: Optional[str] = None
    position = 0
    for tok in body:
        if tok.kind == "delim":
            return None
        if tok.kind == "heading":
            at = _ORDER[tok.key]
            if at < position:
                return None
            if any(s.required for s in SECTIONS[position:at]):
                return None
            current = tok.key
            grouped[current] = [tok] if tok.value else []
            position = at + 1
            continue
        if current is None:
            return None
        grouped[current].append(tok)

    if any(s.required for s in SECTIONS[position:]):
        return None
    return grouped


def _items(tokens: List[Token]) -> List[str]:
    items: List[str] = []
    for tok in tokens:
        if tok.kind == "bullet" or not items:
            items.append(tok.value)
        else:
            # wrapped continuation of the previous bullet
            items[-1] = f"{items[-1]} {tok.value}"
    return [i for i in (x.strip() for x in items) if i]


def parse(text: str) -> Optional[DecisionCard]:
    """Read canonical card text back into a DecisionCard, or None."""
    if not isinstance(text, str) or not text.strip():
        return None
    grouped = _group_sections(tokenize(text))
    if grouped is None:
        return None

    fields: Dict[str, object] = {}
    for section in SECTIONS:
        tokens = grouped.get(section.key)
        if tokens is None:
            continue
        if section.rule == "title":
            if tokens:
                return None
        elif section.rule == "inline":
            values = _items(tokens)
            if len(values) != 1:
                return None
            verdict = Verdict.from_token(values[0])
            if verdict is None:
                return None
            fields["verdict"] = verdict
        elif section.rule == "confidence":
            values = _items(tokens)
            if len(values) != 1:
                return None
            m = _CONFIDENCE_VALUE.match(values[0])
            if not m:
                return None
            confidence = int(m.group(1))
            if not CONFIDENCE_MIN <= confidence <= CONFIDENCE_MAX:
                return None
            fields["confidence"] = confidence
        elif section.rule == "items":
            values = _items(tokens)
            if len(values) > section.max_items:
                return None
            if section.required and not values:
                return None
            fields[section.key] = tuple(values)
        else:
            values = _items(tokens)
            if not values:
                return None
            fields[section.key] = " ".join(values)

    try:
        return DecisionCard(**fields)
    except ValidationError:
        return None


# =========================
# Normalization + content gate
# =========================
_CODE_FENCE = re.compile(r"^```")
_INGREDIENTS_HEADER = re.compile(r"\bingredients?\s*:", re.I)
_ADDITIVE_CODE = re.compile(r"\b(?:E|INS)\s?-?\d{3,4}[a-z]?\b", re.I)
_UNIT_TOKEN = re.compile(
    r"\b(?:mg|mcg|µg|kcal|kj|ml|g|gms?|grams?|milligrams?|micrograms?|kilocalories|"
    r"kgs?|kilos?|kilograms?|l|litres?|liters?|millilitres?|milliliters?|"
    r"oz|ounces?|lbs?|pounds?|cals?|calories|"
    r"cups?|tbsp|tsp|tablespoons?|teaspoons?)\b",
    re.I,
)
_DIGIT = re.compile(r"\d")


def normalize(raw: str) -> str:
    """Fold common generator deviations into the canonical layout."""
    text = (raw or "").replace("\r\n", "\n").replace("\r", "\n")
    lines: List[str] = []
    for line in text.split("\n"):
        s = line.strip()
        if _CODE_FENCE.match(s):
            continue
        s = s.replace("**", "")
        s = re.sub(r"^#+\s*", "", s)
        if _DELIM_LINE.match(s):
            s = DELIMITER
        else:
            m = _BULLET_LINE.match(s)
            if m:
                s = BULLET + m.group(1).strip()
        lines.append(s)

    block: Optional[List[str]] = None
    marks = [i for i, line in enumerate(lines) if line == DELIMITER]
    for j in range(len(marks) - 1, 0, -1):
        start, end = marks[j - 1], marks[j]
        if any(lines[start + 1:end]):
            block = lines[start:end + 1]
            break

    if block is None:
        titles = [i for i, line in enumerate(lines) if SECTIONS[0].pattern.match(line)]
        if titles:
            body = [line for line in lines[titles[-1]:] if line != DELIMITER]
            block = [DELIMITER] + body + [DELIMITER]
        else:
            block = lines

    out: List[str] = []
    for line in block:
        if not line and (not out or not out[-1]):
            continue
        out.append(line)
    return "\n".join(out).strip()


def _content_outside_confidence(tokens: List[Token]) -> str:
    kept: List[str] = []
    skip_next_value = False
    for tok in tokens:
        if tok.kind == "heading" and tok.key == "confidence":
            skip_next_value = not tok.value
            continue
        if skip_next_value and tok.kind in ("text", "bullet"):
            skip_next_value = False
            continue
        kept.append(tok.line)
    return "\n".join(kept)


def check(raw: str) -> str:
    """
    Gate raw generator output. Returns the normalized card text, or raises
    InvalidFormat (wrong shape) / ContentPolicyViolation (unsafe content).
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidFormat("Empty generator output")

    text = normalize(raw)
    lines = text.split("\n")
    if len(lines) < 3 or lines[0] != DELIMITER or lines[-1] != DELIMITER:
        raise InvalidFormat("Decision card delimiters missing")

    tokens = tokenize(text)
    keys = [t.key for t in tokens if t.kind == "heading"]
    for section in SECTIONS:
        if section.required and section.key not in keys:
            raise InvalidFormat(f"Missing section: {ENGLISH_HEADINGS[section.key]}")
    if len(set(keys)) != len(keys):
        raise InvalidFormat("Duplicated section")
    if keys != sorted(keys, key=_ORDER.get):
        raise InvalidFormat("Sections out of order")

    content = _content_outside_confidence(tokens)
    if _INGREDIENTS_HEADER.search(content):
        raise ContentPolicyViolation("Ingredient list echoed")
    if _ADDITIVE_CODE.search(content):
        raise ContentPolicyViolation("Additive code present")
    if "%" in content:
        raise ContentPolicyViolation("Percentage outside confidence")
    if _DIGIT.search(content) or _UNIT_TOKEN.search(content):
        raise ContentPolicyViolation("Numbers or units outside confidence")
    if "?" in content or "？" in content:
        raise ContentPolicyViolation("Question mark present")
    return text


def validate(raw: str) -> bool:
    try:
        check(raw)
    except (InvalidFormat, ContentPolicyViolation):
        return False
    return True
