import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from card_contract import DecisionCard, check, format_card, parse
from errors import (
    CardRejected,
    InvalidFormat,
    ParseFailure,
    ProviderHttpError,
    RateLimited,
    SafePlateError,
    TranslationFailure,
)
from lang_detect import DEFAULT_LANGUAGE, language_name, normalize_language
from localize import ENGLISH_LABELS, LabelSet
from prompts import (
    REPAIR_SYSTEM_PROMPT,
    SIMPLIFY_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    build_label_translation_system_prompt,
    build_repair_prompt,
    build_simplify_prompt,
    build_translation_system_prompt,
    build_translation_user_prompt,
    build_user_prompt,
)
from providers import GenerationProvider, RawResult

logger = logging.getLogger(__name__)

MAX_UPSTREAM_CALLS = 3
COMPLEXITY_THRESHOLD = 3


# =========================
# Retry state machine
# =========================
class Step(str, Enum):
    PRIMARY = "primary"
    REPAIR = "repair"
    SIMPLIFY = "simplify"
    DONE = "done"
    FAILED = "failed"


class Outcome(Enum):
    INVALID = "invalid"
    VALID = "valid"
    VALID_COMPLEX = "valid_complex"


_TRANSITIONS: Dict[Tuple[Step, Outcome], Step] = {
    (Step.PRIMARY, Outcome.INVALID): Step.REPAIR,
    (Step.PRIMARY, Outcome.VALID): Step.DONE,
    (Step.PRIMARY, Outcome.VALID_COMPLEX): Step.SIMPLIFY,
    (Step.REPAIR, Outcome.INVALID): Step.FAILED,
    (Step.REPAIR, Outcome.VALID): Step.DONE,
    (Step.REPAIR, Outcome.VALID_COMPLEX): Step.SIMPLIFY,
    # a failed simplification keeps the earlier valid card
    (Step.SIMPLIFY, Outcome.INVALID): Step.DONE,
    (Step.SIMPLIFY, Outcome.VALID): Step.DONE,
    (Step.SIMPLIFY, Outcome.VALID_COMPLEX): Step.DONE,
}


def next_step(step: Step, outcome: Outcome) -> Step:
    if step in (Step.DONE, Step.FAILED):
        return step
    return _TRANSITIONS[(step, outcome)]


_BRACKETS = re.compile(r"[()\[\]{}]")
_WORD = re.compile(r"[^\W\d_]+")
_TECHNICAL_SUFFIX = re.compile(r"(?:ate|ite|ide|ose|ium)$")


def card_prose(card: DecisionCard) -> str:
    parts = [
        *card.why_this_matters,
        *card.why_you_might_care,
        card.uncertainty,
        *card.better_choice_hint,
        card.closure,
    ]
    return "\n".join(parts)


def complexity_score(text: str) -> int:
    """Rough 'sounds chemical' score for card text."""
    words = _WORD.findall(text or "")
    score = 2 if _BRACKETS.search(text or "") else 0
    score += min(6, sum(1 for w in words if len(w) >= 15))
    score += min(4, sum(1 for w in words if len(w) > 4 and _TECHNICAL_SUFFIX.search(w.lower())))
    return score


@dataclass
class GenerationAttempt:
    provider: str
    model: str
    role: Step
    raw_text: str
    valid: bool
    reason: str = ""
    complexity: int = 0


@dataclass
class GeneratedCard:
    card: DecisionCard
    text: str
    attempts: List[GenerationAttempt] = field(default_factory=list)
    rate_limited: Optional[RateLimited] = None


def extract_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    if not isinstance(text, str):
        return None
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx >= 0:
        try:
            obj, _ = decoder.raw_decode(text, idx)
        except ValueError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            return obj
        idx = text.find("{", idx + 1)
    return None


_DIGIT_OR_QUESTION = re.compile(r"[\d?？]")


def _clean_translated(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise TranslationFailure("Empty translated field")
    if _DIGIT_OR_QUESTION.search(value):
        raise TranslationFailure("Translated field has digits or question marks")
    return value.strip()


class DecisionProducer:
    """Drives the generative provider into a contract-valid decision card."""

    def __init__(self, provider: GenerationProvider):
        self.provider = provider

    def _prompts_for(self, step: Step, scanned_text: str, previous_raw: str, card_text: str) -> Tuple[str, str]:
        if step is Step.PRIMARY:
            return SYSTEM_PROMPT, build_user_prompt(scanned_text)
        if step is Step.REPAIR:
            return REPAIR_SYSTEM_PROMPT, build_repair_prompt(previous_raw)
        return SIMPLIFY_SYSTEM_PROMPT, build_simplify_prompt(card_text)

    def _evaluate(self, step: Step, result: RawResult) -> Tuple[GenerationAttempt, Optional[DecisionCard], Optional[CardRejected]]:
        attempt = GenerationAttempt(
            provider=result.provider,
            model=result.model,
            role=step,
            raw_text=result.text,
            valid=False,
        )
        try:
            normalized = check(result.text)
        except CardRejected as e:
            attempt.reason = e.reason
            return attempt, None, e

        card = parse(normalized)
        if card is None:
            # passed the gate but not the grammar: the gate is too lenient
            logger.error("%s output passed validation but failed to parse", step.value)
            error = ParseFailure("Parsing failed")
            attempt.reason = error.reason
            return attempt, None, error

        attempt.valid = True
        attempt.complexity = complexity_score(card_prose(card))
        return attempt, card, None

    async def generate(self, scanned_text: str) -> GeneratedCard:
        attempts: List[GenerationAttempt] = []
        best: Optional[DecisionCard] = None
        last_error: Optional[CardRejected] = None
        deferred: Optional[RateLimited] = None
        previous_raw = ""
        step = Step.PRIMARY
        calls = 0

        while step not in (Step.DONE, Step.FAILED) and calls < MAX_UPSTREAM_CALLS:
            system, user = self._prompts_for(
                step, scanned_text, previous_raw, format_card(best) if best else ""
            )
            try:
                # a model fallback re-sends, so it needs two calls of budget
                result = await self.provider.send(system, user, allow_fallback=calls + 2 <= MAX_UPSTREAM_CALLS)
            except SafePlateError as e:
                if step is not Step.SIMPLIFY or best is None:
                    raise
                logger.warning("Simplify call failed, keeping earlier card: %s", e.reason)
                if isinstance(e, RateLimited):
                    deferred = e
                break

            calls += result.upstream_calls
            attempt, card, error = self._evaluate(step, result)
            attempts.append(attempt)
            logger.info(
                "%s attempt via %s/%s: %s",
                step.value, attempt.provider, attempt.model,
                "valid" if attempt.valid else f"invalid ({attempt.reason})",
            )

            if card is None:
                outcome = Outcome.INVALID
                last_error = error
            elif step is Step.SIMPLIFY:
                if card.verdict == best.verdict and card.confidence == best.confidence:
                    best = card
                else:
                    logger.info("Simplified card changed verdict or confidence, keeping earlier card")
                outcome = Outcome.VALID
            else:
                best = card
                complex_ = attempt.complexity >= COMPLEXITY_THRESHOLD
                outcome = Outcome.VALID_COMPLEX if complex_ else Outcome.VALID

            previous_raw = result.text
            step = next_step(step, outcome)

        if best is None:
            raise last_error or InvalidFormat("Invalid decision card format")
        return GeneratedCard(card=best, text=format_card(best), attempts=attempts, rate_limited=deferred)

    # =========================
    # Translation pass
    # =========================
    async def _send_translation(self, system: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        user = build_translation_user_prompt(json.dumps(payload, ensure_ascii=False))
        try:
            result = await self.provider.send(system, user)
        except RateLimited:
            raise
        except ProviderHttpError as e:
            raise TranslationFailure(e.reason, status=e.status) from e
        except SafePlateError as e:
            raise TranslationFailure(e.reason) from e

        parsed = extract_first_json_object(result.text)
        if parsed is None:
            raise TranslationFailure("Invalid JSON from AI")
        return parsed

    async def translate_card(self, card: DecisionCard, language: str) -> DecisionCard:
        """Free-text fields only; verdict and confidence stay server-side."""
        lang = normalize_language(language)
        if lang == DEFAULT_LANGUAGE:
            return card

        payload = {
            "whyThisMatters": list(card.why_this_matters),
            "whyYouMightCare": list(card.why_you_might_care),
            "uncertainty": card.uncertainty,
            "betterChoiceHint": list(card.better_choice_hint),
            "closure": card.closure,
        }
        parsed = await self._send_translation(build_translation_system_prompt(language_name(lang)), payload)

        if "confidence" in parsed and parsed["confidence"] != card.confidence:
            raise TranslationFailure("Confidence changed in translation")

        out: Dict[str, Any] = {}
        for key, original in payload.items():
            if key not in parsed:
                raise TranslationFailure(f"Missing key {key}")
            value = parsed[key]
            if isinstance(original, list):
                if not isinstance(value, list) or len(value) != len(original):
                    raise TranslationFailure(f"Array length changed for {key}")
                out[key] = tuple(_clean_translated(v) for v in value)
            else:
                out[key] = _clean_translated(value)

        try:
            return DecisionCard(verdict=card.verdict, confidence=card.confidence, **out)
        except ValidationError as e:
            raise TranslationFailure("Translated card failed validation") from e

    async def translate_labels(self, language: str) -> LabelSet:
        lang = normalize_language(language)
        if lang == DEFAULT_LANGUAGE:
            return ENGLISH_LABELS

        english = ENGLISH_LABELS.model_dump(by_alias=True)
        parsed = await self._send_translation(build_label_translation_system_prompt(language_name(lang)), english)

        out: Dict[str, str] = {}
        for key, source in english.items():
            value = _clean_translated(parsed.get(key))
            value = value.rstrip(":：").strip() if key == "title" else value
            if source.endswith(":") and not value.endswith((":", "：")):
                value += ":"
            out[key] = value
        return LabelSet(**out)
