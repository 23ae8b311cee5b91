import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import heuristics
from ai_decision import DecisionProducer, GeneratedCard
from card_contract import DecisionCard
from errors import RateLimited, SafePlateError, TranslationFailure
from lang_detect import DEFAULT_LANGUAGE, normalize_language, resolve
from localize import LabelCache, LabelSet, LocalizedCard, format_localized, localize
from rate_limit import Cooldown
from settings import Settings

logger = logging.getLogger(__name__)

AUTO_LANGUAGE = "auto"


@dataclass(frozen=True)
class DecisionResult:
    localized: LocalizedCard
    text: str
    source: str
    resolved_language: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "decisionCard": self.localized.to_payload(),
            "decisionCardText": self.text,
            "source": self.source,
            "resolvedLanguage": self.resolved_language,
        }


class DecisionOrchestrator:
    """
    Per-request policy: generative vs heuristic engine, rate-limit cooldown,
    translation and localization of the final card.
    """

    def __init__(
        self,
        settings: Settings,
        producer: Optional[DecisionProducer],
        cooldown: Cooldown,
        label_cache: LabelCache,
    ):
        self.settings = settings
        self.producer = producer
        self.cooldown = cooldown
        self.label_cache = label_cache

    @property
    def ai_enabled(self) -> bool:
        return self.settings.use_ai and self.producer is not None

    @staticmethod
    def resolve_language(scanned_text: str, language: Optional[str]) -> str:
        if not language or str(language).strip().lower() == AUTO_LANGUAGE:
            return resolve(scanned_text)
        return normalize_language(language)

    def _start_cooldown(self, error: RateLimited) -> RateLimited:
        seconds = error.retry_after_seconds or self.settings.ai_default_retry_after
        error.retry_after_seconds = seconds
        self.cooldown.start(seconds)
        return error

    def _cooldown_error(self) -> RateLimited:
        return RateLimited(
            "Rate limit cooldown",
            retry_after_seconds=max(1, self.cooldown.remaining_seconds()),
        )

    async def generate(self, scanned_text: str) -> GeneratedCard:
        """One generative run with cooldown bookkeeping. Every failure raises."""
        if self.producer is None:
            raise SafePlateError("AI disabled", status=503)
        if self.cooldown.active():
            raise self._cooldown_error()
        try:
            generated = await self.producer.generate(scanned_text)
        except RateLimited as e:
            self._start_cooldown(e)
            raise
        except SafePlateError:
            raise
        except Exception as e:
            logger.exception("AI decision failed unexpectedly")
            raise SafePlateError("AI request failed", status=503) from e
        if generated.rate_limited is not None:
            self._start_cooldown(generated.rate_limited)
        return generated

    async def _decide_card(self, scanned_text: str) -> Tuple[DecisionCard, str]:
        if self.ai_enabled:
            try:
                generated = await self.generate(scanned_text)
            except SafePlateError as e:
                if self.settings.ai_only:
                    raise
                logger.warning("AI decision unavailable (%s), using heuristic", e.reason)
            else:
                return generated.card, "ai"

        return heuristics.decide(scanned_text), "heuristic"

    async def _translate(self, card: DecisionCard, language: str) -> DecisionCard:
        if self.cooldown.active():
            return card
        try:
            return await self.producer.translate_card(card, language)
        except RateLimited as e:
            self._start_cooldown(e)
            logger.warning("Translation rate limited, keeping English card")
        except TranslationFailure as e:
            logger.warning("Translation to %s failed (%s), keeping English card", language, e.reason)
        return card

    async def _labels(self, language: str) -> Optional[LabelSet]:
        labels = self.label_cache.labels_for(language)
        if labels is not None or not self.ai_enabled or self.cooldown.active():
            return labels
        try:
            labels = await self.producer.translate_labels(language)
        except RateLimited as e:
            self._start_cooldown(e)
            return None
        except TranslationFailure as e:
            logger.warning("Label translation to %s failed (%s)", language, e.reason)
            return None
        self.label_cache.put(language, labels)
        return labels

    async def decide(self, scanned_text: str, language: Optional[str] = AUTO_LANGUAGE) -> DecisionResult:
        lang = self.resolve_language(scanned_text, language)
        logger.info("Decision requested (chars=%d, language=%s)", len(scanned_text or ""), lang)

        card, source = await self._decide_card(scanned_text)
        if source == "ai" and lang != DEFAULT_LANGUAGE:
            card = await self._translate(card, lang)

        labels = None
        if lang != DEFAULT_LANGUAGE:
            labels = await self._labels(lang)

        localized = localize(card, lang, labels)
        return DecisionResult(
            localized=localized,
            text=format_localized(localized),
            source=source,
            resolved_language=lang,
        )

    def debug_info(self) -> Dict[str, Any]:
        provider = self.producer.provider if self.producer else None
        return {
            "useAI": self.settings.use_ai,
            "aiOnly": self.settings.ai_only,
            "provider": self.settings.ai_provider,
            "providerStatus": provider.describe() if provider else None,
            "cooldownSeconds": self.cooldown.remaining_seconds(),
            "cachedLabelLanguages": self.label_cache.languages(),
        }
