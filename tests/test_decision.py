import json

import httpx
import pytest

from ai_decision import DecisionProducer
from decision import DecisionOrchestrator
from errors import InvalidFormat, RateLimited, SafePlateError
from fakes import SIMPLE_CARD, ScriptedProvider
from localize import LabelCache
from providers import build_provider
from rate_limit import Cooldown
from settings import Settings

HINDI_SCAN = "चीनी, नमक, पाम तेल, मैदा"


def make_orchestrator(clock, replies=None, **settings):
    producer = DecisionProducer(ScriptedProvider(replies)) if replies is not None else None
    return DecisionOrchestrator(
        Settings(use_ai=producer is not None, **settings),
        producer,
        Cooldown(clock=clock),
        LabelCache(),
    )


def calls(orchestrator):
    return orchestrator.producer.provider.calls


def translation_reply(reasons, care, uncertainty, hint, closure):
    return json.dumps(
        {
            "whyThisMatters": reasons,
            "whyYouMightCare": [care],
            "uncertainty": uncertainty,
            "betterChoiceHint": [hint],
            "closure": closure,
        },
        ensure_ascii=False,
    )


HINDI_REPLY = translation_reply(
    ["यह रोज़ के लिए थोड़ा मीठा है।", "यह पैक किया हुआ नाश्ता लगता है।"],
    "छोटी आदतें समय के साथ जुड़ती हैं।",
    "स्कैन अधूरा हो सकता है।",
    "रोज़ के लिए सरल नाश्ता चुनें।",
    "कभी-कभी इसका आनंद लें।",
)

TAMIL_REPLY = translation_reply(
    ["இது சற்று இனிப்பானது.", "இது பொதி செய்த சிற்றுண்டி போல் தெரிகிறது."],
    "சிறிய பழக்கங்கள் காலப்போக்கில் சேரும்.",
    "ஸ்கேன் முழுமையாக இல்லாமல் இருக்கலாம்.",
    "தினசரி எளிய சிற்றுண்டிகளைத் தேர்வு செய்யுங்கள்.",
    "எப்போதாவது அனுபவியுங்கள்.",
)

TAMIL_LABELS = json.dumps(
    {
        "title": "முடிவு அட்டை",
        "verdict": "தீர்ப்பு:",
        "whyThisMatters": "இது ஏன் முக்கியம்:",
        "whyYouMightCare": "நீங்கள் ஏன் கவலைப்படலாம்:",
        "confidence": "நம்பிக்கை:",
        "uncertainty": "நிச்சயமின்மை:",
        "betterChoiceHint": "சிறந்த தேர்வு குறிப்பு:",
        "closure": "நிறைவு:",
    },
    ensure_ascii=False,
)


@pytest.mark.asyncio
async def test_heuristic_when_ai_disabled(clock):
    orchestrator = make_orchestrator(clock)
    result = await orchestrator.decide("Ingredients: sugar, salt, palm oil", "en")
    payload = result.to_payload()
    assert payload["source"] == "heuristic"
    assert payload["resolvedLanguage"] == "en"
    assert payload["decisionCardText"].startswith("-" * 50)
    assert set(payload["decisionCard"]) >= {"verdict", "verdictKey", "confidence", "labels", "language"}


@pytest.mark.asyncio
async def test_ai_card_is_used(clock):
    orchestrator = make_orchestrator(clock, [SIMPLE_CARD])
    result = await orchestrator.decide("sugar, salt", "en")
    assert result.source == "ai"
    assert result.text == SIMPLE_CARD
    assert len(calls(orchestrator)) == 1


@pytest.mark.asyncio
async def test_invalid_ai_output_falls_back_to_heuristic(clock):
    orchestrator = make_orchestrator(clock, ["nonsense", "still nonsense"])
    result = await orchestrator.decide("sugar", "en")
    assert result.source == "heuristic"
    assert len(calls(orchestrator)) == 2


@pytest.mark.asyncio
async def test_ai_only_surfaces_failure(clock):
    orchestrator = make_orchestrator(clock, ["nonsense", "still nonsense"], ai_only=True)
    with pytest.raises(InvalidFormat):
        await orchestrator.decide("sugar", "en")


@pytest.mark.asyncio
async def test_rate_limit_starts_cooldown_and_short_circuits(clock):
    orchestrator = make_orchestrator(
        clock, [RateLimited("Rate limited", retry_after_seconds=12), SIMPLE_CARD], ai_only=True
    )
    with pytest.raises(RateLimited) as first:
        await orchestrator.decide("sugar", "en")
    assert first.value.retry_after_seconds == 12
    assert orchestrator.cooldown.remaining_seconds() == 12

    clock.advance(5)
    with pytest.raises(RateLimited) as second:
        await orchestrator.decide("sugar", "en")
    assert second.value.retry_after_seconds == 7
    assert len(calls(orchestrator)) == 1

    clock.advance(7)
    result = await orchestrator.decide("sugar", "en")
    assert result.source == "ai"
    assert len(calls(orchestrator)) == 2


@pytest.mark.asyncio
async def test_rate_limit_without_hint_uses_default_window(clock):
    orchestrator = make_orchestrator(clock, [RateLimited("Rate limited")], ai_only=True)
    with pytest.raises(RateLimited) as err:
        await orchestrator.decide("sugar", "en")
    assert err.value.retry_after_seconds == 30
    assert orchestrator.cooldown.remaining_seconds() == 30


@pytest.mark.asyncio
async def test_cooldown_uses_heuristic_when_not_ai_only(clock):
    orchestrator = make_orchestrator(clock, [RateLimited("Rate limited", retry_after_seconds=12)])
    first = await orchestrator.decide("sugar", "en")
    second = await orchestrator.decide("sugar", "en")
    assert first.source == second.source == "heuristic"
    assert len(calls(orchestrator)) == 1


@pytest.mark.asyncio
async def test_auto_language_from_script(clock):
    orchestrator = make_orchestrator(clock)
    result = await orchestrator.decide(HINDI_SCAN)
    assert result.resolved_language == "hi"
    assert "निर्णय कार्ड" in result.text
    assert result.localized.verdict in {"ठीक है", "कभी-कभी ठीक", "बेहतर है बचें"}


@pytest.mark.asyncio
async def test_ai_card_translated_with_static_labels(clock):
    orchestrator = make_orchestrator(clock, [SIMPLE_CARD, HINDI_REPLY])
    result = await orchestrator.decide("sugar", "hi")
    assert len(calls(orchestrator)) == 2
    assert result.localized.card.closure == "कभी-कभी इसका आनंद लें।"
    assert result.localized.card.confidence == 72
    assert "• कभी-कभी इसका आनंद लें।" in result.text
    assert "निर्णय: कभी-कभी ठीक" in result.text


@pytest.mark.asyncio
async def test_translation_failure_keeps_english_text(clock):
    orchestrator = make_orchestrator(clock, [SIMPLE_CARD, "not json"])
    result = await orchestrator.decide("sugar", "hi")
    assert result.source == "ai"
    assert result.localized.card.closure == "Enjoy it once in a while."
    assert result.localized.labels.closure == "समापन:"


@pytest.mark.asyncio
async def test_translated_labels_are_cached(clock):
    orchestrator = make_orchestrator(clock, [SIMPLE_CARD, TAMIL_REPLY, TAMIL_LABELS, SIMPLE_CARD, TAMIL_REPLY])
    first = await orchestrator.decide("sugar", "ta")
    assert len(calls(orchestrator)) == 3
    assert first.localized.labels.closure == "நிறைவு:"
    assert "ta" in orchestrator.label_cache

    second = await orchestrator.decide("sugar", "ta")
    assert len(calls(orchestrator)) == 5
    assert second.localized.labels == first.localized.labels
    # no verdict table for Tamil, so the English verdict token stays
    assert "தீர்ப்பு: Okay Occasionally" in second.text


@pytest.mark.asyncio
async def test_provider_429_flows_into_cooldown(clock):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limit reached. Please retry in 12s."}})

    settings = Settings(use_ai=True, ai_only=True, openai_api_key="sk-test", openai_base_url="https://llm.test")
    provider = build_provider(settings, transport=httpx.MockTransport(handler))
    orchestrator = DecisionOrchestrator(settings, DecisionProducer(provider), Cooldown(clock=clock), LabelCache())

    with pytest.raises(RateLimited) as err:
        await orchestrator.decide("sugar", "en")
    assert err.value.retry_after_seconds == 12
    assert orchestrator.cooldown.active()


def test_debug_info(clock):
    orchestrator = make_orchestrator(clock, [])
    info = orchestrator.debug_info()
    assert info["useAI"] is True
    assert info["providerStatus"]["model"] == "test-model"
    assert info["cooldownSeconds"] == 0
    assert info["cachedLabelLanguages"] == []


@pytest.mark.asyncio
async def test_unexpected_error_becomes_ai_failure(clock):
    orchestrator = make_orchestrator(clock, [RuntimeError("socket closed")], ai_only=True)
    with pytest.raises(SafePlateError) as err:
        await orchestrator.decide("sugar", "en")
    assert err.value.reason == "AI request failed"
    assert err.value.status == 503

    orchestrator = make_orchestrator(clock, [RuntimeError("socket closed")])
    assert (await orchestrator.decide("sugar", "en")).source == "heuristic"
