import pytest
from pydantic import ValidationError

from card_contract import (
    DELIMITER,
    DecisionCard,
    Verdict,
    check,
    format_card,
    normalize,
    parse,
    validate,
)
from errors import ContentPolicyViolation, InvalidFormat
from fakes import SIMPLE_CARD, card_text


def test_format_card_layout(sample_card):
    text = format_card(sample_card)
    lines = text.split("\n")
    assert lines[0] == DELIMITER
    assert lines[-1] == DELIMITER
    assert lines[1] == "DECISION CARD"
    assert "Verdict: Okay Occasionally" in lines
    assert "72%" in lines
    assert "• It leans sweet for an everyday pick." in lines
    assert text == SIMPLE_CARD


def test_format_omits_empty_hint(sample_card):
    card = sample_card.model_copy(update={"better_choice_hint": ()})
    assert "Better choice hint" not in format_card(card)


@pytest.mark.parametrize("verdict", list(Verdict))
def test_round_trip(sample_card, verdict):
    card = sample_card.model_copy(update={"verdict": verdict})
    assert parse(format_card(card)) == card


def test_round_trip_single_reason_without_hint():
    card = DecisionCard(
        verdict=Verdict.SAFE,
        why_this_matters=("Nothing stands out.",),
        why_you_might_care=("Simple choices are easy to repeat.",),
        confidence=90,
        uncertainty="The scan may be blurry.",
        closure="Go ahead and enjoy it.",
    )
    assert parse(format_card(card)) == card


def test_round_trip_with_stacked_bullet_prefixes(sample_card):
    card = DecisionCard(
        **{
            **sample_card.model_dump(),
            "why_this_matters": ("* - It leans sweet.", "• • It reads like a packaged snack."),
            "closure": "- * Enjoy it now and then.",
        }
    )
    assert card.why_this_matters == ("It leans sweet.", "It reads like a packaged snack.")
    assert card.closure == "Enjoy it now and then."
    assert parse(format_card(card)) == card


def test_parse_accepts_inline_confidence_and_verdict_variants():
    text = SIMPLE_CARD.replace("Verdict: Okay Occasionally", "Verdict: OkayOccasionally")
    text = text.replace("Confidence:\n72%", "Confidence: 72%")
    card = parse(text)
    assert card is not None
    assert card.verdict is Verdict.OKAY_OCCASIONALLY
    assert card.confidence == 72


@pytest.mark.parametrize(
    "text",
    [
        "",
        card_text(verdict="Maybe"),
        card_text(confidence="95%"),
        card_text(confidence="about seventy"),
        card_text(reasons=()),
        card_text(reasons=("One.", "Two.", "Three.")),
        SIMPLE_CARD.replace("Closure:", "Ending:"),
        SIMPLE_CARD.replace("Why you might care:", "Care:"),
    ],
)
def test_parse_rejects_structural_mismatch(text):
    assert parse(text) is None


def test_parse_rejects_sections_out_of_order():
    swapped = SIMPLE_CARD.replace("Uncertainty:", "TMP:").replace("Closure:", "Uncertainty:").replace("TMP:", "Closure:")
    assert parse(swapped) is None


def test_card_model_rejects_digits_and_questions(sample_card):
    with pytest.raises(ValidationError):
        DecisionCard.model_validate({**sample_card.model_dump(), "closure": "Is it fine?"})
    with pytest.raises(ValidationError):
        DecisionCard(**{**sample_card.model_dump(), "uncertainty": "Read at 5 am."})
    with pytest.raises(ValidationError):
        DecisionCard(**{**sample_card.model_dump(), "why_this_matters": ("It has sugar.",) * 3})
    with pytest.raises(ValidationError):
        DecisionCard(**{**sample_card.model_dump(), "confidence": 40})


def test_card_payload_uses_camel_case(sample_card):
    payload = sample_card.to_payload()
    assert payload["verdict"] == "Okay Occasionally"
    assert payload["whyThisMatters"] == list(sample_card.why_this_matters)
    assert payload["betterChoiceHint"] == ["Pick simpler snacks for daily use."]


def test_verdict_from_token():
    assert Verdict.from_token("better to avoid") is Verdict.BETTER_TO_AVOID
    assert Verdict.from_token("Better_To_Avoid") is Verdict.BETTER_TO_AVOID
    assert Verdict.from_token("Unsafe") is None


def test_normalize_folds_fences_bullets_and_trims_to_last_block():
    noisy = "Here you go:\n```\n" + SIMPLE_CARD.replace("• ", "- ") + "\n```\n"
    noisy = "-----\nold draft\n-----\n" + noisy
    text = normalize(noisy)
    assert text == SIMPLE_CARD


def test_normalize_wraps_card_without_delimiters():
    bare = SIMPLE_CARD.replace(DELIMITER + "\n", "").replace("\n" + DELIMITER, "")
    assert normalize("Sure.\n" + bare) == SIMPLE_CARD


def test_validate_accepts_canonical_and_markdown_variants():
    assert validate(SIMPLE_CARD)
    assert validate("```text\n" + SIMPLE_CARD.replace("• ", "* ") + "\n```")
    assert validate(SIMPLE_CARD.replace("Verdict:", "**Verdict:**"))


@pytest.mark.parametrize(
    "text, error",
    [
        ("Sure, it is fine to eat.", InvalidFormat),
        (SIMPLE_CARD.replace("Closure:", "Ending:"), InvalidFormat),
        (SIMPLE_CARD.replace("It reads like a packaged snack.", "Ingredients: sugar, salt"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with E211"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with twelve mg of salt"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with lots of sugar per serving, like 12 spoons"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack that is mostly sugar %"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("Enjoy it once in a while.", "Why not enjoy it?"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with several ounces of sugar"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with a few litres of syrup"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with lots of calories per serving"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack sold by the couple of kilograms"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack with two tablespoons of oil"), ContentPolicyViolation),
        (SIMPLE_CARD.replace("packaged snack", "snack that weighs a few pounds"), ContentPolicyViolation),
    ],
)
def test_check_classifies_rejections(text, error):
    with pytest.raises(error):
        check(text)
    assert not validate(text)


def test_accepted_output_has_no_digit_outside_confidence():
    text = check(SIMPLE_CARD)
    lines = [line for line in text.split("\n") if any(ch.isdigit() for ch in line)]
    assert lines == ["72%"]
    assert "?" not in text
    assert "ingredients:" not in text.lower()
