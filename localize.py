from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from card_contract import ENGLISH_HEADINGS, DecisionCard, Verdict, render_card
from lang_detect import DEFAULT_LANGUAGE, normalize_language


class LabelSet(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    title: str
    verdict: str
    why_this_matters: str
    why_you_might_care: str
    confidence: str
    uncertainty: str
    better_choice_hint: str
    closure: str

    def headings(self) -> Dict[str, str]:
        return self.model_dump()


ENGLISH_LABELS = LabelSet(**ENGLISH_HEADINGS)

STATIC_LABELS: Dict[str, LabelSet] = {
    "en": ENGLISH_LABELS,
    "hi": LabelSet(
        title="निर्णय कार्ड",
        verdict="निर्णय:",
        why_this_matters="यह क्यों मायने रखता है:",
        why_you_might_care="आपको क्यों परवाह हो सकती है:",
        confidence="विश्वास:",
        uncertainty="अनिश्चितता:",
        better_choice_hint="बेहतर विकल्प संकेत (वैकल्पिक, बिना दबाव):",
        closure="समापन:",
    ),
}

# Languages without a table keep the English verdict token; a wrong verdict
# translation is worse than an untranslated one.
VERDICT_TERMS: Dict[str, Dict[Verdict, str]] = {
    "en": {v: v.value for v in Verdict},
    "hi": {
        Verdict.SAFE: "ठीक है",
        Verdict.OKAY_OCCASIONALLY: "कभी-कभी ठीक",
        Verdict.BETTER_TO_AVOID: "बेहतर है बचें",
    },
}


class LabelCache:
    """Translated label sets, one per language, kept for the process lifetime."""

    def __init__(self):
        self._labels: Dict[str, LabelSet] = {}

    def get(self, language: str) -> Optional[LabelSet]:
        return self._labels.get(language)

    def put(self, language: str, labels: LabelSet) -> None:
        self._labels[language] = labels

    def __contains__(self, language: str) -> bool:
        return language in self._labels

    def languages(self) -> List[str]:
        return sorted(self._labels)

    def labels_for(self, language: str) -> Optional[LabelSet]:
        lang = normalize_language(language)
        return STATIC_LABELS.get(lang) or self.get(lang)


class LocalizedCard(BaseModel):
    model_config = ConfigDict(frozen=True)

    language: str
    labels: LabelSet
    verdict: str
    card: DecisionCard

    def to_payload(self) -> Dict:
        out = self.card.to_payload()
        out["verdictKey"] = out["verdict"]
        out["verdict"] = self.verdict
        out["language"] = self.language
        out["labels"] = self.labels.model_dump(by_alias=True)
        return out


def localize(card: DecisionCard, language: str, labels: Optional[LabelSet] = None) -> LocalizedCard:
    lang = normalize_language(language)
    labels = labels or STATIC_LABELS.get(lang) or ENGLISH_LABELS
    terms = VERDICT_TERMS.get(lang, VERDICT_TERMS[DEFAULT_LANGUAGE])
    return LocalizedCard(
        language=lang,
        labels=labels,
        verdict=terms.get(card.verdict, card.verdict.value),
        card=card,
    )


def format_localized(localized: LocalizedCard) -> str:
    return render_card(localized.card, localized.labels.headings(), localized.verdict)
