"""
Pytest configuration and fixtures
"""
import os
import sys
from pathlib import Path

import pytest

# Repo root holds the service modules
root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

# Never load OCR weights or call real providers from tests
os.environ["USE_TROCR"] = "0"
os.environ["USE_AI"] = "false"
os.environ["AI_ONLY"] = "false"

from card_contract import DecisionCard, Verdict  # noqa: E402
from fakes import FakeClock  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_card() -> DecisionCard:
    return DecisionCard(
        verdict=Verdict.OKAY_OCCASIONALLY,
        why_this_matters=("It leans sweet for an everyday pick.", "It reads like a packaged snack."),
        why_you_might_care=("Small habits add up over time.",),
        confidence=72,
        uncertainty="The scan may be incomplete.",
        better_choice_hint=("Pick simpler snacks for daily use.",),
        closure="Enjoy it once in a while.",
    )
