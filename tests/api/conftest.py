from pathlib import Path

import pytest

from src.rules.loader import load_rules
from src.rules.models import Rules

PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def rules() -> Rules:
    """Real project rules, loaded fresh per test so they can be mutated."""
    return load_rules(PROJECT_ROOT / "rules.yaml")
