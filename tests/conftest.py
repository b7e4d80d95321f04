import pytest

from taqwa_gate.guard.lexicon import Lexicon
from taqwa_gate.guard.models import load_lexicon, load_policy
from taqwa_gate.guard.safety import SafetyValidator
from taqwa_gate.references.cache import reference_cache


class FakeClock:
    """Settable time source in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return load_policy()


@pytest.fixture
def validator(policy):
    return SafetyValidator(policy)


@pytest.fixture
def lexicon():
    return Lexicon(load_lexicon())


@pytest.fixture(autouse=True)
def _clear_reference_cache():
    reference_cache.clear()
    yield
    reference_cache.clear()
