import pytest

from ..core.exceptions import NoBundleAvailableError, NoSuitableBundleError
from ..selection.bundle_selector import BundleSelector
from .fixtures import create_test_bundle


@pytest.fixture
def selector():
    return BundleSelector()


@pytest.fixture
def bundles():
    return [create_test_bundle(7), create_test_bundle(30), create_test_bundle(15)]


def test_shortest_covering_bundle(selector, bundles):
    selected = selector.select_optimal_bundle(bundles, 10)

    assert selected.duration == 15
    assert selector.calculate_unused_days(selected, 10) == 5


def test_exact_match(selector, bundles):
    selected = selector.select_optimal_bundle(bundles, 15)

    assert selected.duration == 15
    assert selector.calculate_unused_days(selected, 15) == 0


def test_no_covering_bundle_fails(selector, bundles, caplog):
    with pytest.raises(NoSuitableBundleError) as exc_info:
        selector.select_optimal_bundle(bundles, 40)

    assert exc_info.value.details['longest_available'] == 30
    assert exc_info.value.code == "NO_SUITABLE_BUNDLE"
    assert "No bundle covers 40 days" in caplog.text


def test_no_candidates_fails(selector):
    with pytest.raises(NoBundleAvailableError):
        selector.select_optimal_bundle([], 7)


def test_previous_duration(selector, bundles):
    assert selector.find_previous_duration(bundles, 10) == 7
    assert selector.find_previous_duration(bundles, 29) == 15
    assert selector.find_previous_duration(bundles, 5) is None
