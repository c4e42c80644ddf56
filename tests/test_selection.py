from __future__ import annotations

from collections import Counter

import pytest

from searchsynth.config import Settings
from searchsynth.services.selection import RoundRobinSelector, WeightedRandomSelector, build_selector


def test_round_robin_cycles_in_order():
    selector = RoundRobinSelector()
    picks = [selector.choose(["k1", "k2", "k3"]) for _ in range(5)]
    assert picks == ["k1", "k2", "k3", "k1", "k2"]


def test_round_robin_tracks_option_lists_separately():
    selector = RoundRobinSelector()
    assert selector.choose(["a", "b"]) == "a"
    assert selector.choose(["x", "y"]) == "x"
    assert selector.choose(["a", "b"]) == "b"


def test_weighted_random_respects_weights():
    selector = WeightedRandomSelector(seed=7)
    counts = Counter(selector.choose(["small", "large"], [3, 1]) for _ in range(2000))
    assert counts["small"] > counts["large"] * 2


def test_weighted_random_never_picks_zero_weight():
    selector = WeightedRandomSelector(seed=1)
    picks = {selector.choose(["only", "never"], [1, 0]) for _ in range(200)}
    assert picks == {"only"}


def test_selectors_reject_empty_options():
    with pytest.raises(ValueError):
        RoundRobinSelector().choose([])
    with pytest.raises(ValueError):
        WeightedRandomSelector().choose([])


def test_build_selector_by_name():
    assert isinstance(build_selector("round_robin"), RoundRobinSelector)
    assert isinstance(build_selector("weighted_random"), WeightedRandomSelector)
    with pytest.raises(ValueError):
        build_selector("fastest")


def test_settings_parse_vision_weights_and_key_lists():
    cfg = Settings(
        _env_file=None,
        groq_vision_models="model-a:3, model-b:1,plain-model",
    )
    assert cfg.vision_model_weights == [("model-a", 3.0), ("model-b", 1.0), ("plain-model", 1.0)]
    assert Settings.split_keys(" k1, ,k2 ") == ["k1", "k2"]
