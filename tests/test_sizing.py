"""Mirrored size rules."""

import pytest

from copymirror.config import CopySettings
from copymirror.engine.sizing import compute_mirror_size
from tests.fakes import make_fill


def test_percent_mode_scales_original_size():
    settings = CopySettings(execution_mode="percent", copy_factor=1.5)
    assert compute_mirror_size(make_fill("f", 1, size=10), settings) == pytest.approx(15)


def test_fixed_mode_ignores_original_size():
    settings = CopySettings(execution_mode="fixed", fixed_size=5, copy_factor=3)
    assert compute_mirror_size(make_fill("f", 1, size=10), settings) == 5
    assert compute_mirror_size(make_fill("g", 1, size=999), settings) == 5


def test_sell_all_overrides_copy_factor():
    settings = CopySettings(execution_mode="percent", copy_factor=4, sell_all_on_sell=True)
    assert compute_mirror_size(make_fill("f", 1, side="sell", size=10), settings) == settings.liquidation_size


def test_sell_all_overrides_fixed_mode():
    settings = CopySettings(execution_mode="fixed", fixed_size=5, sell_all_on_sell=True, liquidation_size=250)
    assert compute_mirror_size(make_fill("f", 1, side="sell"), settings) == 250


def test_sell_all_leaves_buys_alone():
    settings = CopySettings(execution_mode="percent", copy_factor=2, sell_all_on_sell=True)
    assert compute_mirror_size(make_fill("f", 1, side="buy", size=3), settings) == 6


def test_sell_without_override_is_proportional():
    settings = CopySettings(execution_mode="percent", copy_factor=0.5)
    assert compute_mirror_size(make_fill("f", 1, side="sell", size=8), settings) == 4


def test_clamped_factor_applies():
    settings = CopySettings(execution_mode="percent", copy_factor=20)
    assert compute_mirror_size(make_fill("f", 1, size=2), settings) == 10
