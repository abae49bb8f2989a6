import pytest

from formflow.models import Box
from formflow.transform import (
    CANONICAL_HEIGHT,
    CANONICAL_WIDTH,
    SurfaceBox,
    clamp_zoom,
    fit_width_scale,
    from_surface,
    page_size,
    step_zoom,
    to_surface,
)


def test_to_surface_multiplies_every_component():
    box = Box(x=100, y=200, width=300, height=40)
    assert to_surface(box, 0.5) == SurfaceBox(50, 100, 150, 20)


@pytest.mark.parametrize("scale", [0.3, 0.64, 1.0, 1.37, 2.5])
def test_rounded_surface_box_inverts_within_one_unit(scale):
    box = Box(x=123, y=987, width=211, height=57)
    back = from_surface(to_surface(box, scale).rounded(), scale)
    for original, restored in zip((box.x, box.y, box.width, box.height), (back.x, back.y, back.width, back.height)):
        assert abs(original - restored) <= 1 / scale + 1e-9
        assert abs(original * scale - restored * scale) <= 0.5 + 1e-9


@pytest.mark.parametrize("scale", [0, -1])
def test_non_positive_scale_is_rejected(scale):
    with pytest.raises(ValueError):
        to_surface(Box(x=0, y=0, width=1, height=1), scale)


def test_transform_does_not_clamp():
    assert to_surface(Box(x=10, y=10, width=10, height=10), 4.0).width == 40


def test_zoom_helpers_clamp_to_interactive_range():
    assert clamp_zoom(0.1) == 0.3
    assert clamp_zoom(3.0) == 2.5
    assert step_zoom(1.0) == 1.1
    assert step_zoom(0.3, -1) == 0.3
    assert step_zoom(2.5) == 2.5


def test_fit_width_scale_caps_and_floors():
    assert fit_width_scale(CANONICAL_WIDTH) == 1.0
    assert fit_width_scale(10_000) == 2.0
    assert fit_width_scale(100) == 0.3


def test_print_page_size_is_a4_at_96_dpi():
    width, height = page_size(0.64)
    assert round(width) == 794
    assert round(height) == 1123
    assert page_size(1) == (CANONICAL_WIDTH, CANONICAL_HEIGHT)


def test_unrounded_round_trip_is_exact():
    box = Box(x=33, y=44, width=55, height=66)
    back = from_surface(to_surface(box, 0.7), 0.7)
    assert back.x == pytest.approx(33)
    assert back.height == pytest.approx(66)
