import numpy as np
import pytest

from conftest import make_screenshot, paint_probes
from models import LayoutVariant, RoiOutOfBoundsError
from rois import ROI_NAMES, DEFAULT_LAYOUT, DeviceRois, RoiExtractor, select_layout


@pytest.mark.parametrize("layout", list(LayoutVariant))
def test_select_layout_from_probe_signature(layout):
    img = make_screenshot(layout)
    assert select_layout(img) == layout


def test_select_layout_falls_back_to_default():
    rng = np.random.default_rng(3)
    img = rng.integers(0, 256, size=(720, 1280, 3), dtype=np.uint8)
    assert select_layout(img) == DEFAULT_LAYOUT


def test_select_layout_respects_aspect_bucket():
    # T1 probes painted on a portrait image do not count
    img = np.zeros((1600, 900, 3), np.uint8)
    paint_probes(img, LayoutVariant.T1)
    assert select_layout(img) == DEFAULT_LAYOUT


def test_select_layout_on_tiny_image_does_not_raise():
    assert select_layout(np.zeros((1, 1, 3), np.uint8)) in LayoutVariant


def test_rois_scale_with_height_on_wide_images():
    rois = DeviceRois(LayoutVariant.T1, 3840, 2160)
    assert rois.factor == 2
    assert rois.rect("jacket") == (700, 794, 750, 750)

    wide = DeviceRois(LayoutVariant.T1, 2400, 1080)
    # extra width is split evenly on both sides
    assert wide.rect("jacket") == (1200 - 610, 540 - 143, 375, 375)


def test_rois_scale_with_width_on_narrow_images():
    rois = DeviceRois(LayoutVariant.T2, 1440, 1080)
    assert rois.factor == 0.75
    x, y, w, h = rois.rect("jacket")
    assert (w, h) == (300, 300)
    assert x == 720 - 420


@pytest.mark.parametrize("layout", list(LayoutVariant))
@pytest.mark.parametrize("size", [(1920, 1080), (2340, 1080), (2048, 1536), (1080, 1920)])
def test_default_tables_fit_common_resolutions(layout, size):
    w, h = size
    img = np.zeros((h, w, 3), np.uint8)
    extractor = RoiExtractor.for_layout(layout, img)
    for name in ROI_NAMES:
        x, y, rw, rh = extractor.rois.rect(name)
        assert extractor.crop(name).shape == (rh, rw, 3)


def test_out_of_bounds_rect_fails_at_construction():
    img = np.zeros((1080, 1920, 3), np.uint8)
    rois = DeviceRois(LayoutVariant.T1, 1920, 1080, table={"score": (900, 0, 100, 40)})
    with pytest.raises(RoiOutOfBoundsError):
        RoiExtractor(rois, img)


def test_table_for_another_size_is_rejected():
    img = np.zeros((1080, 1920, 3), np.uint8)
    with pytest.raises(RoiOutOfBoundsError):
        RoiExtractor(DeviceRois(LayoutVariant.T1, 1280, 720), img)


def test_extractor_attribute_access_and_layout():
    img = make_screenshot(LayoutVariant.T2)
    extractor = RoiExtractor.for_layout(LayoutVariant.T2, img)
    assert extractor.layout == LayoutVariant.T2
    assert np.array_equal(extractor.jacket, extractor.crop("jacket"))
    with pytest.raises(AttributeError):
        extractor.not_a_roi
