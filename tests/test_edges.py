import numpy as np

from edges import crop_uniform_edges


def noisy(h, w, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(40, 220, size=(h, w, 3), dtype=np.uint8)


def test_crops_top_and_bottom_bands():
    interior = noisy(200, 300)
    img = np.concatenate(
        [np.zeros((40, 300, 3), np.uint8), interior, np.zeros((25, 300, 3), np.uint8)]
    )
    cropped, bounds = crop_uniform_edges(img)
    assert bounds == (0, 40, 300, 200)
    assert np.array_equal(cropped, interior)


def test_crops_pillarbox_of_any_uniform_colour():
    interior = noisy(120, 160)
    band = np.full((120, 30, 3), (250, 250, 250), np.uint8)
    img = np.concatenate([band, interior, band], axis=1)
    cropped, bounds = crop_uniform_edges(img)
    assert bounds == (30, 0, 160, 120)
    assert cropped.shape == (120, 160, 3)


def test_no_border_is_a_noop():
    img = noisy(50, 80)
    cropped, bounds = crop_uniform_edges(img)
    assert bounds == (0, 0, 80, 50)
    assert cropped.shape == img.shape


def test_uniform_image_is_returned_whole():
    img = np.full((30, 40, 3), 12, np.uint8)
    cropped, bounds = crop_uniform_edges(img)
    assert bounds == (0, 0, 40, 30)
    assert cropped.shape == img.shape


def test_band_broken_at_the_corners_is_kept():
    # the outermost row is not uniform, so there is no band to strip
    img = noisy(100, 100)
    img[:10] = (0, 0, 255)
    img[0, 0] = img[0, -1] = (0, 0, 0)
    img[-1, 0] = img[-1, -1] = (0, 0, 0)
    _, bounds = crop_uniform_edges(img)
    assert bounds[1] == 0


def test_crops_band_on_one_side_only():
    interior = noisy(200, 300)
    img = np.concatenate([np.zeros((40, 300, 3), np.uint8), interior])
    cropped, bounds = crop_uniform_edges(img)
    assert bounds == (0, 40, 300, 200)
    assert np.array_equal(cropped, interior)


def test_each_side_uses_its_own_band_colour():
    side = np.full((100, 8, 3), (20, 90, 20), np.uint8)
    interior = np.concatenate([side, noisy(100, 120)], axis=1)
    img = np.concatenate(
        [np.zeros((15, 128, 3), np.uint8), interior, np.full((5, 128, 3), 250, np.uint8)]
    )
    _, bounds = crop_uniform_edges(img)
    assert bounds == (8, 15, 120, 100)


def test_two_solid_halves_are_returned_whole():
    img = np.concatenate(
        [np.zeros((20, 50, 3), np.uint8), np.full((20, 50, 3), 255, np.uint8)]
    )
    _, bounds = crop_uniform_edges(img)
    assert bounds == (0, 0, 50, 40)
