import numpy as np
import pytest

from depth_from_normals.integration import IntegralAccumulator
from depth_from_normals.normalization import (
    MID_GRAY, apply_mask, apply_masks, normalize, perspective_correct,
)
from depth_from_normals.pixel_grid import PixelGrid


def accumulator_of(sums, counts, width, height):
    return IntegralAccumulator(
        width, height, np.asarray(sums, dtype=np.int32), np.asarray(counts, dtype=np.uint32)
    )


def gray(value, width, height) -> PixelGrid:
    img = np.full((height, width, 4), value, dtype=np.uint8)
    img[..., 3] = 255
    return PixelGrid.from_array(img)


def test_flat_field_is_mid_gray():
    depth = normalize(accumulator_of([7] * 6, [3] * 6, 3, 2))
    assert (depth.buffer[..., :3] == MID_GRAY).all()
    assert (depth.buffer[..., 3] == 255).all()


def test_normalization_stretches_to_full_range():
    depth = normalize(accumulator_of([-10, 0, 10, 30], [2, 2, 2, 2], 2, 2))
    assert depth.channel(0).ravel().tolist() == [0, 64, 128, 255]
    assert (depth.channel(0) == depth.channel(1)).all()
    assert (depth.channel(0) == depth.channel(2)).all()


def test_count_rescale_uses_max_count():
    # 10 * 3 / 2 = 15, 20 * 3 / 2 = 30, 12 * 3 / 1 = 36
    depth = normalize(accumulator_of([10, 20, 12], [3, 3, 1], 3, 1))
    assert depth.channel(0).ravel().tolist() == [0, 182, 255]


def test_normalization_is_deterministic():
    rng = np.random.default_rng(3)
    acc = accumulator_of(rng.integers(-1000, 1000, 20), rng.integers(0, 10, 20), 5, 4)
    np.testing.assert_array_equal(normalize(acc).buffer, normalize(acc).buffer)


def test_normalize_empty():
    assert normalize(IntegralAccumulator.zeros(0, 4)).is_empty


def test_perspective_factor_zero_is_identity():
    depth = gray(100, 4, 4)
    assert perspective_correct(depth, 0) is depth


def test_perspective_lifts_the_border_more_than_the_centre():
    corrected = perspective_correct(gray(128, 4, 4), 0.1)
    red = corrected.channel(0).astype(int)
    assert red[0, 0] > red[1, 1] > 128
    assert red[0, 0] == red[3, 3]
    assert (corrected.channel(3) == 255).all()


def test_negative_perspective_factor():
    with pytest.raises(ValueError):
        perspective_correct(gray(128, 2, 2), -1)


def test_mask_zeroes_background():
    normal = np.full((4, 4, 3), (128, 128, 255), dtype=np.uint8)
    normal[:2, :2] = 0
    masked = apply_mask(gray(200, 4, 4), PixelGrid.from_array(normal))
    red = masked.channel(0)
    assert (red[:2, :2] == 0).all()
    assert (red[2:, :] == 200).all()
    assert (red[:, 2:] == 200).all()
    assert (masked.channel(3) == 255).all()


def test_mask_size_mismatch():
    with pytest.raises(ValueError):
        apply_mask(gray(1, 4, 4), gray(1, 3, 4))


def test_apply_masks_uses_red_channel_of_mask():
    mask = np.zeros((2, 2, 3), dtype=np.uint8)
    mask[0, 0] = (255, 0, 0)
    images = [gray(50, 2, 2), gray(90, 2, 2)]
    masked = apply_masks(PixelGrid.from_array(mask), images)
    assert [m.channel(0).tolist() for m in masked] == [[[50, 0], [0, 0]], [[90, 0], [0, 0]]]
