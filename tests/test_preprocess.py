"""Tests for decoding, cropping, resizing and normalizing images."""

import pytest
import torch
from PIL import Image

from clipsort.errors import DecodeError
from clipsort.preprocess import (
    CLIP_MEAN,
    CLIP_STD,
    IMAGE_SIZE,
    center_crop,
    decode_image,
    image_to_samples,
    preprocess,
    resize_bilinear,
    to_tensor,
)

from conftest import png_bytes, solid_image


def grid(rows):
    """(H, W, 4) sample grid from rows of 8-bit gray values, fully opaque."""
    v = torch.tensor(rows, dtype=torch.int64) * 257
    alpha = torch.full_like(v, 0xFFFF)
    return torch.stack([v, v, v, alpha], dim=-1)


# Decoding
# ---------------------------------------------------------------------------


def test_decode_rejects_garbage_bytes():
    with pytest.raises(DecodeError):
        decode_image(b"\x00\x01 not an image")


def test_decode_error_names_the_file(tmp_path):
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"nope")
    with pytest.raises(DecodeError, match="broken.jpg") as info:
        preprocess(path)
    assert info.value.source == str(path)


def test_decode_missing_file(tmp_path):
    with pytest.raises(DecodeError):
        decode_image(tmp_path / "missing.png")


def test_bytes_and_image_inputs_agree():
    im = solid_image((12, 200, 77), size=(50, 40))
    assert torch.equal(preprocess(png_bytes(im)), preprocess(im))


# Samples
# ---------------------------------------------------------------------------


def test_samples_are_16_bit():
    s = image_to_samples(solid_image((255, 128, 0), size=(3, 2)))
    assert s.shape == (2, 3, 4)
    assert s[0, 0].tolist() == [65535, 128 * 257, 0, 65535]


def test_transparent_pixels_are_premultiplied():
    im = Image.new("RGBA", (2, 2), (255, 0, 0, 0))
    s = image_to_samples(im)
    assert s.eq(0).all()

    half = image_to_samples(Image.new("RGBA", (1, 1), (255, 255, 255, 128)))
    assert half[0, 0].tolist() == [128 * 257] * 4


def test_wide_grayscale_keeps_16_bits():
    im = Image.new("I;16", (4, 3), 1000)
    s = image_to_samples(im)
    assert s.shape == (3, 4, 4)
    assert s[1, 2].tolist() == [1000, 1000, 1000, 65535]


# Center crop
# ---------------------------------------------------------------------------


def test_center_crop_square_is_untouched():
    s = grid([[1, 2], [3, 4]])
    assert center_crop(s) is s


def test_center_crop_wide_uses_floor_offset():
    # 5 wide, 2 tall: offset (5 - 2) // 2 == 1 keeps columns 1 and 2
    s = grid([[0, 10, 20, 30, 40], [0, 10, 20, 30, 40]])
    out = center_crop(s)
    assert out.shape == (2, 2, 4)
    assert (out[..., 0] // 257).tolist() == [[10, 20], [10, 20]]


def test_center_crop_tall():
    s = grid([[0], [1], [2], [3]]).expand(4, 2, 4).clone()
    out = center_crop(s)
    assert out.shape == (2, 2, 4)
    assert (out[:, 0, 0] // 257).tolist() == [1, 2]


def test_center_crop_quantizes_to_8_bit():
    s = torch.full((1, 3, 4), 1000, dtype=torch.int64)
    out = center_crop(s)
    assert out.eq((1000 >> 8) * 257).all()


# Resize
# ---------------------------------------------------------------------------


def test_resize_upsample_matches_reference_numerics():
    s = grid([[0, 255], [0, 255]])
    out = resize_bilinear(s, 4, 4)
    assert out.shape == (4, 4, 4)
    # source x = 0, 0.5, 1, 1.5 with the right neighbour clamped to column 1
    expected = [0, 127 * 257, 255 * 257, 255 * 257]
    for row in range(4):
        assert out[row, :, 0].tolist() == expected
    assert out[..., 3].eq(0xFFFF).all()


def test_resize_identity():
    s = grid([[(x * 7 + y * 3) % 256 for x in range(IMAGE_SIZE)] for y in range(IMAGE_SIZE)])
    assert torch.equal(resize_bilinear(s), s)


def test_resize_keeps_constant_images_constant():
    s = grid([[200] * 13] * 13)
    out = resize_bilinear(s)
    assert out.shape == (IMAGE_SIZE, IMAGE_SIZE, 4)
    assert out[..., 0].eq(200 * 257).all()


def test_resize_downsample():
    s = grid([[x for x in range(8)]] * 8)
    out = resize_bilinear(s, 4, 4)
    # source x = 0, 2, 4, 6 lands exactly on samples
    assert (out[0, :, 0] // 257).tolist() == [0, 2, 4, 6]


# Normalization and the full pipeline
# ---------------------------------------------------------------------------


def test_to_tensor_layout_and_values():
    s = grid([[255, 0]])
    t = to_tensor(s)
    assert t.shape == (3, 1, 2)
    assert t.dtype == torch.float32
    for c in range(3):
        assert t[c, 0, 0].item() == pytest.approx((1.0 - CLIP_MEAN[c]) / CLIP_STD[c], abs=1e-5)
        assert t[c, 0, 1].item() == pytest.approx(-CLIP_MEAN[c] / CLIP_STD[c], abs=1e-5)


def test_preprocess_solid_red():
    t = preprocess(solid_image((255, 0, 0), size=(100, 100)))
    assert t.shape == (3, IMAGE_SIZE, IMAGE_SIZE)
    assert t.numel() == 3 * 224 * 224
    assert (t[0] - 1.9303).abs().max().item() < 1e-3
    assert t[1, 0, 0].item() == pytest.approx(-1.7521, abs=1e-3)
    assert t[2, 100, 100].item() == pytest.approx(-1.4802, abs=1e-3)


def test_preprocess_non_square_has_same_shape():
    t = preprocess(solid_image((0, 0, 255), size=(640, 360)))
    assert t.shape == (3, IMAGE_SIZE, IMAGE_SIZE)


def test_preprocess_crops_the_center_of_tall_images():
    im = Image.new("RGB", (10, 30), (255, 0, 0))
    im.paste((0, 255, 0), (0, 10, 10, 20))
    im.paste((0, 0, 255), (0, 20, 10, 30))
    t = preprocess(im)
    green = to_tensor(grid([[0]]))[:, 0, 0]
    green[1] = (1.0 - CLIP_MEAN[1]) / CLIP_STD[1]
    assert t[0].max().item() == pytest.approx(green[0].item(), abs=1e-5)
    assert t[1].min().item() == pytest.approx(green[1].item(), abs=1e-5)
    assert t[2].max().item() == pytest.approx(green[2].item(), abs=1e-5)


def test_preprocess_is_deterministic():
    im = solid_image((31, 64, 99), size=(77, 51))
    assert torch.equal(preprocess(im), preprocess(im))
