# -*- encoding: utf-8 -*-
"""
Image -> CLIP pixel tensor.

Every stage works on a sample grid: an int64 tensor of shape (H, W, 4) holding
premultiplied RGBA in 16-bit space (an 8-bit value ``v`` is ``v * 257``).  A
grid that went through a crop or a resize only holds values an 8-bit RGBA
buffer can store, which is what the embeddings were computed against.
"""
from __future__ import annotations

import io
import logging as log
from pathlib import Path
from typing import Tuple, Union

import torch
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError

logger = log.getLogger(__name__)

IMAGE_SIZE = 224
CLIP_MEAN: Tuple[float, float, float] = (0.48145466, 0.4578275, 0.40821073)
CLIP_STD: Tuple[float, float, float] = (0.26862954, 0.26130258, 0.27577711)

MAX16 = 0xFFFF

# Pillow modes carrying more than 8 bits per sample (grayscale only).
_WIDE_GRAY_MODES = {"I", "I;16", "I;16L", "I;16B", "I;16N"}

ImageInput = Union[bytes, bytearray, str, Path, Image.Image]


def decode_image(image: ImageInput) -> Image.Image:
    # Decode raw bytes, a path or an already opened image.  The pixel data is
    # loaded eagerly so truncated files fail here and not later.
    if isinstance(image, Image.Image):
        return image
    source = str(image) if isinstance(image, (str, Path)) else None
    try:
        if isinstance(image, (bytes, bytearray)):
            im = Image.open(io.BytesIO(image))
        else:
            im = Image.open(image)
        im.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"cannot decode image ({e})", source=source) from e
    if im.width == 0 or im.height == 0:
        raise DecodeError("image has no pixels", source=source)
    return im


def image_to_samples(im: Image.Image) -> torch.Tensor:
    """Premultiplied 16-bit RGBA samples of ``im`` as an (H, W, 4) int64 tensor."""
    w, h = im.size
    if im.mode in _WIDE_GRAY_MODES:
        gray = im.convert("I")
        y = torch.frombuffer(bytearray(gray.tobytes()), dtype=torch.int32)
        y = y.reshape(h, w).to(torch.int64).clamp(0, MAX16)
        alpha = torch.full_like(y, MAX16)
        return torch.stack([y, y, y, alpha], dim=-1)

    rgba = im.convert("RGBA")
    s = torch.frombuffer(bytearray(rgba.tobytes()), dtype=torch.uint8)
    s = s.reshape(h, w, 4).to(torch.int64) * 257
    alpha = s[..., 3:]
    rgb = s[..., :3] * alpha // MAX16
    return torch.cat([rgb, alpha], dim=-1)


def _store8(samples: torch.Tensor) -> torch.Tensor:
    # Round trip through an 8-bit RGBA buffer: keep the high byte.
    return (samples >> 8) * 257


def center_crop(samples: torch.Tensor) -> torch.Tensor:
    # Crop the longer axis to a square of side min(W, H).  The offset uses
    # floor division, so odd differences leave the extra column/row on the
    # right/bottom.  A square grid is returned as the very same object.
    h, w = samples.shape[0], samples.shape[1]
    if w == h:
        return samples
    if w > h:
        offset = (w - h) // 2
        cropped = samples[:, offset:offset + h]
    else:
        offset = (h - w) // 2
        cropped = samples[offset:offset + w, :]
    return _store8(cropped)


def resize_bilinear(samples: torch.Tensor, width: int = IMAGE_SIZE, height: int = IMAGE_SIZE) -> torch.Tensor:
    """
    Bilinear resize of a sample grid.

    The source coordinate of a destination pixel is ``dst * (src_dim / dst_dim)``
    with no half-pixel shift.  The second sample index is clamped to the last
    row/column, so the border is replicated.  All four channels are
    interpolated in float64 and then stored as 8-bit samples.

    Parameters
    ----------
    samples : torch.Tensor
        (H, W, 4) int64 grid in 16-bit space.
    width, height : int
        Destination size.

    Returns
    -------
    torch.Tensor
        (height, width, 4) int64 grid.
    """
    src_h, src_w = samples.shape[0], samples.shape[1]
    x_ratio = src_w / width
    y_ratio = src_h / height

    src_x = torch.arange(width, dtype=torch.float64) * x_ratio
    src_y = torch.arange(height, dtype=torch.float64) * y_ratio
    x0 = torch.floor(src_x).to(torch.int64)
    y0 = torch.floor(src_y).to(torch.int64)
    x1 = (x0 + 1).clamp(max=src_w - 1)
    y1 = (y0 + 1).clamp(max=src_h - 1)
    fx = (src_x - x0.to(torch.float64)).view(1, width, 1)
    fy = (src_y - y0.to(torch.float64)).view(height, 1, 1)

    s = samples.to(torch.float64)
    row0 = s.index_select(0, y0)
    row1 = s.index_select(0, y1)
    c00 = row0.index_select(1, x0)
    c10 = row0.index_select(1, x1)
    c01 = row1.index_select(1, x0)
    c11 = row1.index_select(1, x1)

    out = c00 * (1 - fx) * (1 - fy) + c10 * fx * (1 - fy) + c01 * (1 - fx) * fy + c11 * fx * fy
    # float -> integer conversion truncates toward zero
    out = out.clamp(0, MAX16).to(torch.int64)
    return _store8(out)


def to_tensor(samples: torch.Tensor) -> torch.Tensor:
    # (H, W, 4) grid -> (3, H, W) float32, CLIP-normalized.  Alpha is dropped.
    rgb = samples[..., :3].permute(2, 0, 1).to(torch.float32) / 65535.0
    mean = torch.tensor(CLIP_MEAN, dtype=torch.float32).view(3, 1, 1)
    std = torch.tensor(CLIP_STD, dtype=torch.float32).view(3, 1, 1)
    return ((rgb - mean) / std).contiguous()


def preprocess(image: ImageInput, size: int = IMAGE_SIZE) -> torch.Tensor:
    """
    Map an image to the (3, size, size) float32 tensor the CLIP vision tower
    expects.  ``.flatten()`` gives the channel-major 3*size*size layout.

    Raises
    ------
    DecodeError
        If the input is not a decodable raster image.
    """
    im = decode_image(image)
    samples = image_to_samples(im)
    samples = center_crop(samples)
    samples = resize_bilinear(samples, size, size)
    return to_tensor(samples)
