"""Shared fixtures: a tiny CLIP-shaped vocabulary, images and a fake model."""

import io
import json

import pytest
import torch
from PIL import Image

from clipsort.bpe import BYTE_ENCODER, END_OF_WORD, parse_merges
from clipsort.tokenizer import EOT_TOKEN, SOT_TOKEN, Tokenizer


MERGES = [
    ("p", "h"),
    ("o", "t"),
    ("ph", "ot"),
    ("phot", "o</w>"),
    ("o", "f</w>"),
    ("c", "a"),
    ("ca", "t</w>"),
]


def build_vocab(merges=MERGES):
    # Same construction as the released CLIP vocab: byte symbols, byte
    # symbols with the end-of-word suffix, one entry per merge, then markers.
    symbols = list(BYTE_ENCODER.values())
    tokens = symbols + [s + END_OF_WORD for s in symbols]
    tokens += ["".join(m) for m in merges]
    tokens += [SOT_TOKEN, EOT_TOKEN]
    return {tok: i for i, tok in enumerate(tokens)}


@pytest.fixture
def vocab():
    return build_vocab()


@pytest.fixture
def tokenizer(vocab):
    return Tokenizer(vocab, parse_merges(["#version: 0.2"] + [f"{a} {b}" for a, b in MERGES]))


@pytest.fixture
def models_dir(tmp_path, vocab):
    d = tmp_path / "models"
    d.mkdir()
    (d / "vocab.json").write_text(json.dumps(vocab), encoding="utf-8")
    lines = ["#version: 0.2"] + [f"{a} {b}" for a, b in MERGES]
    (d / "merges.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return d


def solid_image(color, size=(224, 224), mode="RGB"):
    return Image.new(mode, size, color)


def png_bytes(im):
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def image_dir(tmp_path):
    """Two decodable images, one corrupt image and a text file."""
    d = tmp_path / "photos"
    d.mkdir()
    solid_image((10, 20, 120)).save(d / "a_blue.png")
    solid_image((200, 170, 90), size=(300, 200)).save(d / "b_sand.jpg")
    (d / "c_broken.jpg").write_bytes(b"definitely not a jpeg")
    (d / "notes.txt").write_text("hello", encoding="utf-8")
    return d


class FakeModel:
    """
    Stand-in for the CLIP forward pass.

    Each prompt row is decoded back to text; a row whose text mentions the
    dominant colour's keyword gets ``hit`` as its logit, the baseline row gets
    ``baseline`` and every other row 0.
    """

    def __init__(self, tokenizer, keywords=None, hit=4.0, baseline=1.0):
        self.tokenizer = tokenizer
        self.keywords = keywords or {"blue": "ocean", "red": "cat", "yellow": "desert"}
        self.hit = hit
        self.baseline = baseline
        self.calls = []

    def dominant(self, pixel_values):
        means = pixel_values[0].mean(dim=(1, 2))
        r, g, b = means.tolist()
        if b > r and b > g:
            return "blue"
        if r > g and r > b and g < 0:
            return "red"
        return "yellow"

    def __call__(self, input_ids, pixel_values, attention_mask):
        self.calls.append((input_ids.shape, pixel_values.shape, attention_mask.shape))
        keyword = self.keywords[self.dominant(pixel_values)]
        logits = torch.zeros(1, input_ids.shape[0])
        for i, row in enumerate(input_ids):
            text = self.tokenizer.decode(row.tolist())
            if i == 0:
                logits[0, i] = self.baseline
            elif keyword in text:
                logits[0, i] = self.hit
        return logits


@pytest.fixture
def fake_model(tokenizer):
    return FakeModel(tokenizer)
