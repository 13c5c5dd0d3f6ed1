"""
Runs against the real tokenizer tables and CLIP weights.

Opt in with ``CLIPSORT_INTEGRATION=1``; the tables must already be in the
default models directory and the weights in the Hugging Face cache or
reachable online.
"""

import os

import pytest
import torch
from PIL import Image

from clipsort.assets import missing_assets, models_dir
from clipsort.config import Settings
from clipsort.scoring import decide
from clipsort.session import ClipSession

from conftest import solid_image

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.environ.get("CLIPSORT_INTEGRATION"), reason="set CLIPSORT_INTEGRATION=1"),
    pytest.mark.skipif(bool(missing_assets(models_dir())), reason="tokenizer tables not downloaded"),
]


@pytest.fixture(scope="module")
def session():
    return ClipSession.open(Settings(device="cpu"))


def test_real_vocabulary_prompt_ids(session):
    ids = session.tokenizer.encode("a photo of cat")
    assert ids[:6].tolist() == [49406, 320, 1125, 539, 2368, 49407]
    assert ids[6:].eq(0).all()


def test_dark_blue_prefers_ocean_over_desert(session):
    scores = session.classify(solid_image((10, 20, 120)), ["desert", "ocean"])
    assert scores["ocean"] > scores["desert"]
    assert scores.total() == pytest.approx(1.0, abs=1e-3)


def test_noise_decision_follows_the_baseline_rule(session):
    torch.manual_seed(0)
    noise = (torch.rand(224 * 224 * 3) * 255).to(torch.uint8)
    im = Image.frombytes("RGB", (224, 224), bytes(noise.tolist()))

    scores = session.classify(im, ["wedding cake"])
    result = decide(scores, 0.0)
    assert result.skipped == (scores.baseline >= scores["wedding cake"])
