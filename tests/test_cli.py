"""End-to-end runs of the command line with a fake model."""

import json

import pytest

import clipsort.assets
from clipsort import cli
from clipsort.session import ClipSession


@pytest.fixture
def offline(monkeypatch, tokenizer, fake_model):
    """Skip downloads and model loading; every session uses the fake model."""
    monkeypatch.setattr(clipsort.assets, "ensure_assets", lambda directory=None, **kw: directory)
    monkeypatch.setattr(ClipSession, "open", classmethod(lambda cls, settings: cls(tokenizer, fake_model)))


def run(argv):
    return cli.run_app(cli.build_parser().parse_args(argv))


def test_parser_defaults_leave_prefs_alone():
    args = cli.build_parser().parse_args(["photos"])
    assert args.confidence is None
    assert args.workers is None
    assert args.model_name is None
    assert args.dry_run is False


def test_run_moves_images(offline, image_dir, tmp_path, capsys):
    save = tmp_path / "map.json"
    code = run([str(image_dir), "--categories", "ocean,desert,cat", "--config", str(tmp_path / "none.json"),
                "--save-map", str(save)])
    assert code == 0
    assert (image_dir / "ocean" / "a_blue.png").exists()
    assert (image_dir / "desert" / "b_sand.jpg").exists()
    assert (image_dir / "c_broken.jpg").exists()

    out = capsys.readouterr().out
    assert "Images found:        3" in out
    assert "Images skipped:      1" in out
    assert "Non-image files:     1" in out

    data = json.loads(save.read_text(encoding="utf-8"))
    assert data[str(image_dir.resolve() / "c_broken.jpg")]["reason"] == "error"


def test_dry_run_moves_nothing(offline, image_dir, tmp_path, capsys):
    code = run([str(image_dir), "--dry-run", "--categories", "ocean,desert", "--config", str(tmp_path / "none.json"),
                "--workers", "2"])
    assert code == 0
    assert (image_dir / "a_blue.png").exists()
    assert not (image_dir / "ocean").exists()
    assert "Would move a_blue.png" in capsys.readouterr().out


def test_main_reports_startup_errors(offline, tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda verbose=False: None)
    assert cli.main([str(tmp_path / "missing"), "--config", str(tmp_path / "none.json")]) == 1


def test_main_rejects_bad_confidence(offline, image_dir, tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda verbose=False: None)
    argv = [str(image_dir), "--confidence", "2", "--config", str(tmp_path / "none.json")]
    assert cli.main(argv) == 1
