"""Tests for the command-line dump and the YAML glyph-data export."""

import io
import sys

import pytest
import yaml

from pcf_builder import build_pcf
from pcf_font import Font, glyph_data, glyph_name, main

GLYPHS = [
    {"code": 0x41, "bitmap": [".#.", "#.#", "###", "#.#"]},
    {"code": 0x2E, "bitmap": ["..", "..", "..", "#."], "width": 2},
    {"code": 0x79, "descent": 1, "bitmap": ["#.#", "#.#", ".#.", "#.."]},
]
PROPERTIES = [("FAMILY_NAME", "Tiny"), ("PIXEL_SIZE", 4)]


def font_bytes(**kwargs):
    return build_pcf(GLYPHS, codes=[g["code"] for g in GLYPHS], **kwargs)


@pytest.fixture
def font_path(tmp_path):
    path = tmp_path / "tiny.pcf"
    path.write_bytes(font_bytes(properties=PROPERTIES))
    return path


def run(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["pcf_font.py", *map(str, args)])
    main()


def test_glyph_name():
    assert glyph_name(0x41) == "uni0041"
    assert glyph_name(0x2190) == "uni2190"


def test_glyph_data_layout():
    font = Font.from_source(io.BytesIO(font_bytes(properties=PROPERTIES)))
    data = glyph_data(font, [0x79])
    assert data["metadata"] == {
        "font_name": "Tiny",
        "ascender": 4,
        "descender": -1,
        "properties": {"FAMILY_NAME": "Tiny", "PIXEL_SIZE": 4},
    }
    assert data["glyphs"] == {
        "uni0079": {
            "bitmap": ["#.#", "#.#", ".#.", "#.."],
            "y_offset": -1,
            "advance_width": 3,
        },
    }


def test_glyph_data_defaults_to_every_encoded_code():
    font = Font.from_source(io.BytesIO(font_bytes()))
    data = glyph_data(font, font_name="tiny")
    assert data["metadata"]["font_name"] == "tiny"
    assert "properties" not in data["metadata"]
    # Every code in the encoding range, unmapped ones fall back to glyph 0
    assert len(data["glyphs"]) == 0x79 - 0x2E + 1
    assert data["glyphs"]["uni0030"] == data["glyphs"]["uni0041"]
    assert data["glyphs"]["uni002E"]["bitmap"] == ["..", "..", "..", "#."]


def test_usage(monkeypatch, capsys):
    with pytest.raises(SystemExit) as excinfo:
        run(monkeypatch)
    assert excinfo.value.code == 1
    assert "Usage" in capsys.readouterr().out


def test_missing_input(monkeypatch, capsys, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        run(monkeypatch, tmp_path / "missing.pcf")
    assert excinfo.value.code == 1
    assert "Input path not found" in capsys.readouterr().out


def test_invalid_input(monkeypatch, capsys, tmp_path):
    path = tmp_path / "broken.pcf"
    path.write_bytes(b"\x01fcp")
    with pytest.raises(SystemExit) as excinfo:
        run(monkeypatch, path)
    assert excinfo.value.code == 1
    assert capsys.readouterr().out.startswith("Error: ")


def test_summary_and_glyph_rows(monkeypatch, capsys, font_path):
    run(monkeypatch, font_path, "Ay")
    out = capsys.readouterr().out
    assert "Glyphs: 3" in out
    assert "FAMILY_NAME: Tiny" in out
    assert "U+0041 'A' (3x4)" in out
    assert "  .#.\n  #.#\n  ###\n  #.#\n" in out
    assert "U+0079 'y' (3x4)" in out


def test_unmapped_text_without_default(monkeypatch, capsys, tmp_path):
    path = tmp_path / "noenc.pcf"
    path.write_bytes(build_pcf(GLYPHS))
    with pytest.raises(SystemExit):
        run(monkeypatch, path, "A")
    assert "No glyph mapped" in capsys.readouterr().out


def test_writes_yaml_glyph_data(monkeypatch, capsys, font_path, tmp_path):
    output = tmp_path / "out" / "tiny.yaml"
    run(monkeypatch, font_path, "A.", output)
    assert "Glyph data saved to" in capsys.readouterr().out

    with open(output) as f:
        data = yaml.safe_load(f)
    assert data["metadata"]["font_name"] == "Tiny"
    assert list(data["glyphs"]) == ["uni0041", "uni002E"]
    assert data["glyphs"]["uni002E"] == {
        "bitmap": ["..", "..", "..", "#."],
        "y_offset": 0,
        "advance_width": 2,
    }


def test_writes_every_glyph_for_empty_text(monkeypatch, font_path, tmp_path):
    output = tmp_path / "all.yaml"
    run(monkeypatch, font_path, "", output)
    with open(output) as f:
        data = yaml.safe_load(f)
    assert "uni0079" in data["glyphs"]
