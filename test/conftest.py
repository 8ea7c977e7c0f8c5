import io
import sys
from pathlib import Path

import pytest
import yaml

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

CASES_DIR = Path(__file__).resolve().parent / "cases"


def pytest_collect_file(parent, file_path):
    if file_path.suffix == ".yaml" and file_path.parent == CASES_DIR:
        return GlyphCaseFile.from_parent(parent, path=file_path)


class GlyphCaseFile(pytest.File):
    """A YAML file describing one synthetic font and the glyphs expected from it."""

    def collect(self):
        from pcf_builder import build_pcf

        with open(self.path, encoding="utf-8") as f:
            case = yaml.safe_load(f)

        font_def = case["font"]
        glyphs = font_def["glyphs"]
        data = build_pcf(
            glyphs,
            codes=[glyph["code"] for glyph in glyphs],
            default_char=font_def.get("default_char", 0),
            properties=list(font_def.get("properties", {}).items()) or None,
            compressed=font_def.get("compressed", True),
            glyph_pad=font_def.get("glyph_pad", 0),
            scan_unit=font_def.get("scan_unit", 0),
        )

        if "extents" in case:
            yield ExtentsItem.from_parent(self, name="extents", data=data, expect=case["extents"])

        seen_ids = {}
        for expect in case["expect"]:
            name = expect.get("name") or expect["text"]
            if name in seen_ids:
                seen_ids[name] += 1
                name = f"{name}_{seen_ids[name]}"
            else:
                seen_ids[name] = 0
            yield GlyphItem.from_parent(self, name=name, data=data, expect=expect)


class GlyphItem(pytest.Item):
    def __init__(self, name, parent, data, expect):
        super().__init__(name, parent)
        self.data = data
        self.expect = expect

    def runtest(self):
        from pcf_font import Font

        font = Font.from_source(io.BytesIO(self.data))
        characters = font.lookup(self.expect["text"])
        expected = self.expect["rows"]
        assert len(characters) == len(expected), (
            f"Looked up {len(characters)} glyphs, expected {len(expected)}"
        )
        for i, (character, rows) in enumerate(zip(characters, expected)):
            assert character.rows() == rows, (
                f"Glyph {i} of {self.expect['text']!r}:\n"
                + "\n".join(character.rows())
                + "\nexpected:\n"
                + "\n".join(rows)
            )

    def reportinfo(self):
        return self.path, None, self.name

    def repr_failure(self, excinfo):
        return str(excinfo.value)


class ExtentsItem(GlyphItem):
    def runtest(self):
        from pcf_font import Font

        for policy, legacy in (("legacy", True), ("max", False)):
            if policy not in self.expect:
                continue
            font = Font.from_source(io.BytesIO(self.data), legacy_extents=legacy)
            expected = self.expect[policy]
            assert (font.max_ascent, font.max_descent) == tuple(expected), (
                f"{policy} extents: got {(font.max_ascent, font.max_descent)}, "
                f"expected {tuple(expected)}"
            )
