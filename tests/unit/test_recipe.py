"""Tests for recipe loading and cross-field validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from obake.core.hasher import recipe_hash
from obake.core.recipe import RecipeError, load_shape, load_shapes, parse_shape, validate_shape

RECIPE = """
name = "serialosc"
version = "1.4.3"
entrypoint = "/usr/local/bin/serialoscd"
build_dependencies = ["build-essential", "libudev-dev"]
runtime_dependencies = ["libudev1"]
artifacts = ["/usr/local/bin/serialosc*"]

[reference]
kind = "git"
url = "https://github.com/monome/serialosc.git"
tag = "v1.4.3"

[[build_steps]]
name = "configure"
run = "./waf configure"

[[build_steps]]
name = "install"
run = "./waf install --destdir=$DESTDIR"
"""


def _write(directory: Path, name: str, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(text)
    return path


class TestLoadShape:
    def test_load(self, tmp_path):
        shape = load_shape(_write(tmp_path, "serialosc.toml", RECIPE))
        assert shape.name == "serialosc"
        assert shape.reference.version == "1.4.3"
        assert [s.name for s in shape.build_steps] == ["configure", "install"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(RecipeError, match="not found"):
            load_shape(tmp_path / "nope.toml")

    def test_invalid_toml_names_file(self, tmp_path):
        path = _write(tmp_path, "bad.toml", "name = [")
        with pytest.raises(RecipeError, match="bad.toml"):
            load_shape(path)

    def test_branch_reference_rejected(self, tmp_path):
        path = _write(tmp_path, "s.toml", RECIPE.replace('tag = "v1.4.3"', 'tag = "main"'))
        with pytest.raises(RecipeError, match="moving reference"):
            load_shape(path)

    def test_load_shapes_keyed_by_name(self, tmp_path):
        _write(tmp_path, "a.toml", RECIPE)
        shapes = load_shapes(tmp_path)
        assert list(shapes) == ["serialosc"]

    def test_duplicate_names_rejected(self, tmp_path):
        _write(tmp_path, "a.toml", RECIPE)
        _write(tmp_path, "b.toml", RECIPE)
        with pytest.raises(RecipeError, match="duplicate"):
            load_shapes(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(RecipeError, match="not found"):
            load_shapes(tmp_path / "nowhere")

    def test_bundled_recipes_load(self):
        shapes_dir = Path(__file__).resolve().parents[2] / "shapes"
        shapes = load_shapes(shapes_dir)
        assert {"scsynth", "serialosc", "carla"} <= set(shapes)


class TestValidateShape:
    def test_uncovered_entrypoint_is_fatal(self, recipe_data):
        with pytest.raises(RecipeError, match="not covered"):
            parse_shape({**recipe_data, "artifacts": ["/usr/local/lib"]})

    def test_directory_pattern_covers_entrypoint(self, recipe_data):
        shape = parse_shape({**recipe_data, "artifacts": ["/usr/local/bin"]})
        assert shape.artifacts == ["/usr/local/bin"]

    def test_glob_pattern_covers_entrypoint(self, recipe_data):
        parse_shape({**recipe_data, "artifacts": ["/usr/*/bin/hel*"]})

    def test_advisories(self, make_shape):
        shape = make_shape(build_dependencies=["cmake", "libfoo"], runtime_dependencies=["libfoo", "make"])
        advisories = validate_shape(shape)
        assert "libfoo is both a build and a runtime dependency" in advisories
        assert "build tool make is re-declared as a runtime dependency" in advisories

    def test_no_advisories_for_clean_recipe(self, demo_shape):
        assert validate_shape(demo_shape) == []


class TestRecipeHash:
    def test_stable(self, make_shape):
        assert recipe_hash(make_shape()) == recipe_hash(make_shape())

    def test_changes_with_steps(self, make_shape, recipe_data):
        changed = make_shape(build_steps=recipe_data["build_steps"][:1])
        assert recipe_hash(changed) != recipe_hash(make_shape())
