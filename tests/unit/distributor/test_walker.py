import os
from pathlib import Path

import pytest

from distributor import walker
from distributor.config import Entry


def _touch(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _names(root: Path, **kwargs) -> list[str]:
    return [walker.relpath(e.full_path, root) for e in walker.walk(root, **kwargs)]


@pytest.mark.unit
def test_walk_lists_directories_before_their_children(tmp_path: Path) -> None:
    _touch(tmp_path / "b.js")
    _touch(tmp_path / "a" / "inner.js")
    _touch(tmp_path / "c.js")

    assert _names(tmp_path) == ["a", "a/inner.js", "b.js", "c.js"]


@pytest.mark.unit
def test_walk_applies_order_at_every_level(tmp_path: Path) -> None:
    _touch(tmp_path / "a.js")
    _touch(tmp_path / "b.js")
    _touch(tmp_path / "c.js")
    _touch(tmp_path / "lib" / "a.js")
    _touch(tmp_path / "lib" / "b.js")

    names = _names(tmp_path, order=["lib", "b.js", "a.js"])

    # unnamed entries come first, named ones by their last index
    assert names == ["c.js", "lib", "lib/b.js", "lib/a.js", "b.js", "a.js"]


@pytest.mark.unit
def test_order_entries_uses_last_index() -> None:
    entries = [Entry(name=n, path=Path("."), is_file=True) for n in ("x", "y")]

    ordered = walker.order_entries(entries, ["y", "x", "y"])

    assert [e.name for e in ordered] == ["x", "y"]


@pytest.mark.unit
def test_walk_excludes_matching_names_and_prunes_directories(tmp_path: Path) -> None:
    _touch(tmp_path / "keep.js")
    _touch(tmp_path / "skip.test.js")
    _touch(tmp_path / "vendor" / "lib.js")

    names = _names(tmp_path, patterns=[r"\.test\.js$", "^vendor$"])

    assert names == ["keep.js"]


@pytest.mark.unit
def test_walk_ignores_blank_patterns(tmp_path: Path) -> None:
    _touch(tmp_path / "a.js")

    assert _names(tmp_path, patterns=["", "  "]) == ["a.js"]


@pytest.mark.unit
@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_walk_skips_symlinks(tmp_path: Path) -> None:
    target = _touch(tmp_path / "real" / "a.js")
    try:
        (tmp_path / "link.js").symlink_to(target)
        (tmp_path / "loop").symlink_to(tmp_path, target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")

    assert _names(tmp_path) == ["real", "real/a.js"]


@pytest.mark.unit
def test_walk_reports_unreadable_root_and_yields_nothing(tmp_path: Path) -> None:
    errors: list[OSError] = []

    names = list(walker.walk(tmp_path / "missing", on_error=errors.append))

    assert names == []
    assert len(errors) == 1
    assert isinstance(errors[0], FileNotFoundError)


@pytest.mark.unit
def test_walk_keeps_going_after_a_directory_error(tmp_path: Path, mocker) -> None:
    _touch(tmp_path / "bad" / "hidden.js")
    _touch(tmp_path / "good" / "a.js")
    real_list = walker.list_entries

    def fake_list(directory: Path, **kwargs):
        if directory.name == "bad":
            kwargs["on_error"](PermissionError(13, "denied", str(directory)))
            return []
        return real_list(directory, **kwargs)

    mocker.patch.object(walker, "list_entries", side_effect=fake_list)
    errors: list[OSError] = []

    names = [walker.relpath(e.full_path, tmp_path) for e in walker.walk(tmp_path, on_error=errors.append)]

    assert names == ["bad", "good", "good/a.js"]
    assert [e.filename for e in errors] == [str(tmp_path / "bad")]


@pytest.mark.unit
def test_entry_kind_follows_extension(tmp_path: Path) -> None:
    entry = Entry(name="mod.ts", path=tmp_path, is_file=True)

    assert entry.kind == "typescript"
    assert entry.full_path == tmp_path / "mod.ts"
