from __future__ import annotations

from pathlib import Path

import pytest

from epubmath_backend.exceptions import EpubMathError, UnsafePathError
from epubmath_backend.security import is_scratch_dir_name, new_scratch_name, resolve_archive_entry_path


def test_resolves_nested_entry_beneath_root(tmp_path: Path) -> None:
    resolved = resolve_archive_entry_path(tmp_path, "OEBPS/text/ch1.xhtml")
    assert resolved == (tmp_path / "OEBPS" / "text" / "ch1.xhtml").resolve()


def test_root_itself_is_allowed(tmp_path: Path) -> None:
    assert resolve_archive_entry_path(tmp_path, "") == tmp_path.resolve()
    assert resolve_archive_entry_path(tmp_path, "OEBPS/..") == tmp_path.resolve()


def test_backslashes_are_treated_as_separators(tmp_path: Path) -> None:
    resolved = resolve_archive_entry_path(tmp_path, "OEBPS\\images\\fig.png")
    assert resolved == (tmp_path / "OEBPS" / "images" / "fig.png").resolve()


@pytest.mark.parametrize(
    "entry_name",
    [
        "../escape.txt",
        "OEBPS/../../escape.txt",
        "..\\escape.txt",
        "/etc/passwd",
    ],
)
def test_escaping_entries_are_rejected(tmp_path: Path, entry_name: str) -> None:
    root = tmp_path / "book"
    root.mkdir()
    with pytest.raises(UnsafePathError) as excinfo:
        resolve_archive_entry_path(root, entry_name)
    assert entry_name in str(excinfo.value)
    assert not (tmp_path / "escape.txt").exists()


def test_sibling_with_common_prefix_is_rejected(tmp_path: Path) -> None:
    root = tmp_path / "book"
    root.mkdir()
    with pytest.raises(UnsafePathError):
        resolve_archive_entry_path(root, "../book-evil/x.txt")


def test_dotdot_that_stays_inside_is_allowed(tmp_path: Path) -> None:
    resolved = resolve_archive_entry_path(tmp_path, "OEBPS/text/../images/a.png")
    assert resolved == (tmp_path / "OEBPS" / "images" / "a.png").resolve()


def test_unsafe_path_error_is_a_converter_error() -> None:
    assert issubclass(UnsafePathError, EpubMathError)
    assert UnsafePathError().message == "Unsafe archive entry path."


def test_scratch_names_round_trip() -> None:
    name = new_scratch_name()
    assert is_scratch_dir_name(name)
    assert not is_scratch_dir_name("epub-mathml-not-a-uuid")
    assert not is_scratch_dir_name("unrelated")
