from datetime import datetime

import pytest

from common.csv_store import CsvFileError, CsvStore, dated_csv_filename, load_ignored_user_ids


def test_dated_filename():
    when = datetime(2024, 3, 5, 7, 8, 9)
    assert dated_csv_filename("users", when) == "users-20240305-070809.csv"


def test_write_quotes_awkward_names(store):
    path = store.write_members("users", [("1", 'Ann, "the" admin'), ("2", "bob")])

    text = path.read_text(encoding="utf-8")
    assert text.splitlines()[0] == "User ID,Username"
    assert text.endswith("\n")
    assert store.read_rows(path.name) == [
        {"User ID": "1", "Username": 'Ann, "the" admin'},
        {"User ID": "2", "Username": "bob"},
    ]


def test_header_only_file_has_no_rows(store):
    path = store.write_members("users", [])

    assert path.read_text(encoding="utf-8") == "User ID,Username\n"
    assert store.count_rows(path) == 0


def test_resolve_accepts_csv_prefix_and_absolute_path(store):
    path = store.write_members("users", [("1", "a")])

    assert store.resolve(path.name) == path
    assert store.resolve(f"csv/{path.name}") == path
    assert store.resolve(str(path)) == path


def test_resolve_rejects_escape(store, tmp_path):
    (tmp_path / "outside.csv").write_text("User ID,Username\n", encoding="utf-8")

    with pytest.raises(CsvFileError) as exc:
        store.resolve("../outside.csv")
    assert not exc.value.missing

    with pytest.raises(CsvFileError):
        store.resolve("   ")


def test_resolve_missing(store):
    with pytest.raises(CsvFileError) as exc:
        store.resolve("nope.csv")
    assert exc.value.missing


def test_list_files_counts_rows(store):
    store.directory.mkdir(parents=True, exist_ok=True)
    (store.directory / "a.csv").write_text("User ID,Username\n1,x\n\n2,y\n", encoding="utf-8")
    (store.directory / "notes.txt").write_text("hi", encoding="utf-8")

    files = store.list_files()

    assert [f["filename"] for f in files] == ["a.csv"]
    assert files[0]["row_count"] == 2


def test_ignore_dir_union(tmp_path):
    ignore = tmp_path / "ignore"
    ignore.mkdir()
    (ignore / "a.csv").write_text("User ID,Username\n 1 ,x\n2,y\n", encoding="utf-8")
    (ignore / "b.csv").write_text("Username,User ID\nz,3\nw,\n", encoding="utf-8")
    (ignore / "c.txt").write_text("User ID\n4\n", encoding="utf-8")

    assert load_ignored_user_ids(ignore) == {"1", "2", "3"}
    assert load_ignored_user_ids(tmp_path / "missing") == set()
