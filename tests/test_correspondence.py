from __future__ import annotations

from pathlib import Path

import pytest

from datasmith.data.correspondence import CorrespondenceTable
from datasmith.errors import BadParameterError, IOFailureError


def test_add_allocates_indices_in_first_seen_order() -> None:
    table = CorrespondenceTable()

    assert table.add("cat") == 0
    assert table.add("dog") == 1
    assert table.add("cat") == 0
    assert table.names() == ["cat", "dog"]
    assert table.index("dog") == 1
    assert table.name(0) == "cat"
    assert "cat" in table and "bird" not in table


def test_frozen_table_rejects_new_names() -> None:
    table = CorrespondenceTable([(0, "cat")]).freeze()

    assert table.add("cat") == 0
    with pytest.raises(BadParameterError):
        table.add("dog")


def test_save_and_load_preserve_names_with_spaces(tmp_path: Path) -> None:
    table = CorrespondenceTable()
    for name in ("", "a", " ", "new york"):
        table.add(name)
    path = tmp_path / "repo" / "corresp.txt"

    table.save(path)
    loaded = CorrespondenceTable.load(path)

    assert path.read_text(encoding="utf-8") == "0 \n1 a\n2  \n3 new york\n"
    assert loaded == table
    assert loaded.frozen


def test_load_reports_malformed_lines(tmp_path: Path) -> None:
    path = tmp_path / "corresp.txt"
    path.write_text("0 cat\nx dog\n", encoding="utf-8")

    with pytest.raises(BadParameterError, match=":2:"):
        CorrespondenceTable.load(path)


def test_load_missing_file_is_an_io_failure(tmp_path: Path) -> None:
    with pytest.raises(IOFailureError):
        CorrespondenceTable.load(tmp_path / "missing.txt")


def test_token_list_positions_are_indices(tmp_path: Path) -> None:
    path = tmp_path / "vocab.txt"
    path.write_text("[PAD]\n[UNK]\nhello\nworld\n", encoding="utf-8")

    vocab = CorrespondenceTable.load_token_list(path)

    assert vocab.index("hello") == 2
    assert len(vocab) == 4
    assert vocab.frozen

    out = tmp_path / "copy.txt"
    vocab.save_token_list(out)
    assert CorrespondenceTable.load_token_list(out) == vocab
