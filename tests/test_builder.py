from __future__ import annotations

import shutil
from pathlib import Path

import pytest
import torch

from conftest import write_image, write_lines
from datasmith.config import InputConfig, MaskedLMParams
from datasmith.data.encoders import IGNORE_LABEL
from datasmith.data.records import TextRecord
from datasmith.data.split import DbAction
from datasmith.errors import BadParameterError, BuildReport, IOFailureError
from datasmith.pipeline import DatasetBuilder, ImageSource, TextSource, build_dataset

BERT_TOKENS = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]", "good", "bad", "movie", "awful"]


def _image_config(repo: Path, **overrides) -> InputConfig:
    options = dict(connector="image", model_repo=str(repo), height=4, width=4, test_split=0.2)
    options.update(overrides)
    return InputConfig(**options)


def test_in_memory_image_build_splits_the_tail(image_folder: Path, tmp_path: Path) -> None:
    repo = tmp_path / "repo"

    dataset = build_dataset([str(image_folder)], _image_config(repo))

    assert len(dataset.train) == 16
    assert dataset.tests.names == ["split"]
    assert len(dataset.tests[0]) == 4
    assert [int(example.target[0]) for example in dataset.tests[0]] == [1, 1, 1, 1]
    assert (repo / "corresp.txt").read_text(encoding="utf-8") == "0 cat\n1 dog\n"
    assert [len(batch) for batch in dataset.train_batches(5, shuffle=False)] == [5, 5, 5, 1]
    assert dataset.report.action == "memory"
    assert dataset.report.sizes == {"train": 16, "split": 4}
    assert dataset.transform is None


def test_seeded_shuffle_is_reproducible(image_folder: Path, tmp_path: Path) -> None:
    config = _image_config(tmp_path / "repo", shuffle=True, seed=4)

    first = build_dataset([str(image_folder)], config)
    second = build_dataset([str(image_folder)], config)

    assert first.train.ids == second.train.ids
    assert sorted(first.train.ids + first.tests[0].ids) == sorted(
        str(p) for p in image_folder.rglob("*.png")
    )


def test_explicit_test_folder_is_named_after_its_directory(image_folder: Path, tmp_path: Path) -> None:
    valid = tmp_path / "valid"
    write_image(valid / "dog" / "d.png")
    write_image(valid / "bird" / "b.png")

    dataset = build_dataset([str(image_folder), str(valid)], _image_config(tmp_path / "repo"))

    assert len(dataset.train) == 20
    assert dataset.tests.names == ["valid"]
    assert len(dataset.tests[0]) == 1
    assert dataset.report.count("unknown_class") == 1


def test_store_lifecycle_rebuild_reuse_resplit_skip(image_folder: Path, tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    config = _image_config(repo, db=True, db_map_size=1 << 22)

    built = build_dataset([str(image_folder)], config)
    assert built.action is DbAction.REBUILD
    assert built.report.sizes == {"train": 16, "split": 4}
    assert built.train.finalized and built.tests[0].finalized
    first_batch = next(built.train_batches(4, shuffle=False))
    assert first_batch.data[0].shape == (4, 3, 4, 4)
    built.close()

    reused = build_dataset([str(image_folder)], config)
    assert reused.action is DbAction.REUSE
    assert reused.report.sizes == {"train": 16, "split": 4}
    reused.close()

    shutil.rmtree(repo / "test_0.db")
    resplit = build_dataset([str(image_folder)], config)
    assert resplit.action is DbAction.RESPLIT
    assert resplit.report.sizes == {"train": 13, "split": 3}
    assert not set(resplit.train.ids) & set(resplit.tests[0].ids)
    resplit.close()

    skipped = build_dataset([str(repo / "train.db")], config)
    assert skipped.action is DbAction.SKIP
    assert skipped.tests.names == ["split"]
    assert skipped.report.sizes == {"train": 13, "split": 3}
    assert skipped.correspondence.names() == ["cat", "dog"]
    assert skipped.input_example().data[0].shape == (1, 3, 4, 4)
    skipped.close()


def test_failed_build_removes_partial_stores(image_folder: Path, tmp_path: Path) -> None:
    (image_folder / "cat" / "broken.png").write_bytes(b"not an image")
    repo = tmp_path / "repo"

    with pytest.raises(IOFailureError):
        build_dataset([str(image_folder)], _image_config(repo, db=True, db_map_size=1 << 22))

    assert not (repo / "train.db").exists()
    assert not (repo / "test_0.db").exists()


def test_image_prediction_keeps_original_sizes(tmp_path: Path) -> None:
    inputs = tmp_path / "predict"
    write_image(inputs / "a.png", size=(8, 6))
    write_image(inputs / "nested" / "b.png", size=(5, 7))
    (inputs / "notes.txt").write_text("ignored", encoding="utf-8")
    config = _image_config(tmp_path / "repo", train=False, test_split=0.0)
    source = ImageSource(config)

    dataset = DatasetBuilder(source, config).build([str(inputs)])

    assert dataset.train.name == "predict"
    assert len(dataset.train) == 2
    assert len(dataset.tests) == 0
    assert source.original_sizes == {
        str(inputs / "a.png"): (6, 8),
        str(inputs / "nested" / "b.png"): (7, 5),
    }
    assert dataset.transform is None


def _text_corpus(root: Path) -> Path:
    write_lines(root / "neg" / "a.txt", ["bad movie", "awful movie"])
    write_lines(root / "pos" / "b.txt", ["good movie"])
    write_lines(root / "pos" / "c.txt", ["good good movie"])
    return root


def test_plain_text_build_creates_vocabulary_then_predicts(tmp_path: Path) -> None:
    corpus = _text_corpus(tmp_path / "corpus")
    repo = tmp_path / "repo"
    config = InputConfig(connector="text", model_repo=str(repo), width=4)

    dataset = build_dataset([str(corpus)], config)

    assert (repo / "vocab.dat").read_text(encoding="utf-8").split() == ["bad", "movie", "awful", "good"]
    assert dataset.correspondence.names() == ["neg", "pos"]
    assert len(dataset.train) == 3
    assert dataset.train.lengths == [4, 2, 3]
    assert [int(example.target[0]) for example in dataset.train] == [0, 1, 1]

    predict = build_dataset(
        ["good unknown movie"],
        InputConfig(connector="text", model_repo=str(repo), width=4, train=False),
    )
    (example,) = list(predict.train)
    assert example.data[0].tolist() == [3, 1, 0, 0]
    assert example.target == ()
    assert predict.report.count("unknown_token") == 1


def test_text_source_must_be_prepared_before_encoding(tmp_path: Path) -> None:
    source = TextSource(InputConfig(connector="text", model_repo=str(tmp_path / "repo")))

    with pytest.raises(BadParameterError, match="before prepare"):
        source.encode(TextRecord("good movie"), train_partition=True)


def test_bert_build_applies_masked_lm_to_training_batches(tmp_path: Path) -> None:
    corpus = _text_corpus(tmp_path / "corpus")
    vocab = write_lines(tmp_path / "vocab.txt", BERT_TOKENS)
    config = InputConfig(
        connector="text",
        model_repo=str(tmp_path / "repo"),
        width=6,
        input_format="bert",
        vocab=str(vocab),
        seed=0,
        masked_lm=MaskedLMParams(change_prob=1.0, mask_prob=1.0, rand_prob=0.0),
    )

    dataset = build_dataset([str(corpus)], config)
    (batch,) = list(dataset.train_batches(8, shuffle=False))

    ids, _, mask = batch.data
    (labels,) = batch.target
    assert ids[:, 0].tolist() == [2, 2, 2]
    assert torch.all(ids[labels != IGNORE_LABEL] == 4)
    assert int((labels != IGNORE_LABEL).sum()) == int(mask.sum()) - 2 * 3
    assert not (tmp_path / "repo" / "vocab.dat").exists()


def test_csv_forecast_build(tmp_path: Path) -> None:
    rows = [f"{i},{i * 2}" for i in range(10)]
    write_lines(tmp_path / "ts" / "a.csv", ["x,y", *rows])
    write_lines(tmp_path / "ts" / "b.csv", ["x,y", *rows])
    write_lines(tmp_path / "ts" / "tiny.csv", ["x,y", "1,2"])
    report = BuildReport()
    config = InputConfig(
        connector="csvts",
        model_repo=str(tmp_path / "repo"),
        backcast_timesteps=3,
        forecast_timesteps=2,
    )

    dataset = build_dataset([str(tmp_path / "ts")], config, report=report)

    assert len(dataset.train) == 4
    assert dataset.correspondence.names() == ["x", "y"]
    assert report.count("short_sequence") == 1
    example = dataset.train[1]
    assert example.data[0].shape == (3, 2)
    assert example.target[0].tolist() == [[8.0, 16.0], [9.0, 18.0]]
    assert dataset.train.ids[1] == f"{tmp_path / 'ts' / 'a.csv'} #5_9"


def test_explicit_test_folder_replaces_a_stored_auto_split(image_folder: Path, tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    config = _image_config(repo, db=True, db_map_size=1 << 22)
    build_dataset([str(image_folder)], config).close()
    valid = tmp_path / "valid"
    for i in range(7):
        write_image(valid / ("cat" if i < 3 else "dog") / f"v{i}.png")

    dataset = build_dataset([str(image_folder), str(valid)], config)

    assert dataset.action is DbAction.REBUILD
    assert dataset.report.sizes == {"train": 20, "valid": 7}
    assert all(sample_id.startswith(str(valid)) for sample_id in dataset.tests[0].ids)
    dataset.close()


def test_plain_vocabulary_follows_the_current_corpus(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    config = InputConfig(connector="text", model_repo=str(repo), width=4)
    write_lines(tmp_path / "first.txt", ["alpha beta"])
    write_lines(tmp_path / "second.txt", ["gamma delta"])

    build_dataset([str(tmp_path / "first.txt")], config)
    dataset = build_dataset([str(tmp_path / "second.txt")], config)

    assert (repo / "vocab.dat").read_text(encoding="utf-8").split() == ["gamma", "delta"]
    assert dataset.train[0].data[0].tolist() == [0, 1, 0, 0]
    assert dataset.train.lengths == [2]
    assert dataset.report.count("unknown_token") == 0


def test_text_lengths_are_kept_by_reused_and_resplit_stores(tmp_path: Path) -> None:
    corpus = _text_corpus(tmp_path / "corpus")
    repo = tmp_path / "repo"
    config = InputConfig(
        connector="text", model_repo=str(repo), width=4, db=True, db_map_size=1 << 22, test_split=0.5
    )

    built = build_dataset([str(corpus)], config)
    assert built.train.lengths == [4, 2]
    assert built.tests[0].lengths == [3]
    built.close()

    reused = build_dataset([str(corpus)], config)
    assert reused.action is DbAction.REUSE
    assert reused.train.lengths == [4, 2]
    assert reused.tests[0].lengths == [3]
    reused.close()

    shutil.rmtree(repo / "test_0.db")
    resplit = build_dataset([str(corpus)], config)
    assert resplit.action is DbAction.RESPLIT
    assert len(resplit.tests[0].lengths) == 1
    assert sorted(resplit.train.lengths + resplit.tests[0].lengths) == [2, 4]
    resplit.close()
