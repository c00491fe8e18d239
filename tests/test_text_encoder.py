from __future__ import annotations

import logging

import pytest
import torch

from datasmith.config import MaskedLMParams
from datasmith.data.batch import collate_examples
from datasmith.data.correspondence import CorrespondenceTable
from datasmith.data.encoders import IGNORE_LABEL, MaskedLMAugmenter, TextEncoder
from datasmith.data.records import TextRecord
from datasmith.errors import BadParameterError, BuildReport

BERT_VOCAB = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]", "hello", "world", "good", "movie"]
GPT2_VOCAB = ["<pad>", "a", "b", "c", "<|endoftext|>"]


def _vocab(tokens):
    return CorrespondenceTable.from_tokens(tokens).freeze()


def test_bert_frames_sequence_and_pads() -> None:
    encoder = TextEncoder(_vocab(BERT_VOCAB), 8, "bert")

    example, length = encoder.encode(TextRecord("hello unknown world", label=1))

    ids, token_types, mask = example.data
    assert ids.tolist() == [2, 5, 1, 6, 3, 0, 0, 0]
    assert token_types.tolist() == [0] * 8
    assert mask.tolist() == [1, 1, 1, 1, 1, 0, 0, 0]
    assert length == 5
    assert example.target[0].tolist() == [1]


def test_bert_truncation_keeps_room_for_sentinels() -> None:
    encoder = TextEncoder(_vocab(BERT_VOCAB), 4, "bert")

    example, length = encoder.encode(TextRecord("hello world good movie"))

    assert example.data[0].tolist() == [2, 5, 6, 3]
    assert length == 4
    assert example.target == ()


def test_bert_decode_recovers_in_vocabulary_tokens() -> None:
    encoder = TextEncoder(_vocab(BERT_VOCAB), 10, "bert")
    text = "good movie hello world"

    example, _ = encoder.encode(TextRecord(text))

    assert encoder.decode(example.data[0], example.data[2]) == text.split()


def test_gpt2_target_is_shifted_input_plus_next_token() -> None:
    encoder = TextEncoder(_vocab(GPT2_VOCAB), 3, "gpt2")

    truncated, _ = encoder.encode(TextRecord("a b c a"))
    short, length = encoder.encode(TextRecord("a b"))

    ids, positions = truncated.data
    assert ids.tolist() == [1, 2, 3]
    assert positions.tolist() == [0, 1, 2]
    assert truncated.target[0].tolist() == [2, 3, 1]
    assert short.data[0].tolist() == [1, 2, 4]
    assert short.target[0].tolist() == [2, 4, 0]
    assert length == 3


def test_plain_skips_unknown_tokens() -> None:
    encoder = TextEncoder(_vocab(GPT2_VOCAB), 4, "plain")

    example, length = encoder.encode(TextRecord("a zz b", label=0))

    ids, mask = example.data
    assert ids.tolist() == [1, 2, 0, 0]
    assert mask.tolist() == [1, 1, 0, 0]
    assert length == 2
    assert example.target[0].tolist() == [0]


@pytest.mark.parametrize("fmt", ["plain", "gpt2"])
def test_dropped_tokens_are_reported(fmt: str, caplog: pytest.LogCaptureFixture) -> None:
    report = BuildReport()
    encoder = TextEncoder(_vocab(GPT2_VOCAB), 4, fmt, report)

    with caplog.at_level(logging.WARNING):
        encoder.encode(TextRecord("a zz b yy", source="doc.txt"))
        encoder.encode(TextRecord("a b", source="clean.txt"))

    assert report.count("unknown_token") == 1
    assert report.issues[0].source == "doc.txt"
    assert "2 token(s) not in the vocabulary" in caplog.text


def test_bert_unknown_tokens_are_not_reported() -> None:
    report = BuildReport()
    encoder = TextEncoder(_vocab(BERT_VOCAB), 8, "bert", report)

    encoder.encode(TextRecord("hello unknown world"))

    assert report.count("unknown_token") == 0


@pytest.mark.parametrize("fmt", ["bert", "gpt2"])
def test_missing_sentinels_raise(fmt: str) -> None:
    with pytest.raises(BadParameterError):
        TextEncoder(_vocab(["hello", "world"]), 8, fmt)


def _bert_batch(texts, width=8):
    encoder = TextEncoder(_vocab(BERT_VOCAB), width, "bert")
    batch = collate_examples([encoder.encode(TextRecord(t))[0] for t in texts])
    return encoder, batch


def test_masked_lm_with_certain_masking_masks_every_eligible_position() -> None:
    encoder, batch = _bert_batch(["hello world", "good movie hello"])
    params = MaskedLMParams(change_prob=1.0, mask_prob=1.0, rand_prob=0.0)
    augment = MaskedLMAugmenter(encoder.vocab_size, encoder.mask_id, encoder.sep_id, params, torch.Generator().manual_seed(0))

    out = augment(batch)

    ids = out.data[0]
    (labels,) = out.target
    original = batch.data[0]
    eligible = (batch.data[2] == 1) & (original != encoder.cls_id) & (original != encoder.sep_id)
    assert torch.all(ids[eligible] == encoder.mask_id)
    assert torch.equal(labels[eligible], original[eligible])
    assert torch.all(labels[~eligible] == IGNORE_LABEL)
    assert torch.equal(ids[~eligible], original[~eligible])
    assert torch.equal(out.data[1], batch.data[1])
    assert torch.equal(out.data[2], batch.data[2])


def test_masked_lm_never_changes_without_selection() -> None:
    encoder, batch = _bert_batch(["hello world"])
    params = MaskedLMParams(change_prob=0.0)
    augment = MaskedLMAugmenter(encoder.vocab_size, encoder.mask_id, encoder.sep_id, params)

    out = augment(batch)

    assert torch.equal(out.data[0], batch.data[0])
    assert torch.all(out.target[0] == IGNORE_LABEL)


def test_masked_lm_random_replacement_stays_in_vocabulary() -> None:
    encoder, batch = _bert_batch(["hello world good movie hello world"], width=8)
    params = MaskedLMParams(change_prob=1.0, mask_prob=0.0, rand_prob=1.0)
    augment = MaskedLMAugmenter(encoder.vocab_size, encoder.mask_id, encoder.sep_id, params, torch.Generator().manual_seed(1))

    out = augment(batch)

    assert int(out.data[0].max()) < encoder.vocab_size
    assert int(out.data[0].min()) >= 0
    assert out.data[0][0, 0] == encoder.cls_id
    assert out.data[0][0, -1] == encoder.sep_id
