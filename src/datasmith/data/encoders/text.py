"""Whitespace-token text encoders for plain, BERT-style and GPT-2-style inputs."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import torch
from torch import Tensor

from ...errors import BadParameterError, BuildReport
from ..batch import Example
from ..correspondence import CorrespondenceTable
from ..records import NO_TARGET, TextRecord

__all__ = ["TextEncoder", "CLS", "SEP", "UNK", "MASK", "EOT"]

LOGGER = logging.getLogger(__name__)

CLS = "[CLS]"
SEP = "[SEP]"
UNK = "[UNK]"
MASK = "[MASK]"
EOT = "<|endoftext|>"


class TextEncoder:
    """Map whitespace tokens through ``vocab`` into fixed-width id tensors.

    ``input_format`` selects the emitted tensors:

    * ``plain``: ``(ids, attention_mask)``, unknown tokens dropped
    * ``bert``: ``(ids, token_type_ids, attention_mask)`` framed by
      ``[CLS]``/``[SEP]``, unknown tokens mapped to ``[UNK]``
    * ``gpt2``: ``(ids, position_ids)``; the first target is the input
      shifted by one plus the token that followed the truncation point,
      unknown tokens dropped

    Dropped tokens are reported as ``unknown_token`` issues on ``report``.
    """

    def __init__(
        self,
        vocab: CorrespondenceTable,
        width: int,
        input_format: str = "plain",
        report: Optional[BuildReport] = None,
    ) -> None:
        if input_format == "":
            input_format = "plain"
        if input_format not in {"plain", "bert", "gpt2"}:
            raise BadParameterError(f"unknown text input format '{input_format}'")
        if width <= 0:
            raise BadParameterError(f"sequence width must be positive, got {width}")
        if input_format == "bert" and width < 3:
            raise BadParameterError("bert inputs need a width of at least 3")
        self.vocab = vocab
        self.width = int(width)
        self.input_format = input_format
        self.report = report if report is not None else BuildReport()

        self.cls_id = self.sep_id = self.unk_id = self.mask_id = self.eot_id = -1
        if input_format == "bert":
            self.cls_id = self._sentinel(CLS)
            self.sep_id = self._sentinel(SEP)
            self.unk_id = self._sentinel(UNK)
            self.mask_id = self._sentinel(MASK)
        elif input_format == "gpt2":
            self.eot_id = self._sentinel(EOT)

    def _sentinel(self, token: str) -> int:
        index = self.vocab.get(token)
        if index is None:
            raise BadParameterError(
                f"vocabulary lacks the {token} token required by {self.input_format} inputs"
            )
        return index

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)

    def _token_ids(self, text: str) -> Tuple[List[int], int, int]:
        ids: List[int] = []
        dropped = 0
        tokens = iter(text.split())
        for token in tokens:
            index = self.vocab.get(token)
            if index is not None:
                ids.append(index)
            elif self.input_format == "bert":
                ids.append(self.unk_id)
            else:
                dropped += 1
            if len(ids) >= self.width:
                break
        last_token = 0
        following = next(tokens, None)
        if following is not None:
            last_token = self.vocab.get(following, 0) or 0
        return ids, last_token, dropped

    def encode(self, record: TextRecord) -> Tuple[Example, int]:
        """Return the encoded example and its unpadded sequence length."""

        ids, last_token, dropped = self._token_ids(record.text)
        if dropped:
            self.report.warn(
                "unknown_token",
                record.source or "<text>",
                f"{dropped} token(s) not in the vocabulary, dropped",
                logger=LOGGER,
            )
        if self.input_format == "bert":
            del ids[self.width - 2 :]
            ids = [self.cls_id, *ids, self.sep_id]
        elif self.input_format == "gpt2" and len(ids) < self.width:
            ids.append(self.eot_id)

        length = len(ids)
        ids_tensor = torch.zeros(self.width, dtype=torch.long)
        mask = torch.zeros(self.width, dtype=torch.long)
        if length:
            ids_tensor[:length] = torch.tensor(ids, dtype=torch.long)
            mask[:length] = 1

        target: List[Tensor] = []
        if record.label != NO_TARGET:
            target.append(torch.tensor([record.label], dtype=torch.long))

        if self.input_format == "bert":
            data: Tuple[Tensor, ...] = (ids_tensor, torch.zeros(self.width, dtype=torch.long), mask)
        elif self.input_format == "gpt2":
            data = (ids_tensor, torch.arange(self.width, dtype=torch.long))
            shifted = torch.cat([ids_tensor[1:], torch.tensor([last_token], dtype=torch.long)])
            target.insert(0, shifted)
        else:
            data = (ids_tensor, mask)
        return Example(data, tuple(target)), length

    def decode(self, ids: Sequence[int] | Tensor, mask: Sequence[int] | Tensor | None = None) -> List[str]:
        """Map ids back to tokens, dropping padding and sentinel tokens."""

        id_list = ids.tolist() if isinstance(ids, Tensor) else list(ids)
        if mask is None:
            mask_list = [1] * len(id_list)
        else:
            mask_list = mask.tolist() if isinstance(mask, Tensor) else list(mask)
        sentinels = {self.cls_id, self.sep_id, self.eot_id}
        tokens: List[str] = []
        for index, keep in zip(id_list, mask_list):
            if not keep or index in sentinels:
                continue
            tokens.append(self.vocab.name(index))
        return tokens
