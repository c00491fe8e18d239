from __future__ import annotations

from typing import Optional

import torch
from torch import Tensor

from ...config import MaskedLMParams
from ..batch import LabeledBatch

__all__ = ["MaskedLMAugmenter", "IGNORE_LABEL"]

IGNORE_LABEL = -1


class MaskedLMAugmenter:
    """Corrupt BERT-style batches for masked language modeling.

    Position ``0`` holds ``[CLS]`` and is never touched. Scanning stops at the
    first padded position; ``[SEP]`` is never selected. A selected position
    keeps its original id as label and is replaced by ``[MASK]`` with
    ``mask_prob``, by a uniformly drawn vocabulary id with ``rand_prob``, and
    left unchanged otherwise.
    """

    def __init__(
        self,
        vocab_size: int,
        mask_id: int,
        sep_id: int,
        params: Optional[MaskedLMParams] = None,
        generator: Optional[torch.Generator] = None,
    ) -> None:
        self.vocab_size = int(vocab_size)
        self.mask_id = int(mask_id)
        self.sep_id = int(sep_id)
        self.params = params if params is not None else MaskedLMParams()
        self.generator = generator

    def eligible(self, input_ids: Tensor, attention_mask: Tensor) -> Tensor:
        live = (attention_mask != 0).to(torch.long)
        live[:, 0] = 1
        # positions after the first padded slot stay excluded
        prefix = torch.cumprod(live, dim=1).bool()
        prefix[:, 0] = False
        return prefix & (input_ids != self.sep_id)

    def __call__(self, batch: LabeledBatch) -> LabeledBatch:
        input_ids = batch.data[0].clone()
        attention_mask = batch.data[2]
        eligible = self.eligible(input_ids, attention_mask)

        change = torch.rand(input_ids.shape, generator=self.generator) < self.params.change_prob
        selected = change & eligible
        labels = torch.full_like(input_ids, IGNORE_LABEL)
        labels[selected] = input_ids[selected]

        draw = torch.rand(input_ids.shape, generator=self.generator)
        to_mask = selected & (draw < self.params.mask_prob)
        to_random = (
            selected
            & ~to_mask
            & (draw < self.params.mask_prob + self.params.rand_prob)
        )
        random_ids = torch.randint(
            self.vocab_size, input_ids.shape, generator=self.generator, dtype=torch.long
        )
        input_ids[to_mask] = self.mask_id
        input_ids[to_random] = random_ids[to_random]

        return LabeledBatch(data=[input_ids, *batch.data[1:]], target=[labels])
