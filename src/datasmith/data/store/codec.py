from __future__ import annotations

from typing import List, Sequence

import torch
from safetensors.torch import load, save

__all__ = ["encode_tensors", "decode_tensors"]


def encode_tensors(tensors: Sequence[torch.Tensor]) -> bytes:
    """Serialize an ordered list of tensors into one safetensors blob.

    Tensors are detached and moved to CPU first. An empty list encodes to
    ``b""`` so examples without targets cost nothing in the store.
    """

    if not tensors:
        return b""
    payload = {str(i): t.detach().cpu().contiguous() for i, t in enumerate(tensors)}
    return save(payload)


def decode_tensors(blob: bytes) -> List[torch.Tensor]:
    """Inverse of :func:`encode_tensors`, preserving the original order."""

    if not blob:
        return []
    loaded = load(bytes(blob))
    return [loaded[str(i)] for i in range(len(loaded))]
