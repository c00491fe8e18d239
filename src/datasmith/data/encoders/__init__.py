from .image import (
    ImageEncoder as ImageEncoder,
    image_to_tensor as image_to_tensor,
    load_image as load_image,
    read_bboxes as read_bboxes,
)
from .masked_lm import IGNORE_LABEL as IGNORE_LABEL, MaskedLMAugmenter as MaskedLMAugmenter
from .text import TextEncoder as TextEncoder
from .timeseries import TimeSeriesWindower as TimeSeriesWindower, window_starts as window_starts

__all__ = [
    "ImageEncoder",
    "image_to_tensor",
    "load_image",
    "read_bboxes",
    "IGNORE_LABEL",
    "MaskedLMAugmenter",
    "TextEncoder",
    "TimeSeriesWindower",
    "window_starts",
]
