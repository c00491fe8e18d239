"""Input configuration bundle consumed by the dataset builder."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Tuple

from omegaconf import DictConfig, OmegaConf  # type: ignore[import]

from .errors import BadParameterError

__all__ = ["InputConfig", "MaskedLMParams", "CONNECTORS", "INPUT_FORMATS"]

CONNECTORS = ("image", "text", "csvts")
INPUT_FORMATS = ("", "plain", "bert", "gpt2")


@dataclass(frozen=True)
class MaskedLMParams:
    """Probabilities driving masked-LM corruption of BERT-style batches."""

    change_prob: float = 0.15
    mask_prob: float = 0.8
    rand_prob: float = 0.1

    def __post_init__(self) -> None:
        for name in ("change_prob", "mask_prob", "rand_prob"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise BadParameterError(f"masked_lm.{name} must lie in [0, 1], got {value}")
        if self.mask_prob + self.rand_prob > 1.0:
            raise BadParameterError("masked_lm.mask_prob + masked_lm.rand_prob must not exceed 1")


@dataclass(frozen=True)
class InputConfig:
    connector: str = "image"
    model_repo: str = "."
    train: bool = True

    # shared
    height: int = 224
    width: int = 224
    test_split: float = 0.0
    seed: Optional[int] = None
    shuffle: bool = False
    db: bool = False
    db_map_size: int = 1 << 30
    correspname: str = "corresp.txt"

    # image
    bw: bool = False
    scale: float = 1.0
    mean: Optional[Tuple[float, ...]] = None
    std: Optional[Tuple[float, ...]] = None
    bbox: bool = False
    segmentation: bool = False
    ctc: bool = False

    # text
    input_format: str = ""
    vocab: Optional[str] = None
    vocab_format: str = "tokens"
    sentences: bool = False
    masked_lm: Optional[MaskedLMParams] = None

    # csv time series
    timesteps: Optional[int] = None
    backcast_timesteps: Optional[int] = None
    forecast_timesteps: Optional[int] = None
    offset: Optional[int] = None
    label_columns: Tuple[str, ...] = field(default_factory=tuple)
    ignored_columns: Tuple[str, ...] = field(default_factory=tuple)
    separator: str = ","

    def __post_init__(self) -> None:
        if self.connector not in CONNECTORS:
            raise BadParameterError(
                f"Unknown connector '{self.connector}'. Expected one of {', '.join(CONNECTORS)}."
            )
        if not 0.0 <= float(self.test_split) < 1.0:
            raise BadParameterError(f"test_split must lie in [0, 1), got {self.test_split}")
        if self.seed is not None and self.seed < 0:
            # negative seeds mean "no seed"
            object.__setattr__(self, "seed", None)
        if self.height <= 0 or self.width <= 0:
            raise BadParameterError("height and width must be positive")
        if self.input_format not in INPUT_FORMATS:
            raise BadParameterError(
                f"Unknown input_format '{self.input_format}'. Expected 'plain', 'bert' or 'gpt2'."
            )
        if self.vocab_format not in {"tokens", "corresp"}:
            raise BadParameterError("vocab_format must be 'tokens' or 'corresp'")
        if sum((self.bbox, self.segmentation, self.ctc)) > 1:
            raise BadParameterError("bbox, segmentation and ctc are mutually exclusive")
        if self.connector == "csvts":
            self._check_timesteps()

    def _check_timesteps(self) -> None:
        forecast = self.forecast_timesteps is not None or self.backcast_timesteps is not None
        if forecast:
            if self.forecast_timesteps is None or self.backcast_timesteps is None:
                raise BadParameterError(
                    "backcast_timesteps and forecast_timesteps must be given together"
                )
            if self.timesteps is not None:
                raise BadParameterError(
                    "timesteps cannot be combined with backcast_timesteps/forecast_timesteps"
                )
            if self.backcast_timesteps <= 0 or self.forecast_timesteps <= 0:
                raise BadParameterError("backcast_timesteps and forecast_timesteps must be positive")
        elif self.timesteps is None:
            raise BadParameterError("no value given to [forecast_|backcast_|]timesteps")
        elif self.timesteps <= 0:
            raise BadParameterError("timesteps must be positive")
        if self.offset is not None and self.offset <= 0:
            raise BadParameterError("offset must be positive")

    # ------------------------------------------------------------------

    @property
    def forecast(self) -> bool:
        return self.forecast_timesteps is not None

    @property
    def window(self) -> int:
        """Training window length for time-series inputs."""

        if self.forecast:
            return int(self.backcast_timesteps) + int(self.forecast_timesteps)  # type: ignore[arg-type]
        if self.timesteps is None:
            raise BadParameterError("no value given to [forecast_|backcast_|]timesteps")
        return int(self.timesteps)

    @property
    def stride(self) -> int:
        return int(self.offset) if self.offset is not None else self.window

    @property
    def repo(self) -> Path:
        return Path(self.model_repo)

    @property
    def corresp_path(self) -> Path:
        return self.repo / self.correspname

    @property
    def vocab_path(self) -> Path:
        if self.vocab is not None:
            return Path(self.vocab)
        return self.repo / "vocab.dat"

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any] | DictConfig) -> "InputConfig":
        """Build a config from a plain mapping or an OmegaConf/Hydra node.

        Unknown keys raise :class:`BadParameterError` so typos do not go
        unnoticed.
        """

        if isinstance(cfg, DictConfig):
            raw = OmegaConf.to_container(cfg, resolve=True)
        else:
            raw = dict(cfg)
        if not isinstance(raw, dict):
            raise BadParameterError("input configuration must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise BadParameterError(f"Unknown input option(s): {', '.join(unknown)}")

        kwargs = dict(raw)
        for key in ("label_columns", "ignored_columns"):
            if key in kwargs:
                kwargs[key] = _as_tuple(kwargs[key])
        for key in ("mean", "std"):
            if kwargs.get(key) is not None:
                kwargs[key] = tuple(float(v) for v in _as_tuple(kwargs[key]))
        masked_lm = kwargs.get("masked_lm")
        if isinstance(masked_lm, Mapping):
            kwargs["masked_lm"] = MaskedLMParams(**masked_lm)
        elif masked_lm is True:
            kwargs["masked_lm"] = MaskedLMParams()
        elif masked_lm is False:
            kwargs["masked_lm"] = None
        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise BadParameterError(str(exc)) from exc


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence):
        return tuple(value)
    return (value,)
