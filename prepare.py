from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from hydra import compose, initialize  # type: ignore[import]
from omegaconf import DictConfig, OmegaConf  # type: ignore[import]

sys.path.append(str(Path(__file__).resolve().parent / "src"))

from datasmith.config import CONNECTORS, InputConfig
from datasmith.errors import DatasmithError
from datasmith.pipeline import BuiltDataset, build_dataset

LOGGER = logging.getLogger(__name__)


def _override_without_value(key: str) -> ValueError:
    return ValueError(
        f"input override '{key}' has no value: write '{key}=<value>' or pass the value "
        "as the next argument (e.g. 'input.height 64')"
    )


def _pair_overrides(tokens: Sequence[str]) -> List[str]:
    """Join the ``key value`` pairs argparse leaves over into Hydra ``key=value`` overrides."""

    pairs: List[str] = []
    remaining = iter(tokens)
    for token in remaining:
        if "=" in token or token.startswith(("+", "-", "?", "~")):
            pairs.append(token)
            continue
        value = next(remaining, None)
        if value is None or "=" in value or value.startswith("-"):
            raise _override_without_value(token)
        pairs.append(f"{token}={value}")
    return pairs


def parse_args(argv: Optional[Sequence[str]] = None) -> Tuple[argparse.Namespace, List[str]]:
    parser = argparse.ArgumentParser(
        description="Build datasmith datasets from raw inputs",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--connector",
        default="image",
        choices=CONNECTORS,
        help="Input preset from configs/input.",
    )
    parser.add_argument(
        "--data",
        action="append",
        default=None,
        metavar="URI",
        help="Training source, then explicit test sources (repeatable).",
    )
    parser.add_argument(
        "--repo",
        default=None,
        help="Override input.model_repo, where stores and side files are written.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for shuffling and splitting; unset means non-reproducible.",
    )
    parser.add_argument(
        "--predict",
        action="store_true",
        help="Encode prediction inputs instead of building training partitions.",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the composed configuration and exit.",
    )
    return parser.parse_known_args(argv)


def _compose_config(args: argparse.Namespace, extra_overrides: Sequence[str]) -> DictConfig:
    overrides: List[str] = [f"input={args.connector}"]
    if args.data:
        overrides.append("data=[" + ",".join(f"'{uri}'" for uri in args.data) + "]")
    if args.repo is not None:
        overrides.append(f"input.model_repo='{args.repo}'")
    if args.seed is not None:
        overrides.append(f"input.seed={args.seed}")
    if args.predict:
        overrides.append("input.train=false")
    overrides.extend(_pair_overrides(extra_overrides))

    with initialize(config_path="configs", version_base="1.3"):
        cfg = compose(config_name="config", overrides=overrides)
    return cfg


def run_prepare(cfg: DictConfig) -> BuiltDataset:
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    config = InputConfig.from_config(cfg.input)
    uris = [str(uri) for uri in (cfg.get("data") or [])]
    LOGGER.info("Preparing %s dataset from %s into %s", config.connector, uris, config.repo)
    config.repo.mkdir(parents=True, exist_ok=True)

    dataset = build_dataset(uris, config)
    try:
        report = dataset.report
        LOGGER.info("action=%s sizes=%s", report.action, report.sizes)
        if report.issues:
            LOGGER.warning("%d record(s) skipped", len(report.issues))
        if dataset.correspondence:
            LOGGER.info("%d correspondence entries", len(dataset.correspondence))
    finally:
        dataset.close()
    return dataset


def main(argv: Optional[Sequence[str]] = None) -> None:
    args, extra = parse_args(argv)
    cfg = _compose_config(args, extra)
    if args.print_config:
        print(OmegaConf.to_yaml(cfg))
        return
    try:
        run_prepare(cfg)
    except DatasmithError as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main(sys.argv[1:])
