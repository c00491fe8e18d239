"""Inspect a dataset repository built with ``prepare.py --data ... input.db=true``.

Prints, for the train store and every test store, the entry count, the
finalized flag and the build marker, the shapes of the first stored
example, and the size of the correspondence file.

Usage:
  python3 scripts/inspect_db.py --repo models/mnist
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from datasmith.data.correspondence import CorrespondenceTable
from datasmith.data.store import LmdbStore, TRAIN_DB, decode_tensors


def _describe(path: Path) -> Dict[str, object]:
    with LmdbStore(path, write=False) as store:
        info: Dict[str, object] = {
            "name": store.name or path.name,
            "entries": len(store),
            "finalized": store.finalized,
            "build_id": store.build_id or "-",
        }
        if len(store):
            data, target, sample_id = store.get(store.key_at(0))
            info["data_shapes"] = [tuple(t.shape) for t in decode_tensors(data)]
            info["target_shapes"] = [tuple(t.shape) for t in decode_tensors(target)]
            info["first_id"] = sample_id
    return info


def _stores(repo: Path) -> List[Path]:
    stores = [repo / TRAIN_DB] if LmdbStore.exists(repo / TRAIN_DB) else []
    stores.extend(p for p in sorted(repo.glob("test_*.db")) if LmdbStore.exists(p))
    return stores


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect a built dataset repository")
    parser.add_argument("--repo", type=Path, required=True, help="Dataset repository directory")
    parser.add_argument("--corresp", default="corresp.txt", help="Correspondence file name")
    args = parser.parse_args()
    repo = args.repo
    if not repo.exists():
        raise FileNotFoundError(f"Dataset repository '{repo}' does not exist")

    stores = _stores(repo)
    if not stores:
        print(f"No dataset store under {repo}")
    for path in stores:
        print(f"Store • {path}")
        for key, value in _describe(path).items():
            print(f"  {key}: {value}")

    corresp = repo / args.corresp
    if corresp.is_file():
        table = CorrespondenceTable.load(corresp)
        print(f"Correspondence • {corresp}: {len(table)} entries")


if __name__ == "__main__":
    main()
