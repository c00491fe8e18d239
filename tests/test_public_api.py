"""Smoke tests for curated public exports."""

import importlib


def test_exports_available_from_package() -> None:
    datasmith = importlib.import_module("datasmith")
    data = importlib.import_module("datasmith.data")
    pipeline = importlib.import_module("datasmith.pipeline")

    assert isinstance(datasmith.__all__, tuple)
    assert datasmith.__all__[:2] == ("data", "pipeline")

    for symbol in datasmith.__all__:
        # Accessing through __import__ emulates ``from datasmith import symbol``.
        module = __import__("datasmith", fromlist=[symbol])
        assert getattr(module, symbol) is not None

    for name in ("build_dataset", "DatasetBuilder", "BuiltDataset"):
        assert getattr(datasmith, name) is getattr(pipeline, name)
    for name in ("CorrespondenceTable", "LmdbStore", "DbAction", "split"):
        assert getattr(datasmith, name) is getattr(data, name)
        assert name in data.__all__
