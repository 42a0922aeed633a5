"""Test that the project setup is working correctly."""

import entity_trend_engine


def test_version() -> None:
    """Test that version is defined."""
    assert entity_trend_engine.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from entity_trend_engine import backfill
    from entity_trend_engine import scoring
    from entity_trend_engine import source
    from entity_trend_engine import storage

    # Just verify imports work
    assert backfill is not None
    assert scoring is not None
    assert source is not None
    assert storage is not None
