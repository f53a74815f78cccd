"""Test that the project setup is working correctly."""

import octaneshift_monitor


def test_version() -> None:
    """Test that version is defined."""
    assert octaneshift_monitor.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from octaneshift_monitor import alerter, health, monitor, pipeline

    # Just verify imports work
    assert alerter is not None
    assert monitor is not None
    assert health is not None
    assert pipeline is not None
