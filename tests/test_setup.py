"""Test that the project setup is working correctly."""

import pioneer_tracker


def test_version() -> None:
    """Test that version is defined."""
    assert pioneer_tracker.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from pioneer_tracker import detector, ingestor, pipeline, storage
    from pioneer_tracker.alerter import dispatcher, formatter
    from pioneer_tracker.profiler import aggregator, shared_protocol

    # Just verify imports work
    assert ingestor is not None
    assert detector is not None
    assert storage is not None
    assert pipeline is not None
    assert dispatcher is not None
    assert formatter is not None
    assert aggregator is not None
    assert shared_protocol is not None
