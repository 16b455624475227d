"""Smoke test to verify the toolchain works."""


def test_import_racing_delta():
    """Verify the racing_delta package can be imported."""
    import racing_delta

    assert racing_delta.__version__


def test_subpackages_importable():
    """Verify all subpackages can be imported."""
    import racing_delta.analysis
    import racing_delta.codec
    import racing_delta.connectors
    import racing_delta.telemetry
    import racing_delta.track

    assert racing_delta.telemetry is not None
    assert racing_delta.track is not None
    assert racing_delta.analysis is not None
    assert racing_delta.codec is not None
    assert racing_delta.connectors is not None
