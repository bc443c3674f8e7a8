"""Harbor API mock for reconciler tests.

Provides an in-memory stand-in for HarborClient that records every call
the reconciler makes, so tests can assert on request order as well as on
the resulting remote state.

Usage:
    from harbor_mock import MockHarborTransport

    transport = MockHarborTransport()
    reconciler = ProjectReconciler(transport)
    reconciler.create(spec, state)

    assert transport.write_methods() == ["POST"]
"""

from .transport import MockHarborState, MockHarborTransport, RecordedCall

__all__ = [
    "MockHarborState",
    "MockHarborTransport",
    "RecordedCall",
]
