from .scan_fixtures import (
    FakeClock,
    FakeProvider,
    SizedEncoder,
    make_jpeg,
    provider_status,
    signal_payload,
)
