"""Shared fixtures: a scripted stand-in for the USB DFU transport."""

import pytest

from stm32_dfu_flasher.protocol.usb_transport import TransferResult
from stm32_dfu_flasher.protocol.dfu_protocol import DfuRequest

# bStatus OK, no poll timeout, dfuIDLE
OK_STATUS = bytes([0x00, 0x00, 0x00, 0x00, 0x02, 0x00])
# errERASE in dfuERROR
ERASE_FAULT_STATUS = bytes([0x04, 0x00, 0x00, 0x00, 0x0A, 0x00])


class FakeTransport:
    """
    Records every transport call and answers GET_STATUS from a script.

    calls holds tuples:
        ("open", vendor_id, product_id)
        ("config", n) / ("claim", n) / ("close",)
        ("out", request, value, index, data)   data is b"" for no payload
        ("in", request, value, index, length)
    """

    def __init__(self, statuses=None, fault_after=None, fault_status=ERASE_FAULT_STATUS):
        self.calls = []
        self.statuses = list(statuses or [])
        self.fault_after = fault_after
        self.fault_status = fault_status
        self.out_status = {}
        # status read number -> exception raised instead of answering
        self.read_errors = {}
        self.open_error = None
        self.close_error = None
        self.status_reads = 0
        self.open_count = 0
        self.close_count = 0
        self.is_open = False

    def open(self, vendor_id, product_id=None):
        self.calls.append(("open", vendor_id, product_id))
        if self.open_error is not None:
            raise self.open_error
        self.open_count += 1
        self.is_open = True

    def select_configuration(self, configuration):
        self.calls.append(("config", configuration))

    def claim_interface(self, interface):
        self.calls.append(("claim", interface))

    def control_transfer_out(self, request, value, index, data=None):
        payload = bytes(data) if data else b""
        self.calls.append(("out", int(request), value, index, payload))
        status = self.out_status.get(int(request), "ok")
        return TransferResult(status=status, length=len(payload) if status == "ok" else 0)

    def control_transfer_in(self, request, value, index, length):
        self.calls.append(("in", int(request), value, index, length))
        self.status_reads += 1
        if self.status_reads in self.read_errors:
            raise self.read_errors[self.status_reads]
        if self.fault_after is not None and self.status_reads > self.fault_after:
            return self.fault_status
        if self.statuses:
            return self.statuses.pop(0)
        return OK_STATUS

    def close(self):
        self.calls.append(("close",))
        self.close_count += 1
        self.is_open = False
        if self.close_error is not None:
            raise self.close_error

    # Helpers for assertions

    def outs(self, request=None):
        return [
            call for call in self.calls
            if call[0] == "out" and (request is None or call[1] == int(request))
        ]

    def dnloads(self):
        return self.outs(DfuRequest.DNLOAD)


class RecordingObserver:
    """UpdateObserver that keeps every event."""

    def __init__(self):
        self.stages = []
        self.progress = []
        self.disconnects = 0

    def on_stage(self, stage):
        self.stages.append(stage)

    def on_progress(self, percent):
        self.progress.append(percent)

    def on_disconnect(self):
        self.disconnects += 1


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def sleeps():
    """List that collects every requested delay, in seconds."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def make_transport():
    """Factory for transports with a custom status script."""
    return FakeTransport
