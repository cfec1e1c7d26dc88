"""Tests for the erase and program sequences."""

import struct

import pytest

from stm32_dfu_flasher.core.geometry import FlashGeometry
from stm32_dfu_flasher.protocol.dfu_protocol import (
    CMD_ERASE,
    CMD_SET_ADDRESS,
    DeviceReportedFault,
    DfuRequest,
    DfuStatusPoller,
    ImageTooLarge,
)
from stm32_dfu_flasher.protocol.dfu_sequencers import EraseSequencer, ProgramSequencer


@pytest.fixture
def geometry_128k():
    return FlashGeometry.from_specs("0x20000", "0x80")


def _decode_command(payload: bytes):
    return struct.unpack("<BI", payload)


class TestEraseSequencer:

    def test_erases_every_page_with_two_confirmations(self, transport, fake_sleep, geometry_128k):
        """128 KiB / 128-byte pages -> 1024 ERASE commands, each confirmed twice."""
        poller = DfuStatusPoller(transport, sleep=fake_sleep)
        EraseSequencer(poller).erase(geometry_128k)

        # CLRSTATUS first, then (DNLOAD, GETSTATUS, GETSTATUS) per page
        assert transport.calls[0] == ("out", DfuRequest.CLRSTATUS, 0, 0, b"")
        per_page = transport.calls[1:]
        assert len(per_page) == 1024 * 3

        addresses = []
        for i in range(0, len(per_page), 3):
            dnload, first, second = per_page[i:i + 3]
            assert dnload[:4] == ("out", DfuRequest.DNLOAD, 0, 0)
            opcode, address = _decode_command(dnload[4])
            assert opcode == CMD_ERASE
            addresses.append(address)
            assert first[:2] == ("in", DfuRequest.GETSTATUS)
            assert second[:2] == ("in", DfuRequest.GETSTATUS)

        assert addresses[0] == 0x08000000
        assert addresses[1] == 0x08000080
        assert addresses[-1] == 0x0801FF80
        assert addresses == list(range(0x08000000, 0x08020000, 0x80))

    def test_progress_counts_pages_already_erased(self, transport, fake_sleep):
        geometry = FlashGeometry.from_specs("4096", "1024")
        progress = []
        EraseSequencer(DfuStatusPoller(transport, sleep=fake_sleep), progress.append).erase(geometry)
        assert progress == [0.0, 25.0, 50.0, 75.0]

    def test_fault_stops_further_pages(self, make_transport, fake_sleep, geometry_128k):
        # Pages 0 and 1 confirm, page 2 fails on its first status read
        transport = make_transport(fault_after=4)
        poller = DfuStatusPoller(transport, sleep=fake_sleep)

        with pytest.raises(DeviceReportedFault):
            EraseSequencer(poller).erase(geometry_128k)

        assert len(transport.dnloads()) == 3
        assert transport.status_reads == 5

    def test_zero_flash_size_erases_nothing(self, transport, fake_sleep):
        geometry = FlashGeometry.from_specs(0, 128)
        EraseSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).erase(geometry)
        assert transport.dnloads() == []


class TestProgramSequencer:

    def test_4096_byte_image_sends_blocks_2_and_3(self, transport, fake_sleep, geometry_128k):
        image = bytes(range(256)) * 16
        ProgramSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).program(image, geometry_128k)

        dnloads = transport.dnloads()
        assert len(dnloads) == 3

        set_address = dnloads[0]
        assert set_address[2] == 0
        assert _decode_command(set_address[4]) == (CMD_SET_ADDRESS, 0x08000000)

        assert [call[2] for call in dnloads[1:]] == [2, 3]
        assert dnloads[1][4] == image[:2048]
        assert dnloads[2][4] == image[2048:]

    def test_every_dnload_is_confirmed_twice(self, transport, fake_sleep, geometry_128k):
        ProgramSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).program(
            bytes(4096), geometry_128k
        )
        kinds = [call[0] for call in transport.calls]
        assert kinds == ["out", "in", "in"] * 3

    def test_5000_byte_image_pads_third_block(self, transport, fake_sleep, geometry_128k):
        image = bytes([0x5A]) * 5000
        ProgramSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).program(image, geometry_128k)

        blocks = transport.dnloads()[1:]
        assert [call[2] for call in blocks] == [2, 3, 4]
        third = blocks[2][4]
        assert len(third) == 2048
        assert third[:904] == bytes([0x5A]) * 904
        assert third[904:] == bytes(1144)

    def test_image_too_large_fails_before_any_transfer(self, transport, fake_sleep, geometry_128k):
        image = bytes(135168)
        with pytest.raises(ImageTooLarge) as excinfo:
            ProgramSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).program(image, geometry_128k)

        assert transport.calls == []
        assert excinfo.value.image_size == 135168
        assert excinfo.value.flash_size == 131072

    def test_padded_image_must_fit(self, transport, fake_sleep):
        """3000 bytes pads to 4096, which does not fit in 3 KiB."""
        geometry = FlashGeometry.from_specs("3072", "1024")
        with pytest.raises(ImageTooLarge):
            ProgramSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).program(
                bytes(3000), geometry
            )
        assert transport.calls == []

    def test_progress_reports_blocks_then_100(self, transport, fake_sleep, geometry_128k):
        progress = []
        ProgramSequencer(
            DfuStatusPoller(transport, sleep=fake_sleep), progress.append
        ).program(bytes(8192), geometry_128k)
        assert progress == [0.0, 25.0, 50.0, 75.0, 100.0]

    def test_fault_stops_further_blocks(self, make_transport, fake_sleep, geometry_128k):
        # SET_ADDRESS confirms, block 0 fails on its second status read
        transport = make_transport(fault_after=3)
        with pytest.raises(DeviceReportedFault):
            ProgramSequencer(DfuStatusPoller(transport, sleep=fake_sleep)).program(
                bytes(8192), geometry_128k
            )
        assert len(transport.dnloads()) == 2
