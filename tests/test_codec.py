"""
Tests for the spring vending frame codec.
"""

import pytest

from prize_vending.core.exceptions import ConfigurationError, HardwareFault, ProtocolError
from prize_vending.core.value_objects import VendingErrorCode
from prize_vending.devices.vending.codec import (
    FrameDecoder,
    LegacyResponseDecoder,
    SelfCheckResult,
    ShipmentFailure,
    ShipmentSuccess,
    ShippingStarted,
    SlotStatus,
    Unknown,
    build_frame,
    checksum,
    encode_legacy_command,
    hardware_fault,
    parse_frame,
    parse_legacy_response,
)
from prize_vending.devices.vending.constants import ERROR_DESCRIPTIONS, Opcode, describe_error

from conftest import legacy_response, response_frame


# =============================================================================
# Outbound Tests
# =============================================================================


class TestLegacyCommand:
    """Tests for the six-byte legacy drive command."""

    def test_slot_24(self):
        """Test the documented frame for slot 24."""
        assert encode_legacy_command(24) == bytes([0x00, 0xFF, 0x18, 0xE7, 0xAA, 0x55])

    @pytest.mark.parametrize("slot", range(1, 81))
    def test_complement_byte_for_every_slot(self, slot):
        """Test slot and complement always sum to 0xFF."""
        command = encode_legacy_command(slot)
        assert len(command) == 6
        assert command[:2] == b"\x00\xff"
        assert command[2] == slot
        assert (command[2] + command[3]) & 0xFF == 0xFF
        assert command[4:] == b"\xaa\x55"

    @pytest.mark.parametrize("slot", [0, 81, -1, 255, True, "5", 5.0])
    def test_out_of_range_rejected(self, slot):
        """Test invalid slots raise before anything is built."""
        with pytest.raises(ConfigurationError):
            encode_legacy_command(slot)


class TestBuildFrame:
    """Tests for enhanced protocol commands."""

    def test_machine_command(self):
        """Test a command without channel."""
        assert build_frame(Opcode.SELF_CHECK) == bytes([0x30, 0x30, 0xAA, 0x55])

    def test_channel_command(self):
        """Test a channel-addressed command carries the checksum."""
        frame = build_frame(Opcode.SHIP, 24)
        assert frame == bytes([0x11, 24, (0x11 + 24) & 0xFF, 0xAA, 0x55])

    def test_checksum_wraps(self):
        """Test the checksum keeps the low byte."""
        assert checksum(bytes([0xFF, 0x02])) == 0x01

    def test_invalid_channel_rejected(self):
        """Test the channel range is enforced."""
        with pytest.raises(ConfigurationError):
            build_frame(Opcode.SHIP, 0)


# =============================================================================
# Inbound Tests
# =============================================================================


class TestParseFrame:
    """Tests for inbound enhanced frames."""

    def test_slot_status_with_product(self):
        frame = parse_frame(response_frame(0x81, 5, status=0, error=0))
        assert frame == SlotStatus(channel=5, has_product=True, error_code=VendingErrorCode.NORMAL)

    def test_slot_status_empty(self):
        frame = parse_frame(response_frame(0x81, 5, status=1, error=4))
        assert frame.has_product is False
        assert frame.error_code == VendingErrorCode.NO_SHIPMENT_DETECTED

    def test_shipping_variants(self):
        """Test status byte selects started, success or failure."""
        assert parse_frame(response_frame(0x91, 7, status=1)) == ShippingStarted(channel=7)
        assert parse_frame(response_frame(0x91, 7, status=2)) == ShipmentSuccess(channel=7)
        failure = parse_frame(response_frame(0x91, 7, status=3, error=100))
        assert failure == ShipmentFailure(channel=7, error_code=VendingErrorCode.MOTOR_OPEN_CIRCUIT)

    def test_self_check(self):
        ok = parse_frame(response_frame(0xA1, 0))
        assert ok == SelfCheckResult(channel=0, success=True, error_code=VendingErrorCode.NORMAL)
        bad = parse_frame(response_frame(0xA1, 0, error=72))
        assert bad.success is False

    def test_unknown_error_byte_folded(self):
        """Test undocumented error bytes map to the out-of-range code."""
        frame = parse_frame(response_frame(0x81, 1, status=1, error=0x77))
        assert frame.error_code == VendingErrorCode.ERROR_CODE_OUT_OF_RANGE

    def test_unknown_code(self):
        raw = response_frame(0xEE, 3)
        frame = parse_frame(raw)
        assert isinstance(frame, Unknown)
        assert frame.channel == 3

    def test_bad_checksum(self):
        raw = bytearray(response_frame(0x81, 5))
        raw[4] ^= 0xFF
        with pytest.raises(ProtocolError):
            parse_frame(bytes(raw))

    def test_bad_trailer(self):
        raw = response_frame(0x81, 5)[:5] + b"\x00\x00"
        with pytest.raises(ProtocolError):
            parse_frame(raw)

    def test_bad_length(self):
        with pytest.raises(ProtocolError):
            parse_frame(b"\x81\x05")


class TestFrameDecoder:
    """Tests for stream reassembly."""

    def test_split_across_chunks(self):
        decoder = FrameDecoder()
        raw = response_frame(0x81, 5)
        assert decoder.feed(raw[:3]) == []
        assert decoder.feed(raw[3:]) == [raw]

    def test_two_frames_in_one_chunk(self):
        decoder = FrameDecoder()
        first, second = response_frame(0x81, 5), response_frame(0x91, 5, status=2)
        assert decoder.feed(first + second) == [first, second]

    def test_resync_after_garbage(self):
        """Test leading noise is skipped until the trailer lines up."""
        decoder = FrameDecoder()
        raw = response_frame(0xA1, 0)
        assert decoder.feed(b"\x01\x02\x03" + raw) == [raw]

    def test_overflow_clears_buffer(self):
        decoder = FrameDecoder()
        assert decoder.feed(bytes(300)) == []
        raw = response_frame(0x81, 1)
        assert decoder.feed(raw) == [raw]


# =============================================================================
# Legacy Response Tests
# =============================================================================


class TestLegacyResponse:
    """Tests for legacy drive responses."""

    def test_documented_success_frame(self):
        """Test the delivered response 00 5D 00 AA 07."""
        result = parse_legacy_response(bytes([0x00, 0x5D, 0x00, 0xAA, 0x07]))
        assert result.delivered is True
        assert result.error_code == VendingErrorCode.NORMAL

    def test_motor_ok_nothing_dropped(self):
        result = parse_legacy_response(legacy_response(motor=0x5D, drop=0x01))
        assert result.delivered is False
        assert result.error_code == VendingErrorCode.NO_SHIPMENT_DETECTED

    def test_motor_fault(self):
        result = parse_legacy_response(legacy_response(motor=0x00, drop=100))
        assert result.error_code == VendingErrorCode.MOTOR_OPEN_CIRCUIT

    def test_bad_checksum(self):
        with pytest.raises(ProtocolError):
            parse_legacy_response(bytes([0x00, 0x5D, 0x00, 0xAA, 0x08]))

    def test_decoder_skips_noise(self):
        decoder = LegacyResponseDecoder()
        raw = legacy_response()
        assert decoder.feed(b"\x55" + raw[:2]) == []
        assert decoder.feed(raw[2:]) == [raw]


# =============================================================================
# Error Description Tests
# =============================================================================


class TestErrorDescriptions:
    """Tests for operator-facing fault information."""

    def test_every_code_described(self):
        assert set(ERROR_DESCRIPTIONS) == set(VendingErrorCode)

    def test_hardware_fault_fields(self):
        fault = hardware_fault(VendingErrorCode.MOTOR_SHORT_CIRCUIT, channel=12)
        assert isinstance(fault, HardwareFault)
        assert fault.code == "MOTOR_SHORT_CIRCUIT"
        assert fault.error_code == 72
        assert fault.severity == "critical"
        assert fault.channel == 12
        assert "channel 12" in fault.message
        assert fault.to_dict()["details"]["suggested_action"] == (
            describe_error(VendingErrorCode.MOTOR_SHORT_CIRCUIT).suggested_action
        )
