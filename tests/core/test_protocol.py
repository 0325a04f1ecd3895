"""Tests for the wire protocol."""

import json

import pytest

from piezomon.core.config import MetricsConfig
from piezomon.core.protocol import (
    PING_MESSAGE,
    MalformedMessage,
    data_message,
    decode_device_message,
    decode_viewer_message,
    history_message,
    mode_change_message,
    status_message,
)
from piezomon.core.readings import Mode


class TestDecodeDeviceMessage:
    """Tests for device frames."""

    def test_full_reading(self):
        frame = json.dumps(
            {"voltage": 3.3, "eventCount": 12, "energy": 0.0042, "estimatedRuntime": 16.8}
        )

        reading = decode_device_message(frame)

        assert reading.voltage == 3.3
        assert reading.event_count == 12
        assert reading.energy == 0.0042
        assert reading.estimated_runtime == 16.8
        assert reading.mode == Mode.LIVE

    @pytest.mark.parametrize("alias", ["eventCount", "passCount", "triggerCount"])
    def test_event_count_aliases(self, alias):
        reading = decode_device_message(json.dumps({"voltage": 3.0, alias: 7, "energy": 0.001}))

        assert reading.event_count == 7

    def test_missing_energy_uses_capacitor_relation(self):
        """Energy defaults to 1/2 C V^2 when the firmware omits it."""
        config = MetricsConfig(capacitance_farads=0.002)

        reading = decode_device_message(json.dumps({"voltage": 3.0, "eventCount": 1}), config)

        assert reading.energy == pytest.approx(0.5 * 0.002 * 9.0)
        assert reading.estimated_runtime == pytest.approx(reading.energy * 4000)

    def test_missing_runtime_uses_factor(self):
        config = MetricsConfig(runtime_factor=1000)

        reading = decode_device_message(
            json.dumps({"voltage": 3.0, "eventCount": 1, "energy": 0.01}), config
        )

        assert reading.estimated_runtime == pytest.approx(10.0)

    def test_bytes_frame(self):
        reading = decode_device_message(b'{"voltage": 3.1, "eventCount": 2, "energy": 0.0}')

        assert reading.voltage == 3.1

    def test_unknown_fields_ignored(self):
        frame = json.dumps({"voltage": 3.1, "eventCount": 2, "energy": 0.0, "rssi": -60})

        assert decode_device_message(frame).event_count == 2

    @pytest.mark.parametrize(
        "frame",
        [
            "not json",
            "[1, 2, 3]",
            "42",
            json.dumps({"eventCount": 1}),
            json.dumps({"voltage": 3.0}),
            json.dumps({"voltage": "high", "eventCount": 1}),
            json.dumps({"voltage": 3.0, "eventCount": -1}),
            json.dumps({"voltage": 3.0, "eventCount": 1, "energy": -0.5}),
        ],
    )
    def test_malformed(self, frame):
        with pytest.raises(MalformedMessage):
            decode_device_message(frame)

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            decode_device_message("{")


class TestDecodeViewerMessage:
    """Tests for viewer control frames."""

    @pytest.mark.parametrize("mode", [Mode.LIVE, Mode.DEMO])
    def test_mode_request(self, mode):
        command = decode_viewer_message(json.dumps({"type": "mode", "mode": mode.value}))

        assert command.kind == "mode"
        assert command.mode == mode

    def test_invalid_mode_rejected(self):
        with pytest.raises(MalformedMessage):
            decode_viewer_message(json.dumps({"type": "mode", "mode": "turbo"}))

    def test_get_history(self):
        assert decode_viewer_message('{"type": "getHistory"}').kind == "getHistory"

    def test_pong(self):
        assert decode_viewer_message('{"type": "pong"}').kind == "pong"

    @pytest.mark.parametrize("frame", ['{"type": "dance"}', "{}", '{"voltage": 3.3}'])
    def test_unknown_types(self, frame):
        command = decode_viewer_message(frame)

        assert command.kind == "unknown"
        assert command.mode is None

    def test_invalid_json(self):
        with pytest.raises(MalformedMessage):
            decode_viewer_message("{{")


class TestOutboundMessages:
    """Tests for outbound builders."""

    def test_data_message(self):
        assert data_message({"voltage": 3.3}) == {"type": "data", "data": {"voltage": 3.3}}

    def test_status_message(self):
        message = status_message({"deviceConnected": False, "deviceLastSeen": None})

        assert message == {"type": "status", "deviceConnected": False, "deviceLastSeen": None}

    def test_mode_change_message(self):
        assert mode_change_message(Mode.DEMO) == {"type": "mode_change", "mode": "demo"}

    def test_history_message(self):
        history = {"timestamps": [], "voltage": []}

        assert history_message(history) == {"type": "history", "data": history}

    def test_ping(self):
        assert PING_MESSAGE == {"type": "ping"}
