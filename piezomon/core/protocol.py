"""
Wire protocol for Piezomon.

Inbound messages are JSON text frames. The device sends flat reading
objects; viewers send tagged control messages. Anything that cannot be
decoded raises MalformedMessage, which callers log and drop.

Outbound messages are JSON objects tagged by "type".
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from piezomon.core.config import MetricsConfig
from piezomon.core.readings import Mode, Reading, capacitor_energy, estimate_runtime


class MalformedMessage(ValueError):
    """An inbound payload that cannot be decoded."""


# ============================================================================
# Inbound
# ============================================================================


class DeviceMessage(BaseModel):
    """Reading as reported by the harvester firmware."""

    model_config = ConfigDict(extra="ignore")

    voltage: float = Field(allow_inf_nan=False)
    event_count: int = Field(
        ge=0,
        validation_alias=AliasChoices("eventCount", "passCount", "triggerCount"),
    )
    energy: float | None = Field(default=None, ge=0.0, allow_inf_nan=False)
    estimated_runtime: float | None = Field(
        default=None,
        allow_inf_nan=False,
        validation_alias=AliasChoices("estimatedRuntime"),
    )

    def to_reading(self, config: MetricsConfig) -> Reading:
        """Fill in missing values from the capacitor relation."""
        energy = self.energy
        if energy is None:
            energy = capacitor_energy(self.voltage, config.capacitance_farads)

        runtime = self.estimated_runtime
        if runtime is None:
            runtime = estimate_runtime(energy, config.runtime_factor)

        return Reading(
            voltage=self.voltage,
            event_count=self.event_count,
            energy=energy,
            estimated_runtime=runtime,
            mode=Mode.LIVE,
        )


class ModeRequest(BaseModel):
    type: Literal["mode"]
    mode: Mode


@dataclass(frozen=True)
class ViewerCommand:
    """Decoded viewer control message."""

    kind: str  # mode | getHistory | pong | unknown
    mode: Mode | None = None


def _load_object(data: str | bytes) -> dict[str, Any]:
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedMessage(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def decode_device_message(data: str | bytes, config: MetricsConfig | None = None) -> Reading:
    """Decode a device frame into a live Reading."""
    payload = _load_object(data)
    try:
        message = DeviceMessage.model_validate(payload)
    except ValidationError as e:
        raise MalformedMessage(f"Invalid device reading: {e.error_count()} error(s)") from e
    return message.to_reading(config or MetricsConfig())


def decode_viewer_message(data: str | bytes) -> ViewerCommand:
    """Decode a viewer control frame."""
    payload = _load_object(data)
    msg_type = payload.get("type")

    if msg_type == "mode":
        try:
            request = ModeRequest.model_validate(payload)
        except ValidationError as e:
            raise MalformedMessage(f"Invalid mode request: {payload.get('mode')!r}") from e
        return ViewerCommand(kind="mode", mode=request.mode)

    if msg_type in ("getHistory", "pong"):
        return ViewerCommand(kind=msg_type)

    return ViewerCommand(kind="unknown")


# ============================================================================
# Outbound
# ============================================================================


def data_message(snapshot: dict[str, Any]) -> dict[str, Any]:
    return {"type": "data", "data": snapshot}


def status_message(status: dict[str, Any]) -> dict[str, Any]:
    return {"type": "status", **status}


def mode_change_message(mode: Mode) -> dict[str, Any]:
    return {"type": "mode_change", "mode": mode.value}


def history_message(history: dict[str, list[Any]]) -> dict[str, Any]:
    return {"type": "history", "data": history}


PING_MESSAGE = {"type": "ping"}
