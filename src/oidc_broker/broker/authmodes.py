"""Authentication modes the broker can offer.

Mode identifiers are part of the external contract with the login daemon
and must not change.
"""

from __future__ import annotations

__all__ = [
    "DEVICE",
    "DEVICE_QR",
    "MODE_LABELS",
    "MODE_LAYOUTS",
    "MODE_ORDER",
    "NEW_PASSWORD",
    "PASSWORD",
    "AuthModeOffer",
    "filter_by_ui_layouts",
    "normalize_ui_layouts",
]

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

# Password authentication: online against the provider, or offline against the cache
PASSWORD = "password"

# Device authorization flow
DEVICE = "device_auth"

# Device authorization flow with QR code rendering
DEVICE_QR = "device_auth_qr"

# Definition of a new local password
NEW_PASSWORD = "newpassword"

# Operator preference: local/cached methods first, password before device flows
MODE_ORDER: tuple[str, ...] = (PASSWORD, DEVICE_QR, DEVICE, NEW_PASSWORD)

MODE_LABELS: dict[str, str] = {
    PASSWORD: "Password",
    DEVICE_QR: "Device Authentication (QR code)",
    DEVICE: "Device Authentication",
    NEW_PASSWORD: "Define your local password",
}

# UI layout type each mode needs from the client
MODE_LAYOUTS: dict[str, str] = {
    PASSWORD: "form",
    DEVICE_QR: "qrcode",
    DEVICE: "form",
    NEW_PASSWORD: "newpassword",
}


@dataclass(frozen=True)
class AuthModeOffer:
    """A mode offered to the user with the layout needed to render it.

    Attributes:
        id: Mode identifier (e.g. "password").
        label: Display label.
        layout: UI layout type the client must support (e.g. "form").
    """

    id: str
    label: str
    layout: str

    @classmethod
    def for_mode(cls, mode: str) -> "AuthModeOffer":
        return cls(id=mode, label=MODE_LABELS[mode], layout=MODE_LAYOUTS[mode])

    def to_dict(self) -> dict[str, str]:
        """Mapping sent to the login daemon."""
        return {"id": self.id, "label": self.label}


def normalize_ui_layouts(layouts: Iterable[Mapping[str, str] | str]) -> list[dict[str, str]]:
    """Accept layout mappings or bare layout type names."""
    normalized = []
    for layout in layouts:
        if isinstance(layout, str):
            normalized.append({"type": layout})
        else:
            normalized.append(dict(layout))
    return normalized


def filter_by_ui_layouts(
    modes: Sequence[str],
    supported_ui_layouts: Iterable[Mapping[str, str] | str],
) -> list[AuthModeOffer]:
    """Keep the modes whose layout the client supports, preserving order."""
    supported = {layout.get("type") for layout in normalize_ui_layouts(supported_ui_layouts)}
    return [AuthModeOffer.for_mode(mode) for mode in modes if MODE_LAYOUTS[mode] in supported]
