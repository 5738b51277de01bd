"""Protocol configuration — constants the pipeline is parameterised by.

Loaded from ``config/protocol.json``. Values are validated on load so a
bad file fails closed before any orchestrator is built.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from opgate.crypto.identity import require_identity


class SponsorDeclinePolicy(str, enum.Enum):
    """What happens to the account's sequence when a sponsor declines.

    CONSUME: the counter is committed before the sponsor is consulted,
        so a declined operation still uses up its sequence value.
    PRESERVE: the sponsor is consulted after the account checks but
        before the commit, so a decline leaves the counter untouched.
    """
    CONSUME = "consume"
    PRESERVE = "preserve"


@dataclass(frozen=True)
class GasSchedule:
    """Fixed gas charges applied by the orchestrator and executor."""
    validation_gas: int = 10_000
    sponsor_validation_gas: int = 5_000
    call_gas: int = 21_000
    payload_byte_gas: int = 16


@dataclass(frozen=True)
class ProtocolConfig:
    orchestrator: str
    chain_id: int = 1
    min_signature_length: int = 65
    sponsor_id_width: int = 20
    base_fee_per_unit: int = 0
    sponsor_decline_policy: SponsorDeclinePolicy = SponsorDeclinePolicy.CONSUME
    gas: GasSchedule = field(default_factory=GasSchedule)

    CONFIG_FILENAME = "protocol.json"

    def __post_init__(self) -> None:
        object.__setattr__(self, "orchestrator", require_identity(self.orchestrator))
        if self.chain_id <= 0:
            raise ValueError("chain_id must be positive")
        if self.min_signature_length < 1:
            raise ValueError("min_signature_length must be at least 1")
        if self.sponsor_id_width != 20:
            raise ValueError("sponsor_id_width must be 20 (address width)")
        if self.base_fee_per_unit < 0:
            raise ValueError("base_fee_per_unit must be non-negative")
        for name in ("validation_gas", "sponsor_validation_gas", "call_gas", "payload_byte_gas"):
            if getattr(self.gas, name) < 0:
                raise ValueError(f"gas.{name} must be non-negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProtocolConfig:
        if "orchestrator" not in data:
            raise ValueError("Protocol config missing 'orchestrator' field")
        gas = GasSchedule(**data.get("gas", {}))
        return cls(
            orchestrator=data["orchestrator"],
            chain_id=data.get("chain_id", 1),
            min_signature_length=data.get("min_signature_length", 65),
            sponsor_id_width=data.get("sponsor_id_width", 20),
            base_fee_per_unit=data.get("base_fee_per_unit", 0),
            sponsor_decline_policy=SponsorDeclinePolicy(
                data.get("sponsor_decline_policy", SponsorDeclinePolicy.CONSUME.value)
            ),
            gas=gas,
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ProtocolConfig:
        """Load the protocol config from a config directory.

        Raises:
            FileNotFoundError: If protocol.json does not exist.
            ValueError: If a value is out of range.
        """
        path = config_dir / cls.CONFIG_FILENAME
        if not path.exists():
            raise FileNotFoundError(f"Protocol config not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)
