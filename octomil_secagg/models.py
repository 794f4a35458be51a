"""JSON payloads exchanged with the aggregation server.

Field names on the wire are snake_case and match the server API.  Every
``from_dict`` raises :class:`~octomil_secagg.errors.DecodingError` on missing
keys or wrongly typed values.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import DecodingError
from .serialization import decode_payload, encode_payload


def _require(data: Mapping[str, Any], key: str, kind: Union[type, tuple]) -> Any:
    if not isinstance(data, Mapping):
        raise DecodingError(f"expected a JSON object, got {type(data).__name__}")
    if key not in data:
        raise DecodingError(f"missing field {key!r}")
    value = data[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (kind if isinstance(kind, tuple) else (kind,)):
        raise DecodingError(f"field {key!r} has type bool")
    if not isinstance(value, kind):
        raise DecodingError(f"field {key!r} has type {type(value).__name__}")
    return value


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecAggConfiguration:
    """SecAgg parameters for one round."""

    threshold: int
    total_clients: int
    privacy_budget: float = 1.0
    key_length: int = 256

    def __post_init__(self) -> None:
        if self.total_clients < 1:
            raise ValueError("total_clients must be >= 1")
        if not 1 <= self.threshold <= self.total_clients:
            raise ValueError(
                f"threshold must be in [1, {self.total_clients}], got {self.threshold}"
            )
        if self.key_length <= 0 or self.key_length % 8:
            raise ValueError("key_length must be a positive multiple of 8")
        if self.privacy_budget <= 0:
            raise ValueError("privacy_budget must be positive")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecAggConfiguration":
        threshold = _require(data, "threshold", int)
        total_clients = _require(data, "total_clients", int)
        privacy_budget = 1.0
        if "privacy_budget" in data:
            privacy_budget = float(_require(data, "privacy_budget", (int, float)))
        key_length = _require(data, "key_length", int) if "key_length" in data else 256
        try:
            return cls(
                threshold=threshold,
                total_clients=total_clients,
                privacy_budget=privacy_budget,
                key_length=key_length,
            )
        except ValueError as exc:
            raise DecodingError(f"invalid SecAgg configuration: {exc}") from exc


@dataclass(frozen=True)
class SecAggSessionResponse:
    """Server-assigned session identity and configuration for this client."""

    session_id: str
    round_id: str
    client_index: int
    threshold: int
    total_clients: int
    privacy_budget: float = 1.0
    key_length: int = 256

    @property
    def configuration(self) -> SecAggConfiguration:
        return SecAggConfiguration(
            threshold=self.threshold,
            total_clients=self.total_clients,
            privacy_budget=self.privacy_budget,
            key_length=self.key_length,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecAggSessionResponse":
        return cls(
            session_id=_require(data, "session_id", str),
            round_id=_require(data, "round_id", str),
            client_index=_require(data, "client_index", int),
            threshold=_require(data, "threshold", int),
            total_clients=_require(data, "total_clients", int),
            privacy_budget=float(_require(data, "privacy_budget", (int, float))),
            key_length=_require(data, "key_length", int),
        )


# ---------------------------------------------------------------------------
# Typed metadata
# ---------------------------------------------------------------------------


class MetadataKind(str, Enum):
    STRING = "string"
    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"


@dataclass(frozen=True)
class MetadataValue:
    """Closed sum type for protocol metadata: string, int, double or bool."""

    kind: MetadataKind
    value: Union[str, int, float, bool]

    @classmethod
    def of_string(cls, value: str) -> "MetadataValue":
        return cls(MetadataKind.STRING, value)

    @classmethod
    def of_int(cls, value: int) -> "MetadataValue":
        return cls(MetadataKind.INT, value)

    @classmethod
    def of_double(cls, value: float) -> "MetadataValue":
        return cls(MetadataKind.DOUBLE, float(value))

    @classmethod
    def of_bool(cls, value: bool) -> "MetadataValue":
        return cls(MetadataKind.BOOL, value)

    @classmethod
    def from_json(cls, raw: Any) -> "MetadataValue":
        # Order matters: bool before int, int before float.
        if isinstance(raw, bool):
            return cls(MetadataKind.BOOL, raw)
        if isinstance(raw, int):
            return cls(MetadataKind.INT, raw)
        if isinstance(raw, float):
            return cls(MetadataKind.DOUBLE, raw)
        if isinstance(raw, str):
            return cls(MetadataKind.STRING, raw)
        raise DecodingError(
            f"metadata value must be string, int, double, or bool, got {type(raw).__name__}"
        )

    def to_json(self) -> Union[str, int, float, bool]:
        return self.value


# ---------------------------------------------------------------------------
# Requests / responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecAggShareKeysRequest:
    """Phase 1 upload: this client's serialized share bundles."""

    session_id: str
    device_id: str
    shares_data: str  # base64

    @classmethod
    def from_bytes(cls, session_id: str, device_id: str, shares: bytes) -> "SecAggShareKeysRequest":
        return cls(session_id=session_id, device_id=device_id, shares_data=encode_payload(shares))

    def shares_bytes(self) -> bytes:
        return decode_payload(self.shares_data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecAggShareKeysRequest":
        return cls(
            session_id=_require(data, "session_id", str),
            device_id=_require(data, "device_id", str),
            shares_data=_require(data, "shares_data", str),
        )


@dataclass(frozen=True)
class SecAggMaskedInputRequest:
    """Phase 2 upload: the masked model update plus round metadata."""

    session_id: str
    device_id: str
    masked_weights_data: str  # base64
    sample_count: int
    metrics: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, MetadataValue] = field(default_factory=dict)

    @classmethod
    def from_bytes(
        cls,
        session_id: str,
        device_id: str,
        masked: bytes,
        sample_count: int,
        metrics: Optional[Mapping[str, float]] = None,
        metadata: Optional[Mapping[str, MetadataValue]] = None,
    ) -> "SecAggMaskedInputRequest":
        return cls(
            session_id=session_id,
            device_id=device_id,
            masked_weights_data=encode_payload(masked),
            sample_count=sample_count,
            metrics={k: float(v) for k, v in (metrics or {}).items()},
            metadata=dict(metadata or {}),
        )

    def masked_bytes(self) -> bytes:
        return decode_payload(self.masked_weights_data)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "session_id": self.session_id,
            "device_id": self.device_id,
            "masked_weights_data": self.masked_weights_data,
            "sample_count": self.sample_count,
            "metrics": dict(self.metrics),
        }
        if self.metadata:
            payload["metadata"] = {k: v.to_json() for k, v in self.metadata.items()}
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecAggMaskedInputRequest":
        metrics_raw = _require(data, "metrics", dict) if "metrics" in data else {}
        metrics: Dict[str, float] = {}
        for key, value in metrics_raw.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise DecodingError(f"metric {key!r} is not a number")
            metrics[key] = float(value)
        metadata_raw = _require(data, "metadata", dict) if "metadata" in data else {}
        return cls(
            session_id=_require(data, "session_id", str),
            device_id=_require(data, "device_id", str),
            masked_weights_data=_require(data, "masked_weights_data", str),
            sample_count=_require(data, "sample_count", int),
            metrics=metrics,
            metadata={k: MetadataValue.from_json(v) for k, v in metadata_raw.items()},
        )


@dataclass(frozen=True)
class SecAggUnmaskRequest:
    """Phase 3 upload: the shares this client reveals for dropped peers."""

    session_id: str
    device_id: str
    unmask_data: str  # base64

    @classmethod
    def from_bytes(cls, session_id: str, device_id: str, data: bytes) -> "SecAggUnmaskRequest":
        return cls(session_id=session_id, device_id=device_id, unmask_data=encode_payload(data))

    def unmask_bytes(self) -> bytes:
        return decode_payload(self.unmask_data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecAggUnmaskRequest":
        return cls(
            session_id=_require(data, "session_id", str),
            device_id=_require(data, "device_id", str),
            unmask_data=_require(data, "unmask_data", str),
        )


@dataclass(frozen=True)
class SecAggUnmaskResponse:
    """Server notification listing the participants that dropped out."""

    dropped_client_indices: List[int]
    unmasking_required: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecAggUnmaskResponse":
        indices = _require(data, "dropped_client_indices", list)
        for idx in indices:
            if isinstance(idx, bool) or not isinstance(idx, int):
                raise DecodingError("dropped_client_indices must contain integers")
        return cls(
            dropped_client_indices=list(indices),
            unmasking_required=_require(data, "unmasking_required", bool),
        )
