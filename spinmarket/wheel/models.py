"""
Data models for wheels and spins.

Defines the entry reference union, the wheel configuration snapshot that owns
the entry-name keyspace, and the immutable record produced by a spin draw.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class SpinPhase(Enum):
    """Phase of the spin state machine."""

    IDLE = "idle"
    READY = "ready"
    SPINNING = "spinning"
    RESOLVING = "resolving"
    COOLDOWN = "cooldown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ByIndex:
    """Reference to a wheel entry by its position."""

    index: int

    def resolve(self, entries: list[str]) -> Optional[int]:
        if 0 <= self.index < len(entries):
            return self.index
        return None

    def label(self, entries: list[str]) -> str:
        idx = self.resolve(entries)
        return entries[idx] if idx is not None else f"#{self.index}"


@dataclass(frozen=True)
class ByName:
    """Reference to a wheel entry by its label (first occurrence wins)."""

    name: str

    def resolve(self, entries: list[str]) -> Optional[int]:
        try:
            return entries.index(self.name)
        except ValueError:
            return None

    def label(self, entries: list[str]) -> str:
        return self.name


EntryRef = Union[ByIndex, ByName]


def entry_ref(entry: Optional[str] = None, entry_index: Optional[int] = None) -> EntryRef:
    """
    Build an EntryRef from a client payload.

    An explicit index takes precedence over the name, matching how clients
    address duplicate labels.

    Raises:
        ValueError: If neither an index nor a name is given.
    """
    if entry_index is not None:
        return ByIndex(int(entry_index))
    if entry:
        return ByName(str(entry))
    raise ValueError("entry reference requires a name or an index")


def parse_entries(raw: Any) -> list[str]:
    """Entry labels from a newline-separated string or a list, blanks dropped."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split("\n")
    return [str(e).strip() for e in raw if str(e).strip()]


@dataclass
class WheelConfig:
    """
    One wheel of the host configuration.

    Attributes:
        wheel_id: Wheel identifier.
        entries: Ordered entry labels, duplicates allowed.
        entry_weights: Base weight per entry name (default 1).
        triggers: Per-entry trigger overrides.
        default_trigger: Trigger used when an entry has no override.
    """

    wheel_id: str
    entries: list[str] = field(default_factory=list)
    entry_weights: dict[str, float] = field(default_factory=dict)
    triggers: dict[str, str] = field(default_factory=dict)
    default_trigger: str = ""

    def base_weight(self, name: str) -> float:
        weight = self.entry_weights.get(name)
        return 1.0 if weight is None else float(weight)

    @property
    def base_weights(self) -> list[float]:
        return [self.base_weight(name) for name in self.entries]

    @property
    def unique_names(self) -> list[str]:
        """Entry names in first-seen order."""
        return list(dict.fromkeys(self.entries))

    def trigger_for(self, name: str) -> str:
        per_entry = self.triggers.get(name)
        if per_entry == "__none":
            return ""
        return per_entry or self.default_trigger or ""

    @classmethod
    def from_dict(cls, wheel_id: str, data: dict[str, Any]) -> "WheelConfig":
        return cls(
            wheel_id=wheel_id,
            entries=parse_entries(data.get("entries")),
            entry_weights={
                str(k): float(v) for k, v in (data.get("entryWeights") or {}).items()
            },
            triggers=dict(data.get("triggers") or {}),
            default_trigger=data.get("defaultTrigger") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": list(self.entries),
            "entryWeights": dict(self.entry_weights),
            "triggers": dict(self.triggers),
            "defaultTrigger": self.default_trigger,
        }


@dataclass
class ActiveConfiguration:
    """
    The host configuration snapshot that owns the entry keyspace.

    Only the active wheel's entries are traded on the stock market.
    """

    wheels: dict[str, WheelConfig] = field(default_factory=dict)
    active_wheel_id: Optional[str] = None
    event_templates: list[dict[str, Any]] = field(default_factory=list)

    @property
    def active_wheel(self) -> Optional[WheelConfig]:
        if self.active_wheel_id and self.active_wheel_id in self.wheels:
            return self.wheels[self.active_wheel_id]
        if self.wheels:
            return next(iter(self.wheels.values()))
        return None

    def get_wheel(self, wheel_id: Optional[str]) -> Optional[WheelConfig]:
        if wheel_id is None:
            return self.active_wheel
        return self.wheels.get(wheel_id)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ActiveConfiguration":
        data = data or {}
        wheels = {
            str(wid): WheelConfig.from_dict(str(wid), wc or {})
            for wid, wc in (data.get("wheels") or {}).items()
        }
        return cls(
            wheels=wheels,
            active_wheel_id=data.get("activeWheelId"),
            event_templates=list(data.get("eventTemplates") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "wheels": {wid: wc.to_dict() for wid, wc in self.wheels.items()},
            "activeWheelId": self.active_wheel_id,
            "eventTemplates": list(self.event_templates),
        }


@dataclass(frozen=True)
class SpinOutcome:
    """
    Result of a single spin draw. Immutable once drawn.

    Attributes:
        wheel_id: Wheel that was spun.
        winner_index: Predetermined winning index.
        winner_name: Label at winner_index.
        weights: Authoritative effective weight vector used for the draw.
        total_weight: Sum of weights.
        target_angle: Authoritative landing angle (radians).
        observer_angles: Landing angle per observer, inside that observer's
            own view of the winning segment.
        duration: Animation duration in seconds.
        min_spins: Minimum full rotations for the animation.
        visited_chain: Wheels already visited in a sub-wheel chain.
        initiator: Player who started the spin, if any.
        entries: Entry labels of the wheel at draw time, in index order.
    """

    wheel_id: str
    winner_index: int
    winner_name: str
    weights: tuple[float, ...]
    total_weight: float
    target_angle: float
    observer_angles: dict[str, float] = field(default_factory=dict, hash=False)
    duration: float = 0.0
    min_spins: int = 6
    visited_chain: tuple[str, ...] = ()
    initiator: Optional[str] = None
    entries: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "wheelId": self.wheel_id,
            "winnerIndex": self.winner_index,
            "winnerName": self.winner_name,
            "weights": list(self.weights),
            "totalWeight": self.total_weight,
            "targetAngle": self.target_angle,
            "observerAngles": dict(self.observer_angles),
            "duration": self.duration,
            "minSpins": self.min_spins,
            "visitedChain": list(self.visited_chain),
            "initiator": self.initiator,
            "entries": list(self.entries),
        }


@dataclass
class SpinTicket:
    """
    In-flight spin: the frozen outcome plus the tracked angular offset.

    The offset accumulates from mid-draw boost items and is applied once at
    resolution.
    """

    outcome: SpinOutcome
    started_at: float
    angle_offset: float = 0.0
    nudges: list[dict[str, Any]] = field(default_factory=list)
