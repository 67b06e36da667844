import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .timeutils import ensure_aware, utcnow

# Enums and Constants
SLOT_COUNT = 9
MAX_ROTATION_DEGREES = 10.0
BOUQUET_LIFETIME = timedelta(hours=24)
CODE_PATTERN = re.compile(r"^[0-9]{4}$")

# Older iOS clients wrote bouquet dates as seconds since 2001-01-01.
# Numeric dates below UNIX_SECONDS_FLOOR (2001-09-09 as Unix time) are read that way.
REFERENCE_DATE_OFFSET = 978307200
UNIX_SECONDS_FLOOR = 1_000_000_000


class FlowerType(str, Enum):
    TULIP = "Tulip"
    ROSE = "Rose"
    DAISY = "Daisy"
    LILY = "Lily"
    IRIS = "Iris"
    SUNFLOWER = "Sunflower"

    @property
    def emoji(self) -> str:
        return _FLOWER_EMOJI[self]


_FLOWER_EMOJI = {
    FlowerType.TULIP: "\U0001F337",
    FlowerType.ROSE: "\U0001F339",
    FlowerType.DAISY: "\U0001F33C",
    FlowerType.LILY: "\U0001F338",
    FlowerType.IRIS: "\U0001FABB",
    FlowerType.SUNFLOWER: "\U0001F33B",
}


class FlowerColor(str, Enum):
    PINK = "Pink"
    PEACH = "Peach"
    PURPLE = "Purple"
    YELLOW = "Yellow"
    WHITE = "White"
    RED = "Red"

    @property
    def rgb(self) -> Tuple[float, float, float]:
        return _FLOWER_RGB[self]


_FLOWER_RGB = {
    FlowerColor.PINK: (0.95, 0.75, 0.79),
    FlowerColor.PEACH: (0.98, 0.81, 0.69),
    FlowerColor.PURPLE: (0.73, 0.68, 0.84),
    FlowerColor.YELLOW: (0.98, 0.93, 0.57),
    FlowerColor.WHITE: (0.97, 0.96, 0.92),
    FlowerColor.RED: (0.89, 0.36, 0.38),
}

# Colors offered by the "surprise me" fill
RANDOM_PALETTE: Tuple[FlowerColor, ...] = (FlowerColor.YELLOW, FlowerColor.PURPLE, FlowerColor.RED)


@dataclass(frozen=True)
class StemPosition:
    """Fixed placement of one stem in the vase. Rendering data only."""
    id: int
    x: float
    y: float
    rotation: float
    mirrored: bool
    size: float

    @property
    def z_index(self) -> int:
        # Flowers draw above the vase layer, front rows last
        return 20 + self.id


STEM_POSITIONS: Tuple[StemPosition, ...] = (
    # Row 1 (back)
    StemPosition(0, -50, -110, -7, False, 100),
    StemPosition(1, 0, -115, 3, True, 100),
    StemPosition(2, 50, -110, 9, False, 100),
    # Row 2 (middle)
    StemPosition(3, -40, -85, -4, True, 110),
    StemPosition(4, 0, -90, -2, False, 110),
    StemPosition(5, 40, -85, 6, False, 110),
    # Row 3 (front)
    StemPosition(6, -30, -60, -5, False, 120),
    StemPosition(7, 0, -65, 2, True, 120),
    StemPosition(8, 30, -60, 8, False, 120),
)


class CamelModel(BaseModel):
    """Base for records stored as camelCase JSON documents."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Bloom(BaseModel):
    """The contents of an occupied slot."""
    model_config = ConfigDict(frozen=True)

    color: FlowerColor
    rotation: float = Field(0.0, ge=-MAX_ROTATION_DEGREES, le=MAX_ROTATION_DEGREES)
    mirrored: bool = False


class FlowerSlot(BaseModel):
    """
    One of the nine arrangement positions.

    A slot is either empty (``bloom is None``) or holds a bloom carrying the
    color together with its rotation and mirror flag, so the three can never
    drift apart. On the wire the slot keeps the flat
    ``{id, flowerColor, rotation, mirrored}`` shape.
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=0, lt=SLOT_COUNT)
    bloom: Optional[Bloom] = None

    @model_validator(mode="before")
    @classmethod
    def _from_flat_document(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "bloom" in data:
            return data
        color = data.get("flowerColor", data.get("flower_color"))
        if color is None:
            return {"id": data.get("id")}
        return {
            "id": data.get("id"),
            "bloom": {
                "color": color,
                "rotation": data.get("rotation") or 0.0,
                "mirrored": bool(data.get("mirrored") or False),
            },
        }

    @model_serializer(mode="plain")
    def _to_flat_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flowerColor": self.color.value if self.color else None,
            "rotation": self.rotation,
            "mirrored": self.mirrored,
        }

    @property
    def is_empty(self) -> bool:
        return self.bloom is None

    @property
    def color(self) -> Optional[FlowerColor]:
        return self.bloom.color if self.bloom else None

    @property
    def rotation(self) -> Optional[float]:
        return self.bloom.rotation if self.bloom else None

    @property
    def mirrored(self) -> Optional[bool]:
        return self.bloom.mirrored if self.bloom else None

    @property
    def position(self) -> StemPosition:
        return STEM_POSITIONS[self.id]


class Flower(CamelModel):
    """Free-form flower record, kept for older clients that render by position."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()).upper())
    type: FlowerType = FlowerType.TULIP
    color: FlowerColor
    x_position: float = 0.0
    y_position: float = 0.0
    rotation: float = 0.0
    scale: float = 1.0


class User(CamelModel):
    id: str = Field(..., min_length=1)
    code: str = "0000"
    name: str = "User"
    partner_id: Optional[str] = None
    streak_count: int = Field(0, ge=0)
    last_bouquet_sent: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def validate_code(cls, v):
        if not CODE_PATTERN.match(v):
            raise ValueError("Code must be exactly 4 digits")
        return v

    @field_validator("partner_id")
    @classmethod
    def blank_partner_is_none(cls, v):
        # The remote store writes "" for "no partner"
        return v or None

    @field_validator("last_bouquet_sent")
    @classmethod
    def aware_last_sent(cls, v):
        return ensure_aware(v) if v is not None else None

    @field_serializer("last_bouquet_sent")
    def serialize_last_sent(self, v: Optional[datetime]):
        return v.timestamp() if v is not None else None

    @property
    def has_partner(self) -> bool:
        return self.partner_id is not None


class Bouquet(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()).upper())
    flowers: List[Flower] = Field(default_factory=list)
    flower_slots: List[FlowerSlot] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime
    from_user_id: str
    to_user_id: str
    is_viewed: bool = False

    @field_validator("created_at", "expires_at", mode="before")
    @classmethod
    def reference_date_seconds(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool) and 0 < v < UNIX_SECONDS_FLOOR:
            return v + REFERENCE_DATE_OFFSET
        return v

    @field_validator("created_at", "expires_at")
    @classmethod
    def aware_timestamps(cls, v):
        return ensure_aware(v)

    @field_serializer("created_at", "expires_at")
    def serialize_timestamps(self, v: datetime):
        return v.timestamp()

    @classmethod
    def create(cls, flowers: List[Flower], flower_slots: List[FlowerSlot],
               from_user_id: str, to_user_id: str, now: Optional[datetime] = None) -> "Bouquet":
        """New bouquet expiring a fixed 24 hours after ``now``."""
        created_at = ensure_aware(now or utcnow())
        return cls(
            flowers=flowers,
            flower_slots=flower_slots,
            created_at=created_at,
            expires_at=created_at + BOUQUET_LIFETIME,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return ensure_aware(now or utcnow()) > self.expires_at

    def time_remaining(self, now: Optional[datetime] = None) -> timedelta:
        remaining = self.expires_at - ensure_aware(now or utcnow())
        return max(timedelta(0), remaining)


@dataclass
class RemoteWriteResult:
    """Outcome of a best-effort remote write. Local state is already applied."""
    operation: str
    succeeded: bool
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        return self.succeeded


@dataclass
class SendReceipt:
    """What a send did locally, and how each remote write went."""
    bouquet: Bouquet
    streak_incremented: bool
    delivery: RemoteWriteResult
    profile: RemoteWriteResult


@dataclass
class PairingResult:
    """Result of a pairing attempt; falsy when no pairing happened."""
    paired: bool
    partner: Optional[User] = None
    remote: Optional[RemoteWriteResult] = None

    def __bool__(self) -> bool:
        return self.paired
