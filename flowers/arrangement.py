"""
Nine-slot flower arrangement edited on the design screen, plus the older
free-form flower list that predates the slot layout.
"""

import logging
import math
import random
from typing import List, Optional

from .models import (
    MAX_ROTATION_DEGREES,
    RANDOM_PALETTE,
    SLOT_COUNT,
    STEM_POSITIONS,
    Bloom,
    Flower,
    FlowerColor,
    FlowerSlot,
    FlowerType,
)

logger = logging.getLogger(__name__)

GOLDEN_ANGLE_DEGREES = 137.5
LEGACY_MAX_ROTATION_DEGREES = 20.0


def empty_slots() -> List[FlowerSlot]:
    return [FlowerSlot(id=slot_id) for slot_id in range(SLOT_COUNT)]


class Arrangement:
    """Owns the slot sequence. Always exactly nine slots, ids 0-8 in order."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._slots: List[FlowerSlot] = empty_slots()

    @property
    def slots(self) -> List[FlowerSlot]:
        return list(self._slots)

    def _new_bloom(self, color: FlowerColor) -> Bloom:
        # Cosmetics are only ever drawn here, together with the color
        return Bloom(
            color=color,
            rotation=self._rng.uniform(-MAX_ROTATION_DEGREES, MAX_ROTATION_DEGREES),
            mirrored=self._rng.random() < 0.5,
        )

    def fill_next_empty_slot(self, color: FlowerColor) -> Optional[FlowerSlot]:
        """
        Put a flower of ``color`` into the lowest-numbered empty slot.

        Returns the filled slot, or None when the arrangement is full.
        """
        for index, slot in enumerate(self._slots):
            if slot.is_empty:
                filled = FlowerSlot(id=slot.id, bloom=self._new_bloom(FlowerColor(color)))
                self._slots[index] = filled
                return filled
        logger.debug(f"Arrangement full, ignoring {color} flower")
        return None

    def clear_slot(self, slot_id: int):
        """Empty one slot. Unknown ids and empty slots are ignored."""
        if 0 <= slot_id < SLOT_COUNT and not self._slots[slot_id].is_empty:
            self._slots[slot_id] = FlowerSlot(id=slot_id)

    def clear_all(self):
        self._slots = empty_slots()

    def randomize(self):
        """Overwrite every slot with a random palette color and fresh cosmetics."""
        self._slots = [
            FlowerSlot(id=slot_id, bloom=self._new_bloom(self._rng.choice(RANDOM_PALETTE)))
            for slot_id in range(SLOT_COUNT)
        ]

    def filled_count(self) -> int:
        return sum(1 for slot in self._slots if not slot.is_empty)

    def can_add_more(self) -> bool:
        return self.filled_count() < SLOT_COUNT

    def occupied_slots(self) -> List[FlowerSlot]:
        return [slot for slot in self._slots if not slot.is_empty]

    def to_flowers(self, flower_type: FlowerType = FlowerType.TULIP) -> List[Flower]:
        """
        Legacy flower records for the occupied slots, in slot order.

        Position comes from the fixed stem layout and rotation from the slot.
        The mirror flag has no legacy field and is not carried over.
        """
        flowers = []
        for slot in self.occupied_slots():
            position = STEM_POSITIONS[slot.id]
            flowers.append(Flower(
                type=flower_type,
                color=slot.color,
                x_position=position.x,
                y_position=position.y,
                rotation=slot.rotation or 0.0,
            ))
        return flowers


class FreeformDesign:
    """Free-form flower list used before the slot layout existed."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self.flowers: List[Flower] = []

    def add_flower(self, flower_type: FlowerType, color: FlowerColor) -> Flower:
        # Golden-angle spiral keeps the stems inside the vase opening
        index = len(self.flowers)
        angle = math.radians(index * GOLDEN_ANGLE_DEGREES)
        radius = 20.0 + index * 5.0

        flower = Flower(
            type=flower_type,
            color=color,
            x_position=math.cos(angle) * radius,
            y_position=math.sin(angle) * radius - 95,
            rotation=self._rng.uniform(-LEGACY_MAX_ROTATION_DEGREES, LEGACY_MAX_ROTATION_DEGREES),
        )
        self.flowers.append(flower)
        return flower

    def update_flower_position(self, flower_id: str, x: float, y: float) -> bool:
        for flower in self.flowers:
            if flower.id == flower_id:
                flower.x_position = x
                flower.y_position = y
                return True
        return False

    def remove_flower(self, flower_id: str):
        self.flowers = [flower for flower in self.flowers if flower.id != flower_id]

    def clear(self):
        self.flowers = []
