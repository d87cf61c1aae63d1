"""Shared type definitions used across the booth.

This module intentionally centralizes small, stable types (frames, masks, cutouts,
segmentation results, capture candidates and cards) so the segmentation, masking,
capture and compositing code can stay strongly typed.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar, Union

import numpy as np


class SegmentationMode(str, Enum):
    """How a frame is segmented.

    The three person modes are probabilistic and trade accuracy for throughput.
    `FOREGROUND_INSTANCE_MASK` returns hard per-instance masks and ignores the
    confidence threshold.
    """

    PERSON_FAST = "person_fast"
    PERSON_BALANCED = "person_balanced"
    PERSON_ACCURATE = "person_accurate"
    FOREGROUND_INSTANCE_MASK = "foreground_instance_mask"

    @property
    def is_probabilistic(self) -> bool:
        return self is not SegmentationMode.FOREGROUND_INSTANCE_MASK


def capture_mode_for(mode: SegmentationMode) -> SegmentationMode:
    """Return the highest-accuracy mode available for a session mode."""

    if mode.is_probabilistic:
        return SegmentationMode.PERSON_ACCURATE
    return mode


@dataclass(frozen=True)
class Frame:
    """Immutable video frame (BGR uint8 by default) with its capture timestamp."""

    image: np.ndarray
    timestamp: float
    pixel_format: str = "bgr8"

    def __post_init__(self) -> None:
        view = self.image.view()
        view.flags.writeable = False
        object.__setattr__(self, "image", view)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        """(width, height)."""

        return self.width, self.height


@dataclass(frozen=True)
class ProbabilityMask:
    """Per-pixel foreground confidence, float32 `(H, W)`, nominally in [0, 1]."""

    data: np.ndarray

    @property
    def size(self) -> tuple[int, int]:
        return int(self.data.shape[1]), int(self.data.shape[0])


@dataclass(frozen=True)
class BinaryAlphaMask:
    """Sharpened alpha mask, float32 `(H, W)` clamped to [0, 1]."""

    data: np.ndarray

    @property
    def size(self) -> tuple[int, int]:
        return int(self.data.shape[1]), int(self.data.shape[0])

    def area(self) -> float:
        """Total foreground area (sum of alpha)."""

        return float(self.data.sum())


@dataclass(frozen=True)
class Cutout:
    """BGRA uint8 image: frame colour with a computed alpha channel.

    Colour is zero wherever alpha is zero (blend against a transparent background).
    """

    rgba: np.ndarray

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def alpha(self) -> np.ndarray:
        """Alpha channel as float32 in [0, 1]."""

        return self.rgba[:, :, 3].astype(np.float32) / 255.0

    def is_empty(self) -> bool:
        return not bool(np.any(self.rgba[:, :, 3]))


@dataclass(frozen=True)
class SegmentationRequest:
    """Per-call segmentation configuration.

    Built from a mode for each call so concurrent requests never share mutable
    detector settings.
    """

    mode: SegmentationMode
    model_name: str
    confidence: float = 0.25
    imgsz: int | None = None
    classes: tuple[int, ...] | None = (0,)


@dataclass(frozen=True)
class InstanceMask:
    """One hard instance mask (`uint8` 0/1 at frame resolution)."""

    mask: np.ndarray
    instance_id: int
    label: str = ""
    confidence: float = 1.0


@dataclass(frozen=True)
class ProbabilisticSegmentation:
    mask: ProbabilityMask
    mode: SegmentationMode


@dataclass(frozen=True)
class InstanceSegmentation:
    instances: list[InstanceMask]
    cutout: Cutout
    mode: SegmentationMode = SegmentationMode.FOREGROUND_INSTANCE_MASK


SegmentationResult = Union[ProbabilisticSegmentation, InstanceSegmentation]


@dataclass(frozen=True)
class LiveConfig:
    """Mode and threshold snapshot read once per processed frame."""

    mode: SegmentationMode = SegmentationMode.PERSON_BALANCED
    threshold: float = 0.8
    sharpness: float = 20.0


@dataclass
class BurstCandidate:
    """A scored capture candidate."""

    frame: Frame
    cutout: Cutout
    score: float
    mode: SegmentationMode
    threshold: float


@dataclass
class BurstOutcome:
    """Result of a burst capture. `best` is `None` when no attempt found a subject."""

    best: BurstCandidate | None
    attempts_run: int = 0
    skipped: int = 0
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.best is not None


@dataclass(frozen=True)
class Template:
    """Card colour scheme. Colours are RGB 0-255 tuples."""

    id: int
    display_name: str
    background_color: tuple[int, int, int]
    accent_color: tuple[int, int, int]


@dataclass
class CompositeCard:
    """Finished card image, BGRA uint8 `(880, 630, 4)`."""

    image: np.ndarray
    template_id: int
    label: str


@dataclass
class PreviewUpdate:
    """Payload published once per processed frame."""

    frame_id: int
    frame: Frame
    cutout: Cutout | None
    fps: float
    timestamp: float
    profile: dict[str, float] | None = field(default=None)

    @property
    def subject_detected(self) -> bool:
        return self.cutout is not None


T = TypeVar("T")


class FrameSlot(Generic[T]):
    """Single-slot, lock-guarded reference handoff.

    `put` replaces whatever is stored (an unconsumed older item is dropped) and
    sets the event; readers only hold the lock for the reference swap.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._item: T | None = None
        self.dropped = 0

    def put(self, item: T) -> None:
        with self._lock:
            if self._item is not None:
                self.dropped += 1
            self._item = item
        self._event.set()

    def peek(self) -> T | None:
        """Return the stored item without consuming it."""

        with self._lock:
            return self._item

    def take(self) -> T | None:
        """Consume and return the stored item."""

        with self._lock:
            item = self._item
            self._item = None
            self._event.clear()
        return item

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def wake(self) -> None:
        """Wake a waiting reader without storing anything."""

        self._event.set()
