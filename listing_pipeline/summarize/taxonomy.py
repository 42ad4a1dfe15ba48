from __future__ import annotations

from dataclasses import dataclass

FURNITURE = (
    "chair",
    "table",
    "sofa",
    "couch",
    "bed",
    "desk",
    "cabinet",
    "dresser",
    "wardrobe",
    "bookshelf",
)
APPLIANCES = (
    "refrigerator",
    "stove",
    "oven",
    "dishwasher",
    "washer",
    "dryer",
    "microwave",
    "air conditioner",
)
FIXTURES = ("sink", "toilet", "bathtub", "shower", "faucet", "light", "fan", "vent")
ROOMS = ("kitchen", "bedroom", "bathroom", "living room", "dining room", "garage", "basement")
STYLES = ("modern", "traditional", "contemporary", "classic", "minimalist", "rustic")
MATERIALS = ("wood", "marble", "granite", "stainless steel", "ceramic", "glass", "concrete")
FEATURE_MARKERS = ("feature", "design")

CURRENCY_SYMBOLS = ("$", "€", "£", "¥", "₹")
PROPERTY_DETAIL_KEYWORDS = ("bedroom", "bathroom", "square", "foot", "year", "built")

DEFAULT_VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".mkv", ".webm")

OTHER_BUCKET = "other"


@dataclass(frozen=True, slots=True)
class Taxonomy:
    """Ordered keyword categories; earlier categories win on overlap."""

    name: str
    categories: tuple[tuple[str, tuple[str, ...]], ...]

    @property
    def bucket_names(self) -> tuple[str, ...]:
        return tuple(bucket for bucket, _ in self.categories) + (OTHER_BUCKET,)


LABEL_TAXONOMY = Taxonomy(
    name="labels",
    categories=(
        ("rooms", ROOMS),
        ("styles", STYLES),
        ("materials", MATERIALS),
        ("features", FEATURE_MARKERS),
    ),
)

OBJECT_TAXONOMY = Taxonomy(
    name="objects",
    categories=(
        ("furniture", FURNITURE),
        ("appliances", APPLIANCES),
        ("fixtures", FIXTURES),
    ),
)

TEXT_BUCKETS = ("prices", "propertyDetails", OTHER_BUCKET)


def is_video_file(file_name: str, extensions: tuple[str, ...] | list[str] = DEFAULT_VIDEO_EXTENSIONS) -> bool:
    lowered = file_name.lower()
    return any(lowered.endswith(ext.lower()) for ext in extensions)
