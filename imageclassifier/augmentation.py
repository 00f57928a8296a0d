import dataclasses
from dataclasses import dataclass
from typing import Any

import numpy
from albumentations import Affine, HorizontalFlip, VerticalFlip
from albumentations import Compose as AlbumentationsCompose

Range = tuple[float, float]


@dataclass(frozen=True)
class AugmentationSettings:
    """Randomized transforms applied to sampled views of the training data.

    ``rotation`` and the shears are in degrees, translations in pixels and
    ``scale`` is a multiplicative range. Each range is sampled uniformly.
    """

    rotation: Range | None = None
    x_reflection: bool = False
    y_reflection: bool = False
    scale: Range | None = None
    x_translation: Range | None = None
    y_translation: Range | None = None
    x_shear: Range | None = None
    y_shear: Range | None = None
    order: tuple[str, ...] = dataclasses.field(default=(), compare=False, repr=False)

    @classmethod
    def from_arguments(cls, **settings: Any) -> "AugmentationSettings":
        names = {field.name for field in dataclasses.fields(cls)} - {"order"}
        unknown = [name for name in settings if name not in names]

        if unknown:
            raise ValueError(f"Unknown augmentation settings: {', '.join(unknown)}")

        normalized = {
            name: tuple(value) if isinstance(value, (list, tuple)) else value
            for name, value in settings.items()
        }

        return cls(**normalized, order=tuple(settings))

    def to_arguments(self) -> list[tuple[str, Any]]:
        return [(name, getattr(self, name)) for name in self.order]

    def is_identity(self) -> bool:
        return not self.order

    def build(self) -> AlbumentationsCompose:
        transforms = []

        if self.x_reflection:
            transforms.append(HorizontalFlip(p=0.5))

        if self.y_reflection:
            transforms.append(VerticalFlip(p=0.5))

        if any(
            value is not None
            for value in (
                self.rotation,
                self.scale,
                self.x_translation,
                self.y_translation,
                self.x_shear,
                self.y_shear,
            )
        ):
            transforms.append(
                Affine(
                    scale=self.scale or (1.0, 1.0),
                    translate_px={
                        "x": _pixel_range(self.x_translation),
                        "y": _pixel_range(self.y_translation),
                    },
                    rotate=self.rotation or (0.0, 0.0),
                    shear={
                        "x": self.x_shear or (0.0, 0.0),
                        "y": self.y_shear or (0.0, 0.0),
                    },
                    p=1.0,
                )
            )

        return AlbumentationsCompose(transforms)

    def augment(self, image: numpy.ndarray) -> numpy.ndarray:
        if self.is_identity():
            return image

        return apply_pipeline(self.build(), image)


def apply_pipeline(
    pipeline: AlbumentationsCompose, image: numpy.ndarray
) -> numpy.ndarray:
    augmented = pipeline(image=image)["image"]

    if augmented.ndim == 2:
        augmented = augmented[:, :, numpy.newaxis]

    return augmented


def _pixel_range(value: Range | None) -> tuple[int, int]:
    if value is None:
        return (0, 0)

    return (int(round(value[0])), int(round(value[1])))
