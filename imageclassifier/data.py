import logging
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import Sequence

import numpy
from PIL import Image, ImageFile, UnidentifiedImageError
from torch.utils.data import Dataset
from torchvision.datasets import ImageFolder

from imageclassifier import config, utilities
from imageclassifier.errors import DataSourceError

ImageFile.LOAD_TRUNCATED_IMAGES = True

SINGLE_CHANNEL_MODES = ("1", "L", "LA", "I", "I;16", "F")

ImageSource = Path | numpy.ndarray

logger = logging.getLogger(__name__)


class DataType(Enum):
    FOLDER = "folder"
    WORKSPACE = "workspace"


def read_image(source: ImageSource) -> numpy.ndarray:
    """Returns an ``H x W x C`` uint8 array, keeping single-channel images at C = 1."""
    if isinstance(source, numpy.ndarray):
        image = source
    else:
        with Image.open(source) as file:
            if file.mode in SINGLE_CHANNEL_MODES:
                image = numpy.array(file.convert("L"))
            else:
                image = numpy.array(file.convert("RGB"))

    if image.ndim == 2:
        image = image[:, :, numpy.newaxis]

    if image.ndim != 3:
        raise ValueError(f"Expected a 2-D or 3-D image array, got shape {image.shape}")

    if image.shape[2] == 4:
        image = image[:, :, :3]

    if image.dtype != numpy.uint8:
        image = numpy.clip(image, 0, 255).astype(numpy.uint8)

    return image


def is_single_channel(image: numpy.ndarray) -> bool:
    return image.ndim == 2 or image.shape[2] == 1


def get_class_names(root: Path) -> list[str]:
    if not root.exists():
        raise DataSourceError(f"Path '{root}' does not exist.")

    if not root.is_dir():
        raise DataSourceError(f"Path '{root}' is not a folder.")

    return sorted(path.name for path in root.iterdir() if path.is_dir())


def _is_readable_image(path: Path) -> bool:
    try:
        with Image.open(path) as file:
            file.verify()
    except (UnidentifiedImageError, OSError) as exception:
        logger.warning("Skipping unreadable image %s: %s", path, exception)
        return False

    return True


class ImageSet(Dataset):
    """Ordered collection of labeled images.

    Items are file paths or in-memory arrays; they are decoded lazily by
    :meth:`read`. The class list is the sorted set of distinct labels.
    """

    def __init__(self, items: Sequence[tuple[ImageSource, str]]) -> None:
        self._items = [(source, str(label)) for source, label in items]
        self._labels = [label for _, label in self._items]
        self._classes = sorted(set(self._labels))

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> tuple[numpy.ndarray, str]:
        return self.read(index), self._labels[index]

    def __repr__(self) -> str:
        return f"ImageSet(num_images={len(self)}, classes={self._classes})"

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def classes(self) -> list[str]:
        return list(self._classes)

    @property
    def num_classes(self) -> int:
        return len(self._classes)

    @property
    def sources(self) -> list[ImageSource]:
        return [source for source, _ in self._items]

    def read(self, index: int) -> numpy.ndarray:
        source, _ = self._items[index]
        return read_image(source)

    def subset(self, indices: Sequence[int]) -> "ImageSet":
        return ImageSet([self._items[index] for index in indices])

    def count_labels(self, classes: Sequence[str] | None = None) -> list[int]:
        counts = Counter(self._labels)
        return [counts.get(class_name, 0) for class_name in classes or self._classes]

    def split(
        self, validation_fraction: float = config.VALIDATION_FRACTION
    ) -> tuple["ImageSet", "ImageSet"]:
        if not 0.0 < validation_fraction < 1.0:
            raise ValueError(
                f"Validation fraction must be between 0 and 1, got {validation_fraction}."
            )

        training_indices: list[int] = []
        validation_indices: list[int] = []

        for class_name in self._classes:
            indices = [
                index for index, label in enumerate(self._labels) if label == class_name
            ]
            training_count = utilities.iround((1.0 - validation_fraction) * len(indices))

            training_indices.extend(indices[:training_count])
            validation_indices.extend(indices[training_count:])

        return self.subset(training_indices), self.subset(validation_indices)

    @classmethod
    def from_folder(cls, root: Path | str) -> "ImageSet":
        root = Path(root)
        class_names = get_class_names(root)

        if len(class_names) == 0:
            raise DataSourceError(f"No class folders found in '{root}'.")

        items: list[tuple[ImageSource, str]] = []

        for class_name in class_names:
            class_directory = root / class_name

            files = sorted(
                path
                for path in class_directory.iterdir()
                if path.is_file() and path.suffix.lower() in config.EXTENSIONS
            )

            items.extend((path, class_name) for path in files if _is_readable_image(path))

        if len(items) == 0:
            raise DataSourceError(
                f"Dataset is empty. Check that {root} contains valid image files."
            )

        return cls(items)

    @classmethod
    def from_image_folder(cls, image_folder: ImageFolder) -> "ImageSet":
        return cls(
            [
                (Path(path), image_folder.classes[class_index])
                for path, class_index in image_folder.samples
            ]
        )

    @classmethod
    def from_arrays(
        cls, images: Sequence[numpy.ndarray], labels: Sequence[str]
    ) -> "ImageSet":
        if len(images) != len(labels):
            raise ValueError(
                f"Got {len(images)} images but {len(labels)} labels."
            )

        return cls(list(zip(images, labels)))


def from_workspace_object(name: str, value: object) -> ImageSet:
    if isinstance(value, ImageSet):
        image_set = value
    elif isinstance(value, ImageFolder):
        image_set = ImageSet.from_image_folder(value)
    else:
        raise DataSourceError(
            f"Variable '{name}' should be an ImageSet or ImageFolder, but was of class '{type(value).__name__}'."
        )

    if len(image_set) == 0:
        raise DataSourceError(f"Variable '{name}' contains no images.")

    return image_set
