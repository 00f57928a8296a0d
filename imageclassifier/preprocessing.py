from enum import Enum
from typing import Sequence

import numpy
from PIL import Image
from torch import Tensor
from torch.nn import Module
from torch.utils.data import Dataset
from torchvision.transforms import functional

from imageclassifier.augmentation import AugmentationSettings, apply_pipeline
from imageclassifier.data import ImageSet, is_single_channel


class ColorPreprocessing(Enum):
    NONE = "none"
    GRAY2RGB = "gray2rgb"


class Gray2RGB(Module):
    def forward(self, image: numpy.ndarray) -> numpy.ndarray:
        if not is_single_channel(image):
            return image

        if image.ndim == 2:
            image = image[:, :, numpy.newaxis]

        return numpy.repeat(image, 3, axis=2)


def resize_image(image: numpy.ndarray, size: tuple[int, int]) -> numpy.ndarray:
    height, width = size

    if image.shape[0] == height and image.shape[1] == width:
        return image

    single_channel = is_single_channel(image)
    pillow_image = Image.fromarray(image[:, :, 0] if single_channel else image)
    resized = numpy.array(
        pillow_image.resize((width, height), Image.Resampling.BILINEAR)
    )

    if single_channel:
        resized = resized[:, :, numpy.newaxis]

    return resized


def image_to_tensor(image: numpy.ndarray) -> Tensor:
    return functional.to_tensor(image)


def preprocess_image(
    image: numpy.ndarray,
    size: tuple[int, int],
    color_preprocessing: ColorPreprocessing = ColorPreprocessing.NONE,
) -> numpy.ndarray:
    image = resize_image(image, size)

    if color_preprocessing == ColorPreprocessing.GRAY2RGB:
        image = Gray2RGB()(image)

    return image


class AugmentedImageSet(Dataset):
    """Resized, optionally augmented view of an :class:`ImageSet`.

    Items are ``(tensor, class_index)`` pairs ready for a ``DataLoader``. The
    underlying images are never modified.
    """

    def __init__(
        self,
        images: ImageSet,
        output_size: Sequence[int],
        augmentation: AugmentationSettings | None = None,
        color_preprocessing: ColorPreprocessing | str = ColorPreprocessing.NONE,
        classes: Sequence[str] | None = None,
    ) -> None:
        self.images = images
        self.output_size = (int(output_size[0]), int(output_size[1]))
        self.color_preprocessing = ColorPreprocessing(color_preprocessing)
        self.classes = list(classes) if classes is not None else images.classes
        self._label_map = {label: index for index, label in enumerate(self.classes)}
        self._labels = images.labels

        if augmentation is None or augmentation.is_identity():
            self._pipeline = None
        else:
            self._pipeline = augmentation.build()

    def __len__(self) -> int:
        return len(self.images)

    def __getitem__(self, index: int) -> tuple[Tensor, int]:
        image = self.images.read(index)

        if self._pipeline is not None:
            image = apply_pipeline(self._pipeline, image)

        image = preprocess_image(image, self.output_size, self.color_preprocessing)

        return image_to_tensor(image), self._label_map[self._labels[index]]

    @property
    def targets(self) -> list[int]:
        return [self._label_map[label] for label in self._labels]
