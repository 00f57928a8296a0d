import numpy as np
import pytest

from imageclassifier.augmentation import AugmentationSettings
from imageclassifier.data import ImageSet
from imageclassifier.preprocessing import (
    AugmentedImageSet,
    ColorPreprocessing,
    Gray2RGB,
    preprocess_image,
    resize_image,
)


class TestAugmentationSettings:
    def test_default_is_identity(self):
        settings = AugmentationSettings()

        image = np.arange(48, dtype=np.uint8).reshape(4, 4, 3)

        assert settings.is_identity()
        assert settings.augment(image) is image

    def test_from_arguments_keeps_supplied_order(self):
        settings = AugmentationSettings.from_arguments(
            y_reflection=True, rotation=[-10, 10]
        )

        assert settings.rotation == (-10, 10)
        assert settings.to_arguments() == [("y_reflection", True), ("rotation", (-10, 10))]

    def test_unknown_setting_raises(self):
        with pytest.raises(ValueError, match="brightness"):
            AugmentationSettings.from_arguments(brightness=(0.5, 1.5))

    def test_order_does_not_affect_equality(self):
        first = AugmentationSettings.from_arguments(x_reflection=True, rotation=(0, 5))
        second = AugmentationSettings.from_arguments(rotation=(0, 5), x_reflection=True)

        assert first == second

    def test_build_creates_flips_and_affine(self):
        pipeline = AugmentationSettings.from_arguments(
            x_reflection=True, y_reflection=True, scale=(0.9, 1.1)
        ).build()

        names = [type(transform).__name__ for transform in pipeline.transforms]

        assert names == ["HorizontalFlip", "VerticalFlip", "Affine"]

    def test_augment_preserves_shape_and_dtype(self):
        settings = AugmentationSettings.from_arguments(
            rotation=(-20, 20), x_translation=(-2, 2), x_reflection=True
        )
        image = np.random.default_rng(0).integers(0, 255, (16, 12, 3), dtype=np.uint8)

        augmented = settings.augment(image)

        assert augmented.shape == image.shape
        assert augmented.dtype == np.uint8

    def test_augment_keeps_single_channel_axis(self):
        settings = AugmentationSettings.from_arguments(x_reflection=True)
        image = np.zeros((8, 8, 1), dtype=np.uint8)

        assert settings.augment(image).shape == (8, 8, 1)


class TestPreprocessing:
    def test_gray2rgb_replicates_channel(self):
        image = np.arange(16, dtype=np.uint8).reshape(4, 4, 1)

        rgb = Gray2RGB()(image)

        assert rgb.shape == (4, 4, 3)
        assert np.array_equal(rgb[:, :, 0], rgb[:, :, 2])

    def test_gray2rgb_leaves_color_images(self):
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        assert Gray2RGB()(image) is image

    def test_resize_keeps_single_channel(self):
        assert resize_image(np.zeros((10, 10, 1), dtype=np.uint8), (5, 7)).shape == (5, 7, 1)

    def test_preprocess_resizes_then_converts(self):
        image = preprocess_image(
            np.zeros((10, 10, 1), dtype=np.uint8), (8, 8), ColorPreprocessing.GRAY2RGB
        )
        assert image.shape == (8, 8, 3)

    def test_augmented_image_set_yields_tensors_and_indices(self):
        images = ImageSet.from_arrays(
            [np.zeros((10, 10, 1), dtype=np.uint8)] * 2, ["b", "a"]
        )

        dataset = AugmentedImageSet(
            images, (8, 8), color_preprocessing="gray2rgb", classes=["a", "b"]
        )
        tensor, label = dataset[0]

        assert tuple(tensor.shape) == (3, 8, 8)
        assert label == 1
        assert dataset.targets == [1, 0]
