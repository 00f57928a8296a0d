"""Tests for image set import and splitting."""

import numpy as np
import pytest
from torchvision.datasets import ImageFolder

from imageclassifier.data import ImageSet, from_workspace_object, read_image
from imageclassifier.errors import DataSourceError


class TestReadImage:
    def test_grayscale_array_gets_channel_axis(self):
        image = read_image(np.zeros((8, 6), dtype=np.uint8))
        assert image.shape == (8, 6, 1)

    def test_alpha_channel_is_dropped(self):
        image = read_image(np.zeros((4, 4, 4), dtype=np.uint8))
        assert image.shape == (4, 4, 3)

    def test_float_arrays_are_clipped_to_uint8(self):
        image = read_image(np.full((2, 2, 3), 300.0))
        assert image.dtype == np.uint8
        assert image.max() == 255

    def test_rejects_one_dimensional_arrays(self):
        with pytest.raises(ValueError):
            read_image(np.zeros(10, dtype=np.uint8))

    def test_grayscale_png_reads_single_channel(self, gray_image_folder):
        path = next((gray_image_folder / "cap").iterdir())
        assert read_image(path).shape == (16, 16, 1)


class TestFromFolder:
    def test_loads_all_images_with_sorted_classes(self, image_folder):
        images = ImageSet.from_folder(image_folder)

        assert len(images) == 75
        assert images.classes == ["cap", "cube", "playing_cards", "screwdriver", "torch"]
        assert images.count_labels() == [15] * 5

    def test_missing_path_raises(self, tmp_path):
        with pytest.raises(DataSourceError):
            ImageSet.from_folder(tmp_path / "missing")

    def test_file_path_raises(self, tmp_path):
        file_path = tmp_path / "file.txt"
        file_path.write_text("not a folder")

        with pytest.raises(DataSourceError):
            ImageSet.from_folder(file_path)

    def test_folder_without_classes_raises(self, tmp_path):
        with pytest.raises(DataSourceError):
            ImageSet.from_folder(tmp_path)

    def test_folder_without_images_raises(self, tmp_path):
        (tmp_path / "empty_class").mkdir()
        (tmp_path / "empty_class" / "notes.txt").write_text("hello")

        with pytest.raises(DataSourceError):
            ImageSet.from_folder(tmp_path)

    def test_unreadable_images_are_skipped(self, image_folder):
        (image_folder / "cap" / "broken.png").write_bytes(b"not an image")

        images = ImageSet.from_folder(image_folder)

        assert len(images) == 75


class TestSplit:
    @pytest.mark.parametrize(
        "fraction, expected_training, expected_validation",
        [(0.3, 55, 20), (0.6, 30, 45)],
    )
    def test_split_sizes(self, image_folder, fraction, expected_training, expected_validation):
        training, validation = ImageSet.from_folder(image_folder).split(fraction)

        assert len(training) == expected_training
        assert len(validation) == expected_validation

    def test_split_is_a_stratified_partition(self, image_folder):
        images = ImageSet.from_folder(image_folder)
        training, validation = images.split(0.3)

        assert training.count_labels(images.classes) == [11] * 5
        assert validation.count_labels(images.classes) == [4] * 5
        assert sorted(map(str, training.sources + validation.sources)) == sorted(
            map(str, images.sources)
        )

    def test_split_takes_leading_items_per_class(self, image_folder):
        training, validation = ImageSet.from_folder(image_folder).split(0.3)

        assert training.sources[0].name == "cap_00.png"
        assert validation.sources[0].name == "cap_11.png"

    def test_split_is_deterministic(self, image_folder):
        images = ImageSet.from_folder(image_folder)

        first, _ = images.split(0.3)
        second, _ = images.split(0.3)

        assert first.sources == second.sources

    @pytest.mark.parametrize("fraction", [0.0, 1.0, -0.1, 1.5])
    def test_rejects_out_of_range_fraction(self, image_folder, fraction):
        with pytest.raises(ValueError):
            ImageSet.from_folder(image_folder).split(fraction)


class TestWorkspaceObjects:
    def test_accepts_image_set(self):
        images = ImageSet.from_arrays([np.zeros((4, 4, 3), dtype=np.uint8)], ["a"])
        assert from_workspace_object("images", images) is images

    def test_accepts_image_folder(self, image_folder):
        images = from_workspace_object("folder", ImageFolder(str(image_folder)))

        assert len(images) == 75
        assert images.num_classes == 5

    def test_rejects_other_types(self):
        with pytest.raises(DataSourceError, match="was of class 'list'"):
            from_workspace_object("images", [1, 2, 3])

    def test_rejects_empty_set(self):
        with pytest.raises(DataSourceError):
            from_workspace_object("images", ImageSet([]))

    def test_from_arrays_checks_lengths(self):
        with pytest.raises(ValueError):
            ImageSet.from_arrays([np.zeros((4, 4, 3), dtype=np.uint8)], ["a", "b"])
