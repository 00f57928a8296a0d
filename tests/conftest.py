# tests/conftest.py
"""
Global pytest fixtures for imageclassifier tests.
"""

import numpy as np
import pytest
from PIL import Image
from torch import nn

from imageclassifier.config import AppConfig, InterpretabilityConfig, NetworkConfig
from imageclassifier.workspace import Workspace

CLASS_NAMES = ["cap", "cube", "playing_cards", "screwdriver", "torch"]

IMAGES_PER_CLASS = 15

IMAGE_SIZE = 16


def _write_class_folders(root, mode, images_per_class=IMAGES_PER_CLASS):
    rng = np.random.default_rng(0)

    for class_index, class_name in enumerate(CLASS_NAMES):
        class_dir = root / class_name
        class_dir.mkdir(parents=True)

        for i in range(images_per_class):
            # Class-dependent brightness so a tiny network can learn something.
            base = 40 * class_index + 20
            noise = rng.integers(0, 10, size=(IMAGE_SIZE, IMAGE_SIZE, 3))
            pixels = np.clip(base + noise, 0, 255).astype(np.uint8)
            image = Image.fromarray(pixels).convert(mode)
            image.save(class_dir / f"{class_name}_{i:02d}.png")

    return root


@pytest.fixture
def image_folder(tmp_path):
    """Create a 5-class folder with 15 RGB PNGs per class."""
    return _write_class_folders(tmp_path / "merch", "RGB")


@pytest.fixture
def gray_image_folder(tmp_path):
    """Create a 5-class folder with 15 grayscale PNGs per class."""
    return _write_class_folders(tmp_path / "gray", "L")


@pytest.fixture
def config():
    """Offline configuration with small interpretability budgets."""
    return AppConfig(
        network=NetworkConfig(download_weights=False),
        interpretability=InterpretabilityConfig(
            lime_num_samples=20,
            lime_batch_size=10,
            occlusion_batch_size=8,
        ),
    )


@pytest.fixture
def workspace():
    return Workspace()


def make_network(num_classes=len(CLASS_NAMES), in_channels=3):
    # Non-inplace ReLU keeps the Grad-CAM hooks happy.
    return nn.Sequential(
        nn.Conv2d(in_channels, 4, kernel_size=3, padding=1),
        nn.ReLU(),
        nn.AdaptiveAvgPool2d(1),
        nn.Flatten(),
        nn.Linear(4, num_classes),
    )


@pytest.fixture
def network_factory():
    """Return a factory for tiny convolutional classifiers."""
    return make_network


@pytest.fixture
def quick_options():
    """Training overrides that keep a test run to a few seconds on CPU."""
    return {
        "max_epochs": 2,
        "mini_batch_size": 16,
        "plots": "none",
        "execution_environment": "cpu",
    }
