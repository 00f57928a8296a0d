"""
Image Classifier Package

This package contains:
- backend: The Model object that holds data, network, options and results
- config: Global constants and TOML configuration
- data: Image sets, folder and workspace import, splitting
- augmentation: Randomized augmentation settings
- preprocessing: Resizing and gray to RGB conversion
- model: Pretrained and workspace networks, validation
- trainer: Training options and the training loop
- explain: Grad-CAM, LIME and occlusion sensitivity maps
- codegen: Standalone training script generation
- guide: Tips, help text and documentation links
"""

from . import (
    augmentation,
    backend,
    codegen,
    config,
    data,
    explain,
    guide,
    model,
    preprocessing,
    trainer,
    utilities,
)
from .backend import Model
from .workspace import Workspace

__all__ = [
    "Model",
    "Workspace",
    "augmentation",
    "backend",
    "codegen",
    "config",
    "data",
    "explain",
    "guide",
    "model",
    "preprocessing",
    "trainer",
    "utilities",
]
