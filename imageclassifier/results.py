from dataclasses import dataclass

import numpy
from torch.nn import Module

from imageclassifier.trainer import TrainingResults


@dataclass(frozen=True)
class DataSummary:
    num_training_obs: int
    num_validation_obs: int
    num_classes: int
    class_labels: tuple[str, ...]
    training_class_distribution: tuple[int, ...]
    validation_class_distribution: tuple[int, ...]


@dataclass(frozen=True)
class DataPreview:
    preview_images: tuple[numpy.ndarray, ...]
    preview_classes: tuple[str, ...]
    is_rgb: bool


@dataclass(frozen=True)
class PredictionResult:
    predicted_label: str
    predicted_label_score: float
    predicted_label_channel: int
    scores: numpy.ndarray
    labels: tuple[str, ...]
    image: numpy.ndarray


@dataclass(frozen=True)
class ConfusionResult:
    confusion_matrix: numpy.ndarray
    class_labels: tuple[str, ...]


@dataclass(frozen=True)
class InterpretationResult:
    image: numpy.ndarray
    predicted_label: str
    predicted_label_score: float
    predicted_label_channel: int
    map: numpy.ndarray


@dataclass(frozen=True)
class ExportResult:
    trained_model: Module
    training_results: TrainingResults


@dataclass(frozen=True)
class TrainedArtifact:
    network: Module
    training_results: TrainingResults
    input_size: tuple[int, int, int]
    class_labels: tuple[str, ...]
