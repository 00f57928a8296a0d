import dataclasses
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

import numpy
import torch
from torch.nn import Module
from torchmetrics.classification import MulticlassConfusionMatrix

from imageclassifier import codegen, explain, model, trainer, utilities
from imageclassifier.augmentation import AugmentationSettings
from imageclassifier.config import AppConfig
from imageclassifier.data import (
    DataType,
    ImageSet,
    from_workspace_object,
    is_single_channel,
    read_image,
)
from imageclassifier.errors import (
    DataSourceError,
    NoTrainedNetworkError,
    NotANetworkError,
    NoWorkspaceVariableError,
    TrainingExecutionError,
    TrainingPreconditionError,
    UnknownPretrainedNetworkError,
)
from imageclassifier.explain import Technique
from imageclassifier.model import NetworkHandle, Provenance
from imageclassifier.preprocessing import (
    AugmentedImageSet,
    ColorPreprocessing,
    image_to_tensor,
    preprocess_image,
)
from imageclassifier.results import (
    ConfusionResult,
    DataPreview,
    DataSummary,
    ExportResult,
    InterpretationResult,
    PredictionResult,
    TrainedArtifact,
)
from imageclassifier.trainer import Solver, TrainingOptions, TrainingResults
from imageclassifier.workspace import Workspace

logger = logging.getLogger(__name__)


class DataSplit(Enum):
    TRAINING = "training"
    VALIDATION = "validation"


def _read_only(array: numpy.ndarray) -> numpy.ndarray:
    array = numpy.array(array, copy=True)
    array.flags.writeable = False
    return array


class Model:
    """Backend for interactive image classification training.

    Holds the imported data and its training/validation split, the selected
    network, the training options and the most recent trained network. Every
    setter replaces the relevant state as a whole, and a setter that raises
    leaves the previous state in place. Calls on one instance must not overlap.
    """

    def __init__(
        self, workspace: Workspace | None = None, config: AppConfig | None = None
    ) -> None:
        self.workspace = workspace if workspace is not None else Workspace()
        self.config = config or AppConfig()

        if self.config.log_directory:
            utilities.setup_logging(Path(self.config.log_directory))

        utilities.seed_all(self.config.seed)
        self._random = numpy.random.default_rng(self.config.seed)
        self._generator = torch.Generator().manual_seed(self.config.seed)

        self._validation_fraction = self.config.data.validation_fraction
        self._requires_gray2rgb = False

        self._data: ImageSet | None = None
        self._training_data: ImageSet | None = None
        self._validation_data: ImageSet | None = None
        self._data_type: DataType | None = None
        self._data_location: str | None = None

        self._augmentation = AugmentationSettings()
        self._network: NetworkHandle | None = None
        self._trained: TrainedArtifact | None = None

        self.update_training_options(Solver.SGDM)

    # Data

    @property
    def data(self) -> ImageSet | None:
        return self._data

    @property
    def training_data(self) -> ImageSet | None:
        return self._training_data

    @property
    def validation_data(self) -> ImageSet | None:
        return self._validation_data

    @property
    def num_classes(self) -> int:
        return self._data.num_classes if self._data is not None else 0

    @property
    def num_images(self) -> int:
        return len(self._data) if self._data is not None else 0

    @property
    def class_labels(self) -> list[str]:
        return self._data.classes if self._data is not None else []

    @property
    def validation_fraction(self) -> float:
        return self._validation_fraction

    @property
    def requires_gray2rgb(self) -> bool:
        return self._requires_gray2rgb

    @property
    def data_type(self) -> DataType | None:
        return self._data_type

    @property
    def current_data_folder(self) -> str | None:
        return self._data_location if self._data_type == DataType.FOLDER else None

    @property
    def current_data_variable(self) -> str | None:
        return self._data_location if self._data_type == DataType.WORKSPACE else None

    @property
    def augmentation_settings(self) -> AugmentationSettings:
        return self._augmentation

    @property
    def validation_labels(self) -> list[str]:
        """Readable names for validation items, e.g. ``"cap - 1"``, ``"cap - 2"``."""
        if self._validation_data is None:
            return []

        labels = self._validation_data.labels
        readable: list[str] = []

        for class_name in self._validation_data.classes:
            count = labels.count(class_name)
            readable.extend(f"{class_name} - {ordinal}" for ordinal in range(1, count + 1))

        return readable

    def set_data_from_file_path(self, folder_path: Path | str) -> None:
        """Imports images stored in one subfolder per class."""
        images = ImageSet.from_folder(folder_path)
        self._bind_data(images, DataType.FOLDER, str(folder_path))

    def validate_workspace_data(self, name: str) -> ImageSet:
        if name not in self.workspace:
            raise DataSourceError(f"Variable '{name}' not found.")

        return from_workspace_object(name, self.workspace.get(name))

    def set_data_from_workspace(self, name: str) -> None:
        images = self.validate_workspace_data(name)
        self._bind_data(images, DataType.WORKSPACE, name)

    def _bind_data(self, images: ImageSet, data_type: DataType, location: str) -> None:
        training_data, validation_data = images.split(self._validation_fraction)

        self._data = images
        self._data_type = data_type
        self._data_location = location
        self._requires_gray2rgb = False
        self._replace_split(training_data, validation_data)

        logger.info(
            "Imported %d images in %d classes from %s '%s'",
            len(images),
            images.num_classes,
            data_type.value,
            location,
        )

    def _replace_split(self, training_data: ImageSet, validation_data: ImageSet) -> None:
        self._training_data = training_data
        self._validation_data = validation_data

        if self._validation_follows_split:
            self._training_options = dataclasses.replace(
                self._training_options, validation_data=validation_data
            )

    def set_validation_fraction(self, validation_fraction: float) -> None:
        if not 0.0 < validation_fraction < 1.0:
            raise ValueError(
                f"Validation fraction must be between 0 and 1, got {validation_fraction}."
            )

        if self._data is not None:
            self._replace_split(*self._data.split(validation_fraction))

        self._validation_fraction = validation_fraction

        logger.info("Validation fraction set to %.3f", validation_fraction)

    def summarize_data(self) -> DataSummary:
        self._require_data()

        classes = self._data.classes

        return DataSummary(
            num_training_obs=len(self._training_data),
            num_validation_obs=len(self._validation_data),
            num_classes=self._data.num_classes,
            class_labels=tuple(classes),
            training_class_distribution=tuple(self._training_data.count_labels(classes)),
            validation_class_distribution=tuple(
                self._validation_data.count_labels(classes)
            ),
        )

    def set_augmentations(self, **settings: Any) -> None:
        self._augmentation = AugmentationSettings.from_arguments(**settings)

    def preview_data(self, num_preview_images: int | None = None) -> DataPreview:
        """Augmented sample of the full data set.

        Indices are drawn with replacement, so an image can appear twice.
        """
        self._require_data()

        if num_preview_images is None:
            num_preview_images = self.config.data.preview_images

        indices = self._random.integers(0, len(self._data), size=num_preview_images)
        pipeline_images = []
        classes = []

        for index in indices:
            image, label = self._data[int(index)]
            pipeline_images.append(_read_only(self._augmentation.augment(image)))
            classes.append(label)

        return DataPreview(
            preview_images=tuple(pipeline_images),
            preview_classes=tuple(classes),
            is_rgb=all(not is_single_channel(image) for image in pipeline_images),
        )

    # Network

    @property
    def network(self) -> NetworkHandle | None:
        return self._network

    @property
    def untrained_network(self) -> Module | None:
        return self._network.network if self._network is not None else None

    @property
    def current_network_name(self) -> str | None:
        return self._network.name if self._network is not None else None

    def set_network_from_pretrained(self, name: str) -> None:
        if name not in model.PRETRAINED_NETWORKS:
            raise UnknownPretrainedNetworkError(
                f"Unknown pretrained network '{name}'. Choose one of: {', '.join(model.PRETRAINED_NETWORKS)}."
            )

        if self.num_classes == 0:
            raise TrainingPreconditionError(
                "Import data before choosing a pretrained network."
            )

        network = model.create_pretrained_network(
            name, self.num_classes, pretrained=self.config.network.download_weights
        )
        self._network = NetworkHandle(
            network, Provenance.PRETRAINED, name, self.num_classes
        )

    def validate_workspace_network(self, name: str) -> None:
        """Checks a workspace network can be trained on the current data.

        Raises, in this order, the first of: NoWorkspaceVariableError,
        NotANetworkError, UninitializedNetworkError, UnableToPredictError,
        NetworkOutputFormatError, WrongNumClassesError.
        """
        if name not in self.workspace:
            raise NoWorkspaceVariableError(f"Variable '{name}' not found.")

        self._require_data()

        model.validate_network(
            self.workspace.get(name),
            name,
            self._training_data.read(0),
            self.num_classes,
        )

    def set_network_from_workspace(self, name: str) -> None:
        if name not in self.workspace:
            raise NoWorkspaceVariableError(f"Variable '{name}' not found.")

        network = self.workspace.get(name)

        if not isinstance(network, Module):
            raise NotANetworkError(
                f"Variable '{name}' should be a torch.nn.Module, but was of class '{type(network).__name__}'."
            )

        self._network = NetworkHandle(
            network, Provenance.WORKSPACE, name, model.get_num_classes(network)
        )

    def create_template_network(self) -> Module:
        # The first training image is a first guess at the input size.
        self._require_data()

        height, width, channels = self._training_data.read(0).shape

        return model.create_template_network(
            self.num_classes, (channels, height, width)
        )

    # Training

    @property
    def training_options(self) -> TrainingOptions:
        return self._training_options

    @property
    def current_solver(self) -> Solver:
        return self._training_options.solver

    @property
    def current_training_overrides(self) -> tuple[tuple[str, Any], ...]:
        return self._overrides

    @property
    def trained_network(self) -> Module | None:
        return self._trained.network if self._trained is not None else None

    @property
    def training_results(self) -> TrainingResults | None:
        return self._trained.training_results if self._trained is not None else None

    def update_training_options(
        self,
        solver: Solver | str,
        overrides: Iterable[tuple[str, Any]] = (),
        **kwargs: Any,
    ) -> None:
        overrides = (*overrides, *kwargs.items())

        # Forced defaults come first so overrides can replace any of them.
        options = trainer.training_options(
            solver,
            [
                ("validation_data", self._validation_data),
                ("plots", "training-progress"),
                ("metrics", ("accuracy",)),
                ("verbose", False),
                *overrides,
            ],
        )

        self._training_options = options
        self._overrides = overrides
        self._validation_follows_split = all(
            name != "validation_data" for name, _ in overrides
        )

    def train(self) -> None:
        if self._data is None:
            raise TrainingPreconditionError("Import data before training.")

        if self._network is None:
            raise TrainingPreconditionError("Choose a network before training.")

        if (
            self._network.num_classes is not None
            and self._network.num_classes != self.num_classes
        ):
            raise TrainingPreconditionError(
                f"Network '{self._network.name}' has {self._network.num_classes} classes "
                f"but the data has {self.num_classes}."
            )

        network = self._network.network
        sample_image = self._data.read(0)
        input_size = model.get_input_size(network, sample_image)

        # Decided once from the first image rather than per image.
        requires_gray2rgb = input_size[0] == 3 and is_single_channel(sample_image)
        color_preprocessing = (
            ColorPreprocessing.GRAY2RGB if requires_gray2rgb else ColorPreprocessing.NONE
        )

        classes = self._data.classes
        training_stream = AugmentedImageSet(
            self._training_data,
            input_size[1:],
            augmentation=self._augmentation,
            color_preprocessing=color_preprocessing,
            classes=classes,
        )

        options = self._training_options

        if isinstance(options.validation_data, ImageSet):
            options = dataclasses.replace(
                options,
                validation_data=AugmentedImageSet(
                    options.validation_data,
                    input_size[1:],
                    color_preprocessing=color_preprocessing,
                    classes=classes,
                ),
            )

        logger.info(
            "Training %s with %s on %d images",
            self._network.name,
            options.solver.value,
            len(training_stream),
        )

        try:
            trained_network, training_results = trainer.train_network(
                training_stream,
                network,
                "crossentropy",
                options,
                num_workers=self.config.data.num_workers,
                generator=self._generator,
            )
        except Exception as exception:
            raise TrainingExecutionError(f"Training failed: {exception}") from exception

        self._trained = TrainedArtifact(
            network=trained_network,
            training_results=training_results,
            input_size=input_size,
            class_labels=tuple(classes),
        )
        self._requires_gray2rgb = requires_gray2rgb

        logger.info(
            "Training finished, final validation accuracy %s",
            training_results["final_validation_accuracy"],
        )

    # Inference

    def predict_on_image(self, image: numpy.ndarray) -> PredictionResult:
        return self._predict_image(read_image(numpy.asarray(image)))

    def predict(self, data_split: DataSplit | str, index: int) -> PredictionResult:
        """Predicts on the ``index``-th image (1-based) of a split."""
        self._require_trained()
        images = self._get_split(data_split)

        if not 1 <= index <= len(images):
            raise IndexError(
                f"Index {index} is outside 1..{len(images)} for the {DataSplit(data_split).value} data."
            )

        return self._predict_image(images.read(index - 1))

    def _predict_image(self, image: numpy.ndarray) -> PredictionResult:
        artifact = self._require_trained()

        image = preprocess_image(image, artifact.input_size[1:], self._color_preprocessing())
        scores = trainer.predict_scores(
            artifact.network, image_to_tensor(image).unsqueeze(0)
        )[0].numpy()
        channel = int(scores.argmax())

        return PredictionResult(
            predicted_label=artifact.class_labels[channel],
            predicted_label_score=float(scores[channel]),
            predicted_label_channel=channel,
            scores=_read_only(scores),
            labels=artifact.class_labels,
            image=_read_only(image),
        )

    def confusion_matrix(self, data_split: DataSplit | str) -> ConfusionResult:
        artifact = self._require_trained()
        images = self._get_split(data_split)
        unknown_classes = sorted(set(images.classes) - set(artifact.class_labels))

        if unknown_classes:
            raise TrainingPreconditionError(
                f"Classes {', '.join(unknown_classes)} were not seen by the trained network. "
                "Train again on the current data."
            )

        dataset = AugmentedImageSet(
            images,
            artifact.input_size[1:],
            color_preprocessing=self._color_preprocessing(),
            classes=artifact.class_labels,
        )
        num_classes = len(artifact.class_labels)
        confusion = MulticlassConfusionMatrix(num_classes=num_classes)

        if len(dataset) > 0:
            scores = trainer.minibatch_predict(
                artifact.network,
                dataset,
                batch_size=self._training_options.mini_batch_size,
                num_workers=self.config.data.num_workers,
            )
            confusion.update(scores.argmax(dim=1), torch.tensor(dataset.targets))
            matrix = confusion.compute().numpy()
        else:
            matrix = numpy.zeros((num_classes, num_classes), dtype=numpy.int64)

        return ConfusionResult(
            confusion_matrix=_read_only(matrix), class_labels=artifact.class_labels
        )

    def interpret(
        self, data_split: DataSplit | str, index: int, technique: Technique | str
    ) -> InterpretationResult:
        prediction = self.predict(data_split, index)

        importance = explain.explain(
            technique,
            self._trained.network,
            prediction.image,
            prediction.predicted_label_channel,
            self.config.interpretability,
        )

        return InterpretationResult(
            image=prediction.image,
            predicted_label=prediction.predicted_label,
            predicted_label_score=prediction.predicted_label_score,
            predicted_label_channel=prediction.predicted_label_channel,
            map=_read_only(importance),
        )

    def get_struct_for_export(self) -> ExportResult:
        artifact = self._require_trained()

        return ExportResult(
            trained_model=artifact.network, training_results=artifact.training_results
        )

    def export_to_workspace(self, name: str = "trainedModel") -> None:
        self.workspace.assign(name, self.get_struct_for_export())

    def generate_code_for_training(self, now: datetime | None = None) -> list[str]:
        self._require_data()

        if self._network is None:
            raise TrainingPreconditionError("Choose a network before generating code.")

        return codegen.generate_training_code(
            provenance=self._network.provenance,
            network_name=self._network.name,
            num_classes=self.num_classes,
            data_type=self._data_type,
            data_location=self._data_location,
            validation_fraction=self._validation_fraction,
            augmentation=self._augmentation,
            requires_gray2rgb=self._requires_gray2rgb,
            solver=self.current_solver,
            overrides=self._overrides,
            now=now,
        )

    def _color_preprocessing(self) -> ColorPreprocessing:
        if self._requires_gray2rgb:
            return ColorPreprocessing.GRAY2RGB

        return ColorPreprocessing.NONE

    def _get_split(self, data_split: DataSplit | str) -> ImageSet:
        self._require_data()

        if DataSplit(data_split) == DataSplit.TRAINING:
            return self._training_data

        return self._validation_data

    def _require_data(self) -> None:
        if self._data is None:
            raise TrainingPreconditionError("No data has been imported.")

    def _require_trained(self) -> TrainedArtifact:
        if self._trained is None:
            raise NoTrainedNetworkError("No trained network is available. Train a network first.")

        return self._trained
