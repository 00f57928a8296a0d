"""Renders a standalone training script from the current backend state.

The script is assembled from statement records so every section keeps a
fixed order and the output is identical for identical state, apart from the
timestamp in the preamble.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from imageclassifier.augmentation import AugmentationSettings
from imageclassifier.data import DataType
from imageclassifier.model import Provenance
from imageclassifier.trainer import Solver

LINE_LENGTH = 88

INDENT = "    "

CONFUSION_CHART_STATEMENT = (
    "express.imshow(confusion, x=images.classes, y=images.classes, text_auto=True).show()"
)


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Call:
    function: str
    arguments: tuple[tuple[str | None, Any], ...] = ()


@dataclass(frozen=True)
class Assign:
    targets: tuple[str, ...]
    value: Call | Literal


@dataclass(frozen=True)
class Expression:
    call: Call


@dataclass(frozen=True)
class Comment:
    text: str


@dataclass(frozen=True)
class Raw:
    text: str


@dataclass(frozen=True)
class Blank:
    pass


Statement = Assign | Expression | Comment | Raw | Blank


def render_value(value: Any) -> str:
    if isinstance(value, Literal):
        return value.text
    if isinstance(value, Enum):
        return render_value(value.value)
    if isinstance(value, Path):
        return render_value(str(value))
    if isinstance(value, str):
        return json.dumps(value)
    if value is None or isinstance(value, (bool, int, float)):
        return repr(value)
    if isinstance(value, tuple):
        items = [render_value(item) for item in value]
        return f"({items[0]},)" if len(items) == 1 else f"({', '.join(items)})"
    if isinstance(value, list):
        return f"[{', '.join(render_value(item) for item in value)}]"

    raise TypeError(f"Cannot render a value of type '{type(value).__name__}' as source.")


def has_literal_form(value: Any) -> bool:
    if isinstance(value, (tuple, list)):
        return all(has_literal_form(item) for item in value)

    return value is None or isinstance(
        value, (Literal, Enum, Path, str, bool, int, float)
    )


def render_call(call: Call, prefix: str = "") -> list[str]:
    arguments = [
        render_value(value) if name is None else f"{name}={render_value(value)}"
        for name, value in call.arguments
    ]
    line = f"{prefix}{call.function}({', '.join(arguments)})"

    if len(line) <= LINE_LENGTH or not arguments:
        return [line]

    return [
        f"{prefix}{call.function}(",
        *[f"{INDENT}{argument}," for argument in arguments],
        ")",
    ]


def render_statement(statement: Statement) -> list[str]:
    if isinstance(statement, Assign):
        prefix = f"{', '.join(statement.targets)} = "

        if isinstance(statement.value, Call):
            return render_call(statement.value, prefix)

        return [f"{prefix}{statement.value.text}"]
    if isinstance(statement, Expression):
        return render_call(statement.call)
    if isinstance(statement, Comment):
        return [f"# {statement.text}"]
    if isinstance(statement, Raw):
        return [statement.text]

    return [""]


def render(statements: Sequence[Statement]) -> list[str]:
    return [line for statement in statements for line in render_statement(statement)]


def preamble_section(now: datetime) -> list[Statement]:
    return [
        Comment("Classify images with a deep neural network"),
        Comment(f"Autogenerated by imageclassifier on {now:%Y-%m-%d %H:%M:%S}"),
        Blank(),
        Raw("from plotly import express"),
        Raw("from sklearn import metrics"),
        Blank(),
        Raw("from imageclassifier import augmentation, data, model, preprocessing, trainer"),
        Blank(),
    ]


def network_section(
    provenance: Provenance, network_name: str, num_classes: int
) -> list[Statement]:
    if provenance == Provenance.WORKSPACE:
        network = Literal(network_name)
    else:
        network = Call(
            "model.create_pretrained_network",
            ((None, network_name), ("num_classes", num_classes)),
        )

    return [Comment("Create network"), Assign(("network",), network), Blank()]


def data_section(
    data_type: DataType,
    data_location: str,
    validation_fraction: float,
    augmentation: AugmentationSettings,
    requires_gray2rgb: bool,
) -> list[Statement]:
    if data_type == DataType.WORKSPACE:
        images = Literal(data_location)
    else:
        images = Call("data.ImageSet.from_folder", ((None, data_location),))

    color_preprocessing = (
        (("color_preprocessing", "gray2rgb"),) if requires_gray2rgb else ()
    )

    return [
        Comment("Create image set"),
        Assign(("images",), images),
        Assign(
            ("training_images", "validation_images"),
            Call(
                "images.split",
                (("validation_fraction", Literal(f"{validation_fraction:.3f}")),),
            ),
        ),
        Assign(
            ("input_size",),
            Call(
                "model.get_input_size",
                ((None, Literal("network")), (None, Literal("training_images.read(0)"))),
            ),
        ),
        Assign(
            ("augmenter",),
            Call(
                "augmentation.AugmentationSettings.from_arguments",
                tuple(augmentation.to_arguments()),
            ),
        ),
        Assign(
            ("augmented_training",),
            Call(
                "preprocessing.AugmentedImageSet",
                (
                    (None, Literal("training_images")),
                    (None, Literal("input_size[1:]")),
                    ("augmentation", Literal("augmenter")),
                    *color_preprocessing,
                    ("classes", Literal("images.classes")),
                ),
            ),
        ),
        Assign(
            ("augmented_validation",),
            Call(
                "preprocessing.AugmentedImageSet",
                (
                    (None, Literal("validation_images")),
                    (None, Literal("input_size[1:]")),
                    *color_preprocessing,
                    ("classes", Literal("images.classes")),
                ),
            ),
        ),
        Blank(),
    ]


def training_options_section(
    solver: Solver, overrides: Sequence[tuple[str, Any]]
) -> list[Statement]:
    options: dict[str, Any] = {
        "validation_data": Literal("augmented_validation"),
        "plots": "training-progress",
        "metrics": ("accuracy",),
        "verbose": False,
    }

    comments = []

    for name, value in overrides:
        if has_literal_form(value):
            options[name] = value
        else:
            # Objects such as a caller-supplied dataset keep the default.
            comments.append(
                Comment(
                    f"{name} was set to a {type(value).__name__} object; "
                    "the default is used here, replace it by hand."
                )
            )

    return [
        Comment("Specify training options"),
        *comments,
        Assign(
            ("options",),
            Call("trainer.training_options", ((None, solver), *options.items())),
        ),
        Blank(),
    ]


def training_section() -> list[Statement]:
    return [
        Comment("Train network with cross-entropy loss"),
        Assign(
            ("network", "training_results"),
            Call(
                "trainer.train_network",
                (
                    (None, Literal("augmented_training")),
                    (None, Literal("network")),
                    (None, "crossentropy"),
                    (None, Literal("options")),
                ),
            ),
        ),
        Blank(),
    ]


def inference_section() -> list[Statement]:
    return [
        Comment("Predict with network"),
        Comment("Predict on a single image"),
        Raw("image, _ = augmented_validation[0]"),
        Raw("scores = trainer.predict_scores(network, image.unsqueeze(0))"),
        Raw("predicted_label = images.classes[int(scores.argmax(dim=1))]"),
        Raw("picture = (image.permute(1, 2, 0).squeeze(-1).numpy() * 255).astype(\"uint8\")"),
        Raw("express.imshow(picture, title=f\"Prediction: {predicted_label}\").show()"),
        Blank(),
        Comment("Predict on many images and plot confusion matrix."),
        Comment("Use this to evaluate network performance on a held-out test set."),
        Raw("scores = trainer.minibatch_predict(network, augmented_validation)"),
        Raw("true_labels = augmented_validation.targets"),
        Raw("predicted_labels = scores.argmax(dim=1).tolist()"),
        Raw(
            "confusion = metrics.confusion_matrix("
            "true_labels, predicted_labels, labels=list(range(len(images.classes))))"
        ),
        Raw(CONFUSION_CHART_STATEMENT),
    ]


def generate_training_code(
    provenance: Provenance,
    network_name: str,
    num_classes: int,
    data_type: DataType,
    data_location: str,
    validation_fraction: float,
    augmentation: AugmentationSettings,
    requires_gray2rgb: bool,
    solver: Solver,
    overrides: Sequence[tuple[str, Any]],
    now: datetime | None = None,
) -> list[str]:
    statements = [
        *preamble_section(now or datetime.now()),
        *network_section(provenance, network_name, num_classes),
        *data_section(
            data_type,
            data_location,
            validation_fraction,
            augmentation,
            requires_gray2rgb,
        ),
        *training_options_section(solver, overrides),
        *training_section(),
        *inference_section(),
    ]

    return render(statements)
