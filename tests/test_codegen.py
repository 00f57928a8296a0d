import ast
from datetime import datetime

import numpy as np
import pytest

from imageclassifier import codegen
from imageclassifier.augmentation import AugmentationSettings
from imageclassifier.data import DataType, ImageSet
from imageclassifier.model import Provenance
from imageclassifier.trainer import Solver

NOW = datetime(2026, 1, 2, 3, 4, 5)


def generate(**overrides):
    arguments = dict(
        provenance=Provenance.PRETRAINED,
        network_name="resnet18",
        num_classes=5,
        data_type=DataType.FOLDER,
        data_location="/data/merch",
        validation_fraction=0.3,
        augmentation=AugmentationSettings(),
        requires_gray2rgb=False,
        solver=Solver.SGDM,
        overrides=(),
        now=NOW,
    )
    arguments.update(overrides)
    return codegen.generate_training_code(**arguments)


def test_last_line_is_confusion_chart():
    assert generate()[-1] == codegen.CONFUSION_CHART_STATEMENT


def test_script_is_valid_python():
    lines = generate(
        augmentation=AugmentationSettings.from_arguments(x_reflection=True, rotation=(-5, 5)),
        requires_gray2rgb=True,
        overrides=(("max_epochs", 3), ("initial_learn_rate", 0.001)),
    )

    ast.parse("\n".join(lines))


def test_generation_is_deterministic():
    assert generate() == generate()


def test_preamble_has_timestamp():
    assert "2026-01-02 03:04:05" in generate()[1]


def test_pretrained_network_line():
    assert 'network = model.create_pretrained_network("resnet18", num_classes=5)' in generate()


def test_workspace_sources_are_referenced_by_name():
    lines = generate(
        provenance=Provenance.WORKSPACE,
        network_name="my_net",
        data_type=DataType.WORKSPACE,
        data_location="my_images",
    )

    assert "network = my_net" in lines
    assert "images = my_images" in lines


def test_split_uses_three_decimals():
    lines = generate(validation_fraction=0.25)

    assert (
        "training_images, validation_images = images.split(validation_fraction=0.250)"
        in lines
    )


def test_augmentations_keep_supplied_order():
    lines = generate(
        augmentation=AugmentationSettings.from_arguments(y_reflection=True, scale=(0.9, 1.1))
    )

    start = lines.index("augmenter = augmentation.AugmentationSettings.from_arguments(")

    assert lines[start + 1 : start + 4] == [
        "    y_reflection=True,",
        "    scale=(0.9, 1.1),",
        ")",
    ]


def test_gray2rgb_only_when_required():
    assert not any("gray2rgb" in line for line in generate())
    assert any("gray2rgb" in line for line in generate(requires_gray2rgb=True))


def test_overrides_replace_defaults_without_duplicates():
    source = "\n".join(
        generate(overrides=(("verbose", True), ("max_epochs", 4), ("max_epochs", 6)))
    )

    call = next(
        node.value
        for node in ast.walk(ast.parse(source))
        if isinstance(node, ast.Assign)
        and isinstance(node.targets[0], ast.Name)
        and node.targets[0].id == "options"
    )
    names = [keyword.arg for keyword in call.keywords]
    values = {
        keyword.arg: ast.literal_eval(keyword.value)
        for keyword in call.keywords
        if keyword.arg != "validation_data"
    }

    assert names.count("max_epochs") == 1
    assert names[:4] == ["validation_data", "plots", "metrics", "verbose"]
    assert values["verbose"] is True
    assert values["max_epochs"] == 6
    assert values["plots"] == "training-progress"
    assert ast.literal_eval(call.args[0]) == "sgdm"


def test_short_calls_stay_on_one_line():
    assert "input_size = model.get_input_size(network, training_images.read(0))" in generate()


def test_object_overrides_fall_back_to_default():
    validation = ImageSet.from_arrays([np.zeros((4, 4, 3), dtype=np.uint8)], ["a"])

    lines = generate(overrides=(("validation_data", validation), ("max_epochs", 3)))

    ast.parse("\n".join(lines))
    assert any("validation_data was set to a ImageSet object" in line for line in lines)
    assert any("validation_data=augmented_validation" in line for line in lines)


def test_render_value_rejects_objects():
    with pytest.raises(TypeError):
        codegen.render_value(object())
