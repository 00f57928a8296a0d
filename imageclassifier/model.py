import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy
import timm
from timm.data import resolve_model_data_config
import torch
from torch import Tensor
from torch.nn import Conv2d, Flatten, LazyLinear, Linear, Module, Sequential
from torch.nn.parameter import is_lazy
from torchvision.transforms import Normalize

from imageclassifier import config
from imageclassifier.errors import (
    NetworkOutputFormatError,
    NotANetworkError,
    UnableToPredictError,
    UninitializedNetworkError,
    UnknownPretrainedNetworkError,
    WrongNumClassesError,
)
from imageclassifier.preprocessing import image_to_tensor

PRETRAINED_NETWORKS: dict[str, str] = {
    "resnet18": "resnet18.a1_in1k",
    "resnet50": "resnet50.a1_in1k",
    "mobilenetv3": "mobilenetv3_small_100.lamb_in1k",
    "efficientnet": "efficientnet_b0.ra_in1k",
    "convnext": "convnextv2_atto.fcmae_ft_in1k",
    "densenet121": "densenet121.ra_in1k",
    "vgg16": "vgg16.tv_in1k",
}

logger = logging.getLogger(__name__)


class Provenance(Enum):
    PRETRAINED = "pretrained"
    WORKSPACE = "workspace"


@dataclass(frozen=True)
class NetworkHandle:
    network: Module
    provenance: Provenance
    name: str
    num_classes: int | None


class PretrainedClassifier(Module):
    def __init__(
        self,
        backbone: Module,
        input_size: Sequence[int],
        mean: Sequence[float] = config.NORMALIZE_MEAN,
        std: Sequence[float] = config.NORMALIZE_STD,
    ) -> None:
        super().__init__()

        self.normalize = Normalize(mean=list(mean), std=list(std))
        self.backbone = backbone
        self.input_size = tuple(int(value) for value in input_size)
        self.num_classes = int(backbone.num_classes)

    def forward(self, input: Tensor) -> Tensor:
        return self.backbone(self.normalize(input))


def create_pretrained_network(
    name: str, num_classes: int, pretrained: bool = True
) -> PretrainedClassifier:
    if name not in PRETRAINED_NETWORKS:
        raise UnknownPretrainedNetworkError(
            f"Unknown pretrained network '{name}'. Choose one of: {', '.join(PRETRAINED_NETWORKS)}."
        )

    if num_classes < 1:
        raise ValueError(f"num_classes must be positive, got {num_classes}")

    backbone = timm.create_model(
        PRETRAINED_NETWORKS[name], pretrained=pretrained, num_classes=num_classes
    )
    data_config = resolve_model_data_config(backbone)

    logger.info(
        "Created %s (%s) with %d classes, pretrained=%s",
        name,
        PRETRAINED_NETWORKS[name],
        num_classes,
        pretrained,
    )

    return PretrainedClassifier(
        backbone,
        input_size=data_config["input_size"],
        mean=data_config["mean"],
        std=data_config["std"],
    )


def create_template_network(
    num_classes: int, input_size: Sequence[int]
) -> Sequential:
    network = Sequential(Flatten(), LazyLinear(num_classes))
    network.input_size = tuple(int(value) for value in input_size)

    return network


def get_first_convolution(network: Module) -> Conv2d | None:
    for module in network.modules():
        if isinstance(module, Conv2d):
            return module

    return None


def get_input_size(
    network: Module, sample_image: numpy.ndarray | None = None
) -> tuple[int, int, int]:
    input_size = getattr(network, "input_size", None)

    pretrained_config = getattr(network, "pretrained_cfg", None)

    if input_size is None and isinstance(pretrained_config, dict):
        input_size = pretrained_config.get("input_size")

    if input_size is not None:
        channels, height, width = (int(value) for value in input_size)
        return channels, height, width

    if sample_image is None:
        raise ValueError(
            "Network does not declare an input size; a sample image is required."
        )

    convolution = get_first_convolution(network)
    channels = (
        convolution.in_channels if convolution is not None else sample_image.shape[2]
    )

    return int(channels), int(sample_image.shape[0]), int(sample_image.shape[1])


def get_num_classes(network: Module) -> int | None:
    num_classes = getattr(network, "num_classes", None)

    if isinstance(num_classes, int):
        return num_classes

    last_linear = None

    for module in network.modules():
        if isinstance(module, Linear) and not is_lazy(module.weight):
            last_linear = module

    if last_linear is not None:
        return int(last_linear.out_features)

    return None


def has_uninitialized_parameters(network: Module) -> bool:
    return any(is_lazy(parameter) for parameter in network.parameters()) or any(
        is_lazy(buffer) for buffer in network.buffers()
    )


def get_network_device(network: Module) -> torch.device:
    parameter = next(network.parameters(), None)

    if parameter is None:
        return torch.device("cpu")

    return parameter.device


def validate_network(
    network: object, name: str, sample_image: numpy.ndarray, num_classes: int
) -> None:
    if not isinstance(network, Module):
        raise NotANetworkError(
            f"Variable '{name}' should be a torch.nn.Module, but was of class '{type(network).__name__}'."
        )

    if has_uninitialized_parameters(network):
        raise UninitializedNetworkError(f"Network '{name}' must be initialized.")

    input = image_to_tensor(sample_image).unsqueeze(0)
    was_training = network.training

    try:
        network.eval()

        with torch.no_grad():
            output = network(input.to(get_network_device(network)))
    except Exception as exception:
        raise UnableToPredictError(
            f"Unable to predict on a single image with the selected network.\n\nError: {exception}"
        ) from exception
    finally:
        network.train(was_training)

    if not isinstance(output, Tensor) or output.ndim != 2:
        shape = tuple(output.shape) if isinstance(output, Tensor) else type(output).__name__
        raise NetworkOutputFormatError(
            f"Expected network output to be a (batch, class) tensor, but got {shape}."
        )

    if output.shape[1] != num_classes:
        raise WrongNumClassesError(
            f"Expected network output to have {num_classes} classes, but it had {output.shape[1]} classes.\n\n"
            f"If you used timm.create_model, don't forget to set num_classes={num_classes}."
        )
