import logging
import re
from enum import Enum
from typing import Callable

import numpy
import torch
from lime import lime_image
from torch import Tensor
from torch.nn import Module
from torch.nn.functional import interpolate, softmax
from torchcam.methods import GradCAM

from imageclassifier.config import InterpretabilityConfig
from imageclassifier.errors import UnknownTechniqueError
from imageclassifier.model import get_network_device
from imageclassifier.preprocessing import image_to_tensor

logger = logging.getLogger(__name__)


class Technique(Enum):
    GRAD_CAM = "grad-cam"
    LIME = "lime"
    OCCLUSION_SENSITIVITY = "occlusion-sensitivity"

    @classmethod
    def parse(cls, name: "Technique | str") -> "Technique":
        if isinstance(name, Technique):
            return name

        key = re.sub(r"[\s_\-]", "", str(name)).lower()

        if key not in TECHNIQUE_ALIASES:
            raise UnknownTechniqueError(
                f"Unknown interpretability technique '{name}'. "
                f"Choose one of: {', '.join(technique.value for technique in cls)}."
            )

        return TECHNIQUE_ALIASES[key]


TECHNIQUE_ALIASES = {
    "gradcam": Technique.GRAD_CAM,
    "lime": Technique.LIME,
    "imagelime": Technique.LIME,
    "occlusion": Technique.OCCLUSION_SENSITIVITY,
    "occlusionsensitivity": Technique.OCCLUSION_SENSITIVITY,
}


def grad_cam(
    network: Module,
    image: numpy.ndarray,
    channel: int,
    settings: InterpretabilityConfig,
) -> numpy.ndarray:
    input = image_to_tensor(image).unsqueeze(0).to(get_network_device(network))
    network.eval()

    cam_extractor = GradCAM(network, input_shape=tuple(input.shape[1:]))

    try:
        output: Tensor = network(input)
        activation_map = cam_extractor(channel, output)[0]
    finally:
        cam_extractor.remove_hooks()

    activation_map = interpolate(
        activation_map.detach().reshape(1, 1, *activation_map.shape[-2:]).float(),
        size=image.shape[:2],
        mode="bilinear",
        align_corners=False,
    )

    return activation_map[0, 0].cpu().numpy().astype(numpy.float32)


def lime(
    network: Module,
    image: numpy.ndarray,
    channel: int,
    settings: InterpretabilityConfig,
) -> numpy.ndarray:
    channels = image.shape[2]
    device = get_network_device(network)

    def classifier_fn(images: numpy.ndarray) -> numpy.ndarray:
        batch = torch.from_numpy(images[..., :channels].astype(numpy.float32) / 255.0)
        batch = batch.permute(0, 3, 1, 2).to(device)

        with torch.no_grad():
            return softmax(network(batch), dim=1).cpu().numpy()

    network.eval()

    explainer = lime_image.LimeImageExplainer(random_state=0)
    explanation = explainer.explain_instance(
        image[:, :, 0] if channels == 1 else image,
        classifier_fn,
        labels=(channel,),
        top_labels=None,
        hide_color=0,
        num_samples=settings.lime_num_samples,
        batch_size=settings.lime_batch_size,
    )

    importance = numpy.zeros(image.shape[:2], dtype=numpy.float32)

    for segment, weight in explanation.local_exp[channel]:
        importance[explanation.segments == segment] = weight

    return importance


def occlusion_sensitivity(
    network: Module,
    image: numpy.ndarray,
    channel: int,
    settings: InterpretabilityConfig,
) -> numpy.ndarray:
    height, width = image.shape[:2]
    mask_size = settings.occlusion_mask_size or max(1, int(numpy.ceil(0.2 * min(height, width))))
    stride = settings.occlusion_stride or max(1, int(numpy.ceil(0.1 * min(height, width))))

    device = get_network_device(network)
    input = image_to_tensor(image)
    mask_value = input.mean(dim=(1, 2), keepdim=True)

    network.eval()

    with torch.no_grad():
        baseline = softmax(network(input.unsqueeze(0).to(device)), dim=1)[0, channel].item()

    positions = [
        (top, left)
        for top in _mask_positions(height, mask_size, stride)
        for left in _mask_positions(width, mask_size, stride)
    ]

    importance = torch.zeros((height, width))
    coverage = torch.zeros((height, width))

    for start in range(0, len(positions), settings.occlusion_batch_size):
        batch_positions = positions[start : start + settings.occlusion_batch_size]
        batch = input.unsqueeze(0).repeat(len(batch_positions), 1, 1, 1)

        for index, (top, left) in enumerate(batch_positions):
            batch[index, :, top : top + mask_size, left : left + mask_size] = mask_value

        with torch.no_grad():
            scores = softmax(network(batch.to(device)), dim=1)[:, channel].cpu()

        for (top, left), score in zip(batch_positions, scores):
            importance[top : top + mask_size, left : left + mask_size] += baseline - score.item()
            coverage[top : top + mask_size, left : left + mask_size] += 1

    return (importance / coverage.clamp(min=1)).numpy().astype(numpy.float32)


def _mask_positions(length: int, mask_size: int, stride: int) -> list[int]:
    if mask_size >= length:
        return [0]

    positions = list(range(0, length - mask_size + 1, stride))

    if positions[-1] != length - mask_size:
        positions.append(length - mask_size)

    return positions


TECHNIQUES: dict[
    Technique,
    Callable[[Module, numpy.ndarray, int, InterpretabilityConfig], numpy.ndarray],
] = {
    Technique.GRAD_CAM: grad_cam,
    Technique.LIME: lime,
    Technique.OCCLUSION_SENSITIVITY: occlusion_sensitivity,
}


def explain(
    technique: Technique | str,
    network: Module,
    image: numpy.ndarray,
    channel: int,
    settings: InterpretabilityConfig | None = None,
) -> numpy.ndarray:
    technique = Technique.parse(technique)

    logger.info("Computing %s map for class channel %d", technique.value, channel)

    return TECHNIQUES[technique](
        network, image, channel, settings or InterpretabilityConfig()
    )
