import random

import torch

TIPS = (
    "Start from a small pretrained network such as resnet18 before trying larger ones.",
    "A larger mini_batch_size can converge faster, but training may be less stable.",
    "Use augmentations to increase the effective size of the data set and help the network generalize.",
    "Keep plots='training-progress' to watch the loss each epoch and catch overfitting early.",
)

HELP = {
    "ImportFromFolder": "Select a folder containing one subfolder of images per class.",
    "FromPretrainedNetwork": "Transfer learn from a pretrained image classifier such as resnet18 or mobilenetv3.",
    "FromWorkspaceNetwork": "Use a torch.nn.Module from the workspace. It must accept an image batch and return one score per class.",
    "FromScratchNetwork": "Start from a template network sized for the imported data and edit it before training.",
    "DataAugmentation": "Augmentations are applied at random to the training data to increase the effective data set size.",
    "PickingPretrainedNetwork": "Start with a small pretrained network like mobilenetv3. If that gives poor accuracy, move to a larger network like resnet50.",
    "InitialLearnRate": "Learn rate used by the solver. A higher value gives faster convergence, but may give worse final results and less stable training.",
    "MiniBatchSize": "Number of images passed to the network in each training iteration. A higher value gives faster convergence, but requires more memory.",
    "MaxEpochs": "Number of complete passes through the training data. A higher value means training takes longer, but may give more accurate results.",
}

WEB_LINKS = {
    "ImageAugmentation": "https://albumentations.ai/docs/",
    "PretrainedNetwork": "https://huggingface.co/docs/timm/index",
    "Interpretability": "https://frgfm.github.io/torch-cam/",
    "TrainingOptions": "https://pytorch.org/docs/stable/optim.html",
    "LIME": "https://lime-ml.readthedocs.io/en/latest/",
}


def _execution_environment_help() -> str:
    if torch.cuda.is_available():
        gpu_info = "Your machine has a CUDA device. See torch.cuda.is_available() for more info."
    else:
        gpu_info = "Your machine does not have a CUDA device. See torch.cuda.is_available() for more info."

    return (
        "Device used for training.\n"
        "'auto': use the GPU if one is available.\n"
        "'gpu': always use the GPU.\n"
        "'cpu': use the CPU, not the GPU.\n"
        f"\n{gpu_info}"
    )


class Guide:
    """Training tips, help text and documentation links for the user interface."""

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)
        self._help = dict(HELP)
        self._help["ExecutionEnvironment"] = _execution_environment_help()

    @property
    def help_ids(self) -> list[str]:
        return sorted(self._help)

    def get_tip(self) -> str:
        return self._random.choice(TIPS)

    def get_help_for(self, id: str) -> str:
        return self._help[id]

    def get_web_link_for(self, id: str) -> str:
        return WEB_LINKS[id]
