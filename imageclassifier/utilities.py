import logging
import random
from pathlib import Path

import numpy
import torch

from imageclassifier import config


def seed_all(seed: int) -> None:
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    numpy.random.seed(seed)
    random.seed(seed)


def iround(number: float) -> int:
    # Half away from zero; products such as 0.7 * 15 are cleaned up first.
    number = round(number, 9)

    if number < 0:
        return -int(-number + 0.5)

    return int(number + 0.5)


def truncate(number: float, decimals: int = 0):
    multiplier = 10**decimals
    return int(number * multiplier) / multiplier


def format_duration(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    millis = int((seconds % 1) * 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def get_device(execution_environment: str = "auto") -> torch.device:
    if execution_environment == "cpu":
        return torch.device("cpu")

    if execution_environment == "gpu":
        if not torch.cuda.is_available():
            raise RuntimeError("execution_environment='gpu' but no CUDA device is available.")

        return torch.device("cuda")

    if execution_environment != "auto":
        raise ValueError(f"Unknown execution environment: '{execution_environment}'")

    if torch.cuda.is_available():
        return torch.device("cuda")
    else:
        return torch.device("cpu")


def setup_logging(log_directory: Path, level=logging.INFO):
    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=[
            logging.FileHandler(
                log_directory / config.LOG_FILE_NAME,
                encoding="utf-8",
            )
        ],
        level=level,
    )
