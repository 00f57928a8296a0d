import dataclasses
import tomllib
from dataclasses import dataclass
from pathlib import Path

SEED = 42

EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff")

VALIDATION_FRACTION = 0.3

PREVIEW_IMAGES = 8

NORMALIZE_MEAN = (0.485, 0.456, 0.406)
NORMALIZE_STD = (0.229, 0.224, 0.225)

LOG_FILE_NAME = "imageclassifier.log"


@dataclass
class DataConfig:
    validation_fraction: float = VALIDATION_FRACTION
    num_workers: int = 0
    preview_images: int = PREVIEW_IMAGES


@dataclass
class NetworkConfig:
    download_weights: bool = True


@dataclass
class InterpretabilityConfig:
    lime_num_samples: int = 1000
    lime_batch_size: int = 10
    occlusion_mask_size: int | None = None
    occlusion_stride: int | None = None
    occlusion_batch_size: int = 32


@dataclass
class AppConfig:
    seed: int = SEED
    log_directory: str | None = None
    data: DataConfig = dataclasses.field(default_factory=DataConfig)
    network: NetworkConfig = dataclasses.field(default_factory=NetworkConfig)
    interpretability: InterpretabilityConfig = dataclasses.field(
        default_factory=InterpretabilityConfig
    )


def parse_config(config_path: Path) -> AppConfig:
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "rb") as file:
        raw_config = tomllib.load(file)

    config_kwargs = {}

    if "seed" in raw_config:
        config_kwargs["seed"] = raw_config["seed"]
    if "log_directory" in raw_config:
        config_kwargs["log_directory"] = raw_config["log_directory"]

    if "data" in raw_config:
        config_kwargs["data"] = DataConfig(**raw_config["data"])

    if "network" in raw_config:
        config_kwargs["network"] = NetworkConfig(**raw_config["network"])

    if "interpretability" in raw_config:
        config_kwargs["interpretability"] = InterpretabilityConfig(
            **raw_config["interpretability"]
        )

    config = AppConfig(**config_kwargs)

    if not 0.0 < config.data.validation_fraction < 1.0:
        raise ValueError(
            f"validation_fraction must be between 0 and 1, got {config.data.validation_fraction}"
        )

    return config
