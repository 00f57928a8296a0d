import logging

import pytest

from imageclassifier import config, utilities
from imageclassifier.config import AppConfig, parse_config


def test_defaults():
    app_config = AppConfig()

    assert app_config.seed == config.SEED
    assert app_config.data.validation_fraction == 0.3
    assert app_config.network.download_weights is True


def test_parse_config_reads_sections(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        'seed = 7\n'
        'log_directory = "logs"\n'
        "\n"
        "[data]\n"
        "validation_fraction = 0.25\n"
        "num_workers = 2\n"
        "\n"
        "[network]\n"
        "download_weights = false\n"
        "\n"
        "[interpretability]\n"
        "lime_num_samples = 50\n"
        "occlusion_mask_size = 8\n"
    )

    app_config = parse_config(config_path)

    assert app_config.seed == 7
    assert app_config.log_directory == "logs"
    assert app_config.data.validation_fraction == 0.25
    assert app_config.data.num_workers == 2
    assert app_config.network.download_weights is False
    assert app_config.interpretability.lime_num_samples == 50
    assert app_config.interpretability.occlusion_mask_size == 8
    assert app_config.interpretability.lime_batch_size == 10


def test_parse_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_config(tmp_path / "missing.toml")


def test_parse_config_rejects_bad_fraction(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("[data]\nvalidation_fraction = 1.0\n")

    with pytest.raises(ValueError):
        parse_config(config_path)


def test_parse_config_rejects_unknown_keys(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("[data]\nbatch = 3\n")

    with pytest.raises(TypeError):
        parse_config(config_path)


@pytest.mark.parametrize(
    "number, expected", [(10.5, 11), (0.7 * 15, 11), (0.4 * 15, 6), (-2.5, -3), (2.4999, 2)]
)
def test_iround(number, expected):
    assert utilities.iround(number) == expected


def test_get_device_rejects_unknown_environment():
    with pytest.raises(ValueError):
        utilities.get_device("tpu")


def test_get_device_cpu():
    assert utilities.get_device("cpu").type == "cpu"


def test_format_duration():
    assert utilities.format_duration(3723.25) == "01:02:03.250"


def test_setup_logging_creates_log_file(tmp_path):
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    root.handlers = []

    try:
        utilities.setup_logging(tmp_path / "logs")
        logging.getLogger("imageclassifier.test").info("hello")

        for handler in root.handlers:
            handler.flush()

        assert "hello" in (tmp_path / "logs" / config.LOG_FILE_NAME).read_text()
    finally:
        for handler in root.handlers:
            handler.close()

        root.handlers = previous_handlers
