import copy
import dataclasses
import logging
import warnings
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, TypedDict

import torch
from rich.console import Console
from rich.table import Table
from sklearn import metrics
from torch import Tensor
from torch.nn import CrossEntropyLoss, Module
from torch.nn.functional import softmax
from torch.optim import SGD, Adam, Optimizer, RMSprop
from torch.utils.data import DataLoader, Dataset, Subset
from tqdm.rich import tqdm
from tqdm.std import TqdmExperimentalWarning

from imageclassifier import utilities
from imageclassifier.errors import UnknownTrainingOptionError
from imageclassifier.model import get_network_device, has_uninitialized_parameters

console = Console()

logger = logging.getLogger(__name__)

LOSSES = {"crossentropy": CrossEntropyLoss}

METRICS = ("accuracy", "precision", "recall", "fscore")


class Solver(Enum):
    SGDM = "sgdm"
    ADAM = "adam"
    RMSPROP = "rmsprop"


@dataclass(frozen=True)
class TrainingOptions:
    solver: Solver
    initial_learn_rate: float
    max_epochs: int = 30
    mini_batch_size: int = 128
    shuffle: str = "once"
    momentum: float = 0.9
    gradient_decay_factor: float = 0.9
    squared_gradient_decay_factor: float = 0.999
    l2_regularization: float = 1e-4
    execution_environment: str = "auto"
    validation_data: Dataset | None = None
    plots: str = "none"
    metrics: tuple[str, ...] = ("accuracy",)
    verbose: bool = True

    def __post_init__(self) -> None:
        if self.shuffle not in ("every-epoch", "once", "never"):
            raise ValueError(f"Unknown shuffle mode: '{self.shuffle}'")

        if self.plots not in ("training-progress", "none"):
            raise ValueError(f"Unknown plots value: '{self.plots}'")

        unknown_metrics = [name for name in self.metrics if name not in METRICS]

        if unknown_metrics:
            raise ValueError(f"Unknown metrics: {', '.join(unknown_metrics)}")

        if self.max_epochs < 1 or self.mini_batch_size < 1:
            raise ValueError("max_epochs and mini_batch_size must be positive.")


SOLVER_DEFAULTS: Mapping[Solver, Mapping[str, Any]] = MappingProxyType(
    {
        Solver.SGDM: MappingProxyType({"initial_learn_rate": 0.01, "momentum": 0.9}),
        Solver.ADAM: MappingProxyType(
            {
                "initial_learn_rate": 0.001,
                "gradient_decay_factor": 0.9,
                "squared_gradient_decay_factor": 0.999,
            }
        ),
        Solver.RMSPROP: MappingProxyType(
            {"initial_learn_rate": 0.001, "squared_gradient_decay_factor": 0.9}
        ),
    }
)

OPTION_NAMES = frozenset(
    field.name for field in dataclasses.fields(TrainingOptions) if field.name != "solver"
)


def training_options(
    solver: Solver | str,
    overrides: Iterable[tuple[str, Any]] = (),
    **kwargs: Any,
) -> TrainingOptions:
    """Builds options from the solver defaults, then folds overrides in order.

    ``overrides`` pairs are applied first, then keyword arguments, so a later
    value for the same key wins.
    """
    solver = Solver(solver)
    values = dict(SOLVER_DEFAULTS[solver])

    for name, value in [*overrides, *kwargs.items()]:
        if name not in OPTION_NAMES:
            raise UnknownTrainingOptionError(
                f"Unknown training option '{name}' for solver '{solver.value}'."
            )

        values[name] = value

    if isinstance(values.get("metrics"), str):
        values["metrics"] = (values["metrics"],)
    elif "metrics" in values:
        values["metrics"] = tuple(values["metrics"])

    return TrainingOptions(solver=solver, **values)


class EpochMetrics(TypedDict):
    epoch: int
    iterations: int
    train_loss: float
    train_accuracy: float
    validation_loss: float | None
    validation_accuracy: float | None
    validation_precision: float | None
    validation_recall: float | None
    validation_fscore: float | None
    learn_rate: float


class TrainingResults(TypedDict):
    solver: str
    device: str
    epoch_history: list[EpochMetrics]
    final_validation_loss: float | None
    final_validation_accuracy: float | None
    duration_seconds: float


def create_optimizer(network: Module, options: TrainingOptions) -> Optimizer:
    parameters = [
        parameter for parameter in network.parameters() if parameter.requires_grad
    ]

    if options.solver == Solver.SGDM:
        return SGD(
            parameters,
            lr=options.initial_learn_rate,
            momentum=options.momentum,
            weight_decay=options.l2_regularization,
        )
    elif options.solver == Solver.ADAM:
        return Adam(
            parameters,
            lr=options.initial_learn_rate,
            betas=(options.gradient_decay_factor, options.squared_gradient_decay_factor),
            weight_decay=options.l2_regularization,
        )
    else:
        return RMSprop(
            parameters,
            lr=options.initial_learn_rate,
            alpha=options.squared_gradient_decay_factor,
            weight_decay=options.l2_regularization,
        )


def create_data_loader(
    dataset: Dataset,
    batch_size: int,
    shuffle: str = "never",
    num_workers: int = 0,
    generator: torch.Generator | None = None,
) -> DataLoader:
    if shuffle == "once":
        permutation = torch.randperm(len(dataset), generator=generator).tolist()
        dataset = Subset(dataset, permutation)

    return DataLoader(
        dataset,
        batch_size=batch_size,
        shuffle=shuffle == "every-epoch",
        num_workers=num_workers,
        generator=generator,
        pin_memory=torch.cuda.is_available(),
    )


def predict_scores(network: Module, input: Tensor) -> Tensor:
    network.eval()

    with torch.no_grad():
        output: Tensor = network(input.to(get_network_device(network)))

    return softmax(output, dim=1).cpu()


def minibatch_predict(
    network: Module, dataset: Dataset, batch_size: int = 128, num_workers: int = 0
) -> Tensor:
    loader = create_data_loader(dataset, batch_size, num_workers=num_workers)
    scores = [predict_scores(network, input) for input, _ in loader]

    if not scores:
        return torch.empty((0, 0))

    return torch.cat(scores, dim=0)


def evaluate(
    network: Module, loader: DataLoader, criterion: Module, metric_names: tuple[str, ...]
) -> dict[str, float]:
    device = get_network_device(network)
    network.eval()

    total_loss = 0.0
    predictions: list[Tensor] = []
    targets: list[Tensor] = []

    with torch.no_grad():
        for input, label in loader:
            input = input.to(device)
            label = label.to(device)

            output: Tensor = network(input)
            total_loss += criterion(output, label).item() * input.size(0)

            predictions.append(output.argmax(dim=1).cpu())
            targets.append(label.cpu())

    predicted = torch.cat(predictions).numpy()
    target = torch.cat(targets).numpy()

    results = {
        "loss": total_loss / len(target),
        "accuracy": 100.0 * metrics.accuracy_score(target, predicted),
    }

    if "precision" in metric_names:
        results["precision"] = 100.0 * metrics.precision_score(
            target, predicted, average="macro", zero_division=0
        )
    if "recall" in metric_names:
        results["recall"] = 100.0 * metrics.recall_score(
            target, predicted, average="macro", zero_division=0
        )
    if "fscore" in metric_names:
        results["fscore"] = 100.0 * metrics.f1_score(
            target, predicted, average="macro", zero_division=0
        )

    return results


def train_network(
    training_data: Dataset,
    network: Module,
    loss: str,
    options: TrainingOptions,
    num_workers: int = 0,
    generator: torch.Generator | None = None,
) -> tuple[Module, TrainingResults]:
    """Fits a copy of ``network`` and returns it with its training history.

    The network passed in is left untouched, so training twice from the same
    starting point gives two independent results.
    """
    if loss not in LOSSES:
        raise ValueError(f"Unknown loss '{loss}'. Choose one of: {', '.join(LOSSES)}.")

    if len(training_data) == 0:
        raise ValueError("Training data is empty.")

    training_start_time = datetime.now()
    device = utilities.get_device(options.execution_environment)
    show_progress = options.plots == "training-progress"

    network = copy.deepcopy(network).to(device)
    criterion = LOSSES[loss]().to(device)

    # Lazy layers take their shape from a first forward pass.
    if has_uninitialized_parameters(network):
        input, _ = training_data[0]

        with torch.no_grad():
            network(input.unsqueeze(0).to(device))

    optimizer = create_optimizer(network, options)

    train_loader = create_data_loader(
        training_data,
        options.mini_batch_size,
        shuffle=options.shuffle,
        num_workers=num_workers,
        generator=generator,
    )

    validation_loader = None

    if options.validation_data is not None and len(options.validation_data) > 0:
        validation_loader = create_data_loader(
            options.validation_data, options.mini_batch_size, num_workers=num_workers
        )

    warnings.filterwarnings("ignore", category=TqdmExperimentalWarning)

    epoch_history: list[EpochMetrics] = []
    iterations = 0

    for epoch in range(options.max_epochs):
        epoch_start_time = datetime.now()

        network.train()
        train_loss = 0.0
        train_correct = 0
        train_total = 0

        for input, label in tqdm(
            train_loader,
            desc=f"Training Epoch {epoch + 1}/{options.max_epochs}",
            leave=False,
            disable=not show_progress,
        ):
            input: Tensor = input.to(device)
            label: Tensor = label.to(device)

            optimizer.zero_grad()
            output_tensor: Tensor = network(input)
            loss_tensor: Tensor = criterion(output_tensor, label)
            loss_tensor.backward()
            optimizer.step()

            iterations += 1
            train_loss += loss_tensor.item() * input.size(0)
            train_correct += (output_tensor.argmax(dim=1) == label).sum().item()
            train_total += input.size(0)

        validation_results: dict[str, float] = {}

        if validation_loader is not None:
            validation_results = evaluate(
                network, validation_loader, criterion, options.metrics
            )

        epoch_metrics: EpochMetrics = {
            "epoch": epoch + 1,
            "iterations": iterations,
            "train_loss": train_loss / train_total,
            "train_accuracy": 100.0 * train_correct / train_total,
            "validation_loss": validation_results.get("loss"),
            "validation_accuracy": validation_results.get("accuracy"),
            "validation_precision": validation_results.get("precision"),
            "validation_recall": validation_results.get("recall"),
            "validation_fscore": validation_results.get("fscore"),
            "learn_rate": optimizer.param_groups[0]["lr"],
        }
        epoch_history.append(epoch_metrics)

        epoch_duration = (datetime.now() - epoch_start_time).total_seconds()

        if options.verbose:
            logger.info(
                "Epoch %d/%d: train loss %.4f, train accuracy %.2f%%, validation accuracy %s (%s)",
                epoch + 1,
                options.max_epochs,
                epoch_metrics["train_loss"],
                epoch_metrics["train_accuracy"],
                _format_percentage(epoch_metrics["validation_accuracy"]),
                utilities.format_duration(epoch_duration),
            )

        if show_progress:
            console.print(_epoch_table(epoch_metrics, options))

    network.eval()

    final_metrics = epoch_history[-1]
    training_duration = (datetime.now() - training_start_time).total_seconds()

    if show_progress:
        console.print(
            f"[bold green]Training completed[/bold green] in "
            f"{utilities.format_duration(training_duration)}"
        )

    return network, {
        "solver": options.solver.value,
        "device": str(device),
        "epoch_history": epoch_history,
        "final_validation_loss": final_metrics["validation_loss"],
        "final_validation_accuracy": final_metrics["validation_accuracy"],
        "duration_seconds": training_duration,
    }


def _format_percentage(value: float | None) -> str:
    if value is None:
        return "n/a"

    return f"{utilities.truncate(value, 2):.2f}%"


def _epoch_table(epoch_metrics: EpochMetrics, options: TrainingOptions) -> Table:
    table = Table(title=f"Epoch {epoch_metrics['epoch']}/{options.max_epochs}")
    table.add_column("Split", style="cyan")
    table.add_column("Loss", justify="right", style="magenta")
    table.add_column("Accuracy", justify="right", style="green")

    table.add_row(
        "Train",
        f"{utilities.truncate(epoch_metrics['train_loss'], 4):.4f}",
        _format_percentage(epoch_metrics["train_accuracy"]),
    )

    if epoch_metrics["validation_loss"] is not None:
        table.add_row(
            "Validation",
            f"{utilities.truncate(epoch_metrics['validation_loss'], 4):.4f}",
            _format_percentage(epoch_metrics["validation_accuracy"]),
        )

    return table
