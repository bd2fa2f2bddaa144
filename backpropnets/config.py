"""Configuration objects, presets and config-file loading."""

from __future__ import annotations

import json
from copy import deepcopy
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .core.errors import ConfigurationError
from .core.network import Network
from .core.types import TrainingHistory
from .training.trainer import Trainer

_PRESETS: Dict[str, Mapping[str, object]] = {
    "xor": {
        "network": {
            "structure": [2, 3, 1],
            "activation": "sigmoid",
            "learning_rate": 0.5,
            "momentum": 0.2,
            "seed": 0,
        },
        "train": {
            "epochs": 2000,
            "batch_size": 1,
            "shuffle": True,
            "random_seed": 0,
        },
        "data": {
            "inputs": [[0, 0], [0, 1], [1, 0], [1, 1]],
            "outputs": [[0], [1], [1], [0]],
        },
    },
    "xor-adam": {
        "network": {
            "structure": [2, 4, 1],
            "activation": "tanh",
            "optimizer": {"name": "adam", "learning_rate": 0.05},
            "weight_init": "xavier",
            "seed": 1,
        },
        "train": {
            "epochs": 500,
            "batch_size": 4,
            "shuffle": True,
            "random_seed": 1,
            "early_stopping_patience": 50,
            "min_delta": 1e-6,
        },
        "data": {
            "inputs": [[0, 0], [0, 1], [1, 0], [1, 1]],
            "outputs": [[0], [1], [1], [0]],
        },
    },
}


@dataclass(frozen=True)
class NetworkConfig:
    structure: Tuple[int, ...]
    activation: Any = None
    weight_init: str = "uniform"
    loss: str = "mse"
    learning_rate: float = 0.25
    momentum: float = 0.1
    disable_bias: bool = False
    optimizer: Any = None
    seed: Optional[int] = None
    nonfinite: str = "warn"
    regularization: Any = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "NetworkConfig":
        values = _known_fields(cls, data, "network")
        if "structure" not in values:
            raise ConfigurationError("Network config is missing 'structure'")
        values["structure"] = tuple(values["structure"])
        return cls(**values)

    def build(self) -> Network:
        return Network(
            self.structure,
            activation=self.activation,
            weight_init=self.weight_init,
            loss=self.loss,
            learning_rate=self.learning_rate,
            momentum=self.momentum,
            disable_bias=self.disable_bias,
            optimizer=deepcopy(self.optimizer),
            seed=self.seed,
            nonfinite=self.nonfinite,
            regularization=deepcopy(self.regularization),
        )


@dataclass(frozen=True)
class TrainConfig:
    epochs: int = 100
    batch_size: int = 1
    shuffle: bool = True
    random_seed: Optional[int] = None
    early_stopping_patience: Optional[int] = None
    min_delta: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TrainConfig":
        return cls(**_known_fields(cls, data, "train"))

    def as_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunConfig:
    network: NetworkConfig
    train: TrainConfig = field(default_factory=TrainConfig)
    inputs: List[List[float]] = field(default_factory=list)
    outputs: List[List[float]] = field(default_factory=list)
    validation_inputs: List[List[float]] = field(default_factory=list)
    validation_outputs: List[List[float]] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RunConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Config must decode to a mapping")
        if "network" not in data:
            raise ConfigurationError("Config is missing the 'network' section")
        dataset = data.get("data") or {}
        return cls(
            network=NetworkConfig.from_mapping(data["network"]),
            train=TrainConfig.from_mapping(data.get("train") or {}),
            inputs=[list(row) for row in dataset.get("inputs", [])],
            outputs=[list(row) for row in dataset.get("outputs", [])],
            validation_inputs=[list(row) for row in dataset.get("validation_inputs", [])],
            validation_outputs=[list(row) for row in dataset.get("validation_outputs", [])],
        )


def _known_fields(cls: type, data: Mapping[str, Any], section: str) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section}' section: {', '.join(sorted(unknown))}"
        )
    return dict(data)


def read_config_file(path: str | Path) -> Mapping[str, object]:
    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to load config files in YAML format") from exc
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ConfigurationError(f"Unsupported config file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config {path.name} must decode to a mapping")
    return data


def load_config(path: str | Path) -> RunConfig:
    return RunConfig.from_mapping(read_config_file(path))


def presets() -> Mapping[str, Mapping[str, object]]:
    return {name: deepcopy(cfg) for name, cfg in _PRESETS.items()}


def load_preset(name: str) -> RunConfig:
    try:
        preset = _PRESETS[name]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown preset: {name}") from exc
    return RunConfig.from_mapping(deepcopy(preset))


def run(config: RunConfig | Mapping[str, Any], callbacks=None) -> Tuple[Network, TrainingHistory]:
    """Build the configured network and train it on the configured data."""

    if not isinstance(config, RunConfig):
        config = RunConfig.from_mapping(config)
    network = config.network.build()
    kwargs = config.train.as_kwargs()
    if config.validation_inputs or config.validation_outputs:
        kwargs["validation_inputs"] = config.validation_inputs
        kwargs["validation_outputs"] = config.validation_outputs
    history = Trainer(network, callbacks=callbacks).run(config.inputs, config.outputs, **kwargs)
    return network, history


__all__ = [
    "NetworkConfig",
    "RunConfig",
    "TrainConfig",
    "load_config",
    "load_preset",
    "presets",
    "read_config_file",
    "run",
]
