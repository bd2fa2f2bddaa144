"""Persistence helpers for :class:`~backpropnets.core.network.Network`.

The stored form keeps the architecture, weights, last-change buffer,
activation buffers, coefficients and the *symbols* of the selected
activation, loss and initializer. Caller-supplied functions are never stored;
networks built with them must be given replacements when restored.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import numpy as np

from .core.activations import CustomActivation
from .core.errors import ConfigurationError
from .core.network import Network

logger = logging.getLogger(__name__)

FORMAT = "backpropnets.network"
VERSION = 1


def to_dict(network: Network) -> Dict[str, Any]:
    """Return a JSON-serialisable description of ``network``."""

    activations = []
    for fn in network.activation_functions:
        if isinstance(fn, CustomActivation):
            activations.append({"name": "custom"})
        else:
            activations.append({"name": fn.name, "options": fn.options()})
    optimizer = None
    if network.optimizer is not None:
        optimizer = {"name": network.optimizer.name, "options": network.optimizer.options()}
    regularization = None
    if network.regularization is not None:
        regularization = {
            "name": network.regularization.name,
            "options": network.regularization.options(),
        }
    payload: Dict[str, Any] = {
        "format": FORMAT,
        "version": VERSION,
        "structure": list(network.structure),
        "disable_bias": network.disable_bias,
        "learning_rate": network.learning_rate,
        "momentum": network.momentum,
        "loss": network.loss_name,
        "activation": activations,
        "activation_explicit": network.activation_explicit,
        "weight_init": network.weight_init_name,
        "optimizer": optimizer,
        "nonfinite": network.nonfinite,
        "regularization": regularization,
        "weights": None,
        "last_changes": None,
        "activation_nodes": None,
    }
    if network.initialized:
        payload["weights"] = [w.tolist() for w in network.weights]
        payload["last_changes"] = [c.tolist() for c in network.last_changes]
        payload["activation_nodes"] = [n.tolist() for n in network.activation_nodes]
    return payload


def from_dict(
    payload: Mapping[str, Any],
    *,
    activation: Any = None,
    weight_init: Any = None,
    seed: int | None = None,
) -> Network:
    """Rebuild a network from :func:`to_dict` output.

    ``activation`` and ``weight_init`` replace stored selections; they are
    required when the stored network used custom functions.
    """

    if payload.get("format") != FORMAT:
        raise ConfigurationError(f"Not a serialized network: format={payload.get('format')!r}")
    if int(payload.get("version", 0)) > VERSION:
        raise ConfigurationError(f"Unsupported network format version {payload['version']}")

    if activation is None:
        activation = _stored_activation(payload)
    if weight_init is None:
        weight_init = payload.get("weight_init", "uniform")
        if weight_init == "custom":
            logger.warning("Custom weight initializer was not stored; restoring with 'uniform'")
            weight_init = "uniform"

    optimizer = None
    if payload.get("optimizer"):
        optimizer = {"name": payload["optimizer"]["name"], **payload["optimizer"].get("options", {})}
    regularization = None
    if payload.get("regularization"):
        stored = payload["regularization"]
        regularization = {"name": stored["name"], **stored.get("options", {})}

    network = Network(
        payload["structure"],
        activation=activation,
        weight_init=weight_init,
        loss=payload.get("loss", "mse"),
        learning_rate=payload.get("learning_rate", 0.25),
        momentum=payload.get("momentum", 0.1),
        disable_bias=payload.get("disable_bias", False),
        optimizer=optimizer,
        seed=seed,
        nonfinite=payload.get("nonfinite", "warn"),
        regularization=regularization,
    )
    if payload.get("weights") is not None:
        network.load_weights(payload["weights"], payload.get("last_changes"))
        nodes = payload.get("activation_nodes")
        if nodes is not None:
            network.load_activation_nodes(nodes)
    return network


def _stored_activation(payload: Mapping[str, Any]) -> Any:
    entries = payload.get("activation") or []
    if any(entry.get("name") == "custom" for entry in entries):
        raise ConfigurationError(
            "Network was built with a custom activation; pass activation= to restore it"
        )
    if not payload.get("activation_explicit", True):
        return None
    return [(entry["name"], entry.get("options", {})) for entry in entries]


def dumps(network: Network) -> str:
    return json.dumps(to_dict(network))


def loads(text: str, **kwargs: Any) -> Network:
    return from_dict(json.loads(text), **kwargs)


def save(network: Network, path: str | Path) -> Path:
    """Write ``network`` to a compressed ``.npz`` archive."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    meta = to_dict(network)
    arrays: Dict[str, np.ndarray] = {}
    if network.initialized:
        arrays.update(network.state_dict())
        for key in ("weights", "last_changes", "activation_nodes"):
            meta[key] = None
        arrays.update({f"A{idx}": n for idx, n in enumerate(network.activation_nodes)})
    with path.open("wb") as handle:
        np.savez_compressed(handle, meta=np.array(json.dumps(meta)), **arrays)
    return path


def load(path: str | Path, **kwargs: Any) -> Network:
    """Read a network written by :func:`save`."""

    with np.load(Path(path), allow_pickle=False) as data:
        meta = json.loads(str(data["meta"]))
        network = from_dict(meta, **kwargs)
        if "W0" in data.files:
            network.load_state_dict({key: data[key] for key in data.files if key[0] in "WL"})
            count = len(network.structure)
            network.load_activation_nodes([data[f"A{idx}"] for idx in range(count)])
    return network


__all__ = ["dumps", "from_dict", "load", "loads", "save", "to_dict"]
