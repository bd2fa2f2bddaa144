import math
import warnings

import numpy as np
import pytest

from backpropnets import ConfigurationError, DimensionError, Network
from backpropnets.core.activations import CustomActivation
from backpropnets.core.optimizers import Adam, GradientDescent


def _fixed(n, i, j):
    return 0.1 * (n + 1) - 0.07 * i + 0.05 * j


def _numeric_gradients(net, x, y, eps=1e-6):
    base = net.weights
    grads = []
    for idx, W in enumerate(base):
        g = np.zeros_like(W)
        for pos in np.ndindex(W.shape):
            plus = [w.copy() for w in base]
            plus[idx][pos] += eps
            net.load_weights(plus)
            loss_plus = net.calculate_loss(y, net.eval(x))
            minus = [w.copy() for w in base]
            minus[idx][pos] -= eps
            net.load_weights(minus)
            loss_minus = net.calculate_loss(y, net.eval(x))
            g[pos] = (loss_plus - loss_minus) / (2 * eps)
        grads.append(g)
    net.load_weights(base)
    return grads


def test_init_network_layout():
    net = Network([4, 2]).init_network()
    nodes = net.activation_nodes
    assert [n.tolist() for n in nodes] == [[1.0] * 5, [1.0, 1.0]]
    assert len(net.weights) == 1
    assert net.weights[0].shape == (5, 2)

    net = Network([2, 2, 1]).init_network()
    assert [n.shape for n in net.activation_nodes] == [(3,), (3,), (1,)]
    assert [w.shape for w in net.weights] == [(3, 2), (3, 1)]
    assert all(np.all(c == 0.0) for c in net.last_changes)


def test_disable_bias_layout():
    net = Network([2, 2, 1], disable_bias=True).init_network()
    assert [n.shape for n in net.activation_nodes] == [(2,), (2,), (1,)]
    assert [w.shape for w in net.weights] == [(2, 2), (2, 1)]

    net = Network([2, 2, 1]).init_network()
    net.set_parameters(disable_bias=True)
    assert not net.initialized
    assert net.eval([0.0, 1.0]).shape == (1,)
    assert net.weights[0].shape == (2, 2)


@pytest.mark.parametrize("structure", [[3, 2], [2, 4, 8, 10, 7], [1, 1], [5, 3, 3, 4]])
def test_eval_output_length(structure):
    net = Network(structure, seed=0)
    assert not net.initialized
    out = net.eval(np.ones(structure[0]))
    assert out.shape == (structure[-1],)
    assert net.initialized


def test_eval_rejects_wrong_input_length():
    net = Network([3, 2])
    with pytest.raises(DimensionError, match="Expected: 3, received: 2"):
        net.eval([1.0, 2.0])
    with pytest.raises(DimensionError):
        net.eval([[1.0, 2.0, 3.0]])


def test_rejected_train_does_not_mutate():
    net = Network([2, 3, 2], seed=1).init_network()
    before = net.weights
    with pytest.raises(DimensionError):
        net.train([0.0, 1.0], [1.0])
    with pytest.raises(DimensionError):
        net.train([0.0], [1.0, 0.0])
    with pytest.raises(DimensionError):
        net.train_batch([[0.0, 1.0], [1.0, 0.0]], [[1.0, 0.0], [1.0]])
    for old, new in zip(before, net.weights):
        assert np.array_equal(old, new)


@pytest.mark.parametrize("structure", [[], [3], [2, 0], [2, -1, 1], [2.5, 1], None])
def test_invalid_architecture(structure):
    with pytest.raises(ConfigurationError):
        Network(structure)


def test_structure_is_immutable():
    dims = [2, 3, 1]
    net = Network(dims)
    dims.append(4)
    assert net.structure == (2, 3, 1)


def test_eval_returns_copy():
    net = Network([2, 2], seed=3)
    out = net.eval([0.5, -0.5])
    out[:] = 42.0
    assert not np.allclose(net.activation_nodes[-1], 42.0)
    assert np.array_equal(net.eval([0.5, -0.5]), net.activation_nodes[-1])


def test_fixed_initializer_is_deterministic():
    a = Network([3, 4, 2], activation="tanh", weight_init=_fixed)
    b = Network([3, 4, 2], activation="tanh", weight_init=_fixed)
    x = [0.3, -1.2, 2.0]
    assert np.array_equal(a.eval(x), b.eval(x))
    assert a.weights[0][1, 2] == pytest.approx(_fixed(0, 1, 2))


def test_same_seed_same_network():
    a = Network([2, 5, 1], weight_init="xavier", seed=11)
    b = Network([2, 5, 1], weight_init="xavier", seed=11)
    assert np.array_equal(a.eval([1.0, 0.0]), b.eval([1.0, 0.0]))


def test_eval_result_is_argmax():
    net = Network([2, 3], activation="linear", weight_init=lambda n, i, j: float(j))
    assert net.eval_result([1.0, 1.0]) == 2


def test_activation_parameter():
    net = Network([2, 1], "tanh")
    assert net.activation_names == ["tanh"]
    net.set_parameters(activation="relu")
    assert net.activation_names == ["relu"]
    assert net.activation_functions[0].backward(np.array([-1.0]))[0] == 0.0


def test_per_layer_activation_list():
    net = Network([2, 3, 3, 2], activation=["relu", ("leaky_relu", {"alpha": 0.2}), "linear"])
    assert net.activation_names == ["relu", "leaky_relu", "linear"]
    assert net.activation_functions[1].alpha == 0.2
    with pytest.raises(ConfigurationError, match="Expected 3 activations"):
        Network([2, 3, 3, 2], activation=["relu", "linear"])


def test_unknown_symbols():
    with pytest.raises(ConfigurationError):
        Network([2, 1], activation="gelu")
    with pytest.raises(ConfigurationError):
        Network([2, 1], loss="hinge")
    with pytest.raises(ConfigurationError):
        Network([2, 1], weight_init="orthogonal")
    with pytest.raises(ConfigurationError):
        Network([2, 1], optimizer="lbfgs")
    with pytest.raises(ConfigurationError):
        Network([2, 1]).set_parameters(gamma=1.0)


def test_weight_init_parameter():
    net = Network([2, 2, 1], "sigmoid", "xavier").init_network()
    limit = math.sqrt(6.0 / (2 + 2))
    assert np.all(np.abs(net.weights[0]) <= limit)

    net.set_parameters(weight_init="he")
    net.init_network()
    limit = math.sqrt(6.0 / 2)
    assert np.all(np.abs(net.weights[0]) <= limit)
    assert net.weight_init_name == "he"


def test_cross_entropy_defaults_output_to_softmax():
    net = Network([2, 3, 2], loss="cross_entropy")
    assert net.activation_names == ["sigmoid", "softmax"]

    explicit = Network([2, 3, 2], activation="sigmoid", loss="cross_entropy")
    assert explicit.activation_names == ["sigmoid", "sigmoid"]


def test_with_loss_reports_induced_activation():
    net = Network([2, 3, 2])
    selection = net.with_loss("cross_entropy")
    assert selection.loss == "cross_entropy"
    assert selection.output_activation == "softmax"
    assert selection.output_activation_changed

    again = net.with_loss("cross_entropy")
    assert not again.output_activation_changed

    back = net.with_loss("mse")
    assert back.output_activation == "sigmoid"
    assert back.output_activation_changed

    pinned = Network([2, 2], activation="tanh").with_loss("cross_entropy")
    assert pinned.output_activation == "tanh"
    assert not pinned.output_activation_changed


def test_loss_function_and_train_return():
    net = Network([1, 1])
    assert net.calculate_loss([0], [0.5]) == pytest.approx(0.125)
    net.set_parameters(loss="cross_entropy", activation="sigmoid")
    assert net.calculate_loss([1], [0.5]) == pytest.approx(0.6931, abs=1e-4)

    net = Network([2, 1], loss="cross_entropy", activation="sigmoid", seed=0)
    loss = net.train([0, 0], [0])
    assert loss == pytest.approx(net.calculate_loss([0], net.activation_nodes[-1]))
    net.set_parameters(loss="mse")
    loss = net.train([1, 1], [1])
    assert loss == pytest.approx(net.calculate_loss([1], net.activation_nodes[-1]))


@pytest.mark.parametrize(
    "activation, loss, structure",
    [
        ("sigmoid", "mse", [2, 3, 1]),
        (["tanh", "sigmoid"], "mse", [3, 4, 2]),
        (["swish", "elu", "linear"], "mse", [2, 3, 3, 2]),
        ("sigmoid", "cross_entropy", [2, 3, 2]),
        (None, "cross_entropy", [2, 4, 3]),
        (["leaky_relu", "sigmoid"], "cross_entropy", [3, 3, 2]),
    ],
)
def test_backprop_matches_numeric_gradient(activation, loss, structure):
    net = Network(
        structure,
        activation=activation,
        loss=loss,
        weight_init="xavier",
        learning_rate=1.0,
        momentum=0.0,
        seed=7,
    ).init_network()
    rng = np.random.default_rng(3)
    x = rng.uniform(-1.0, 1.0, size=structure[0])
    y = np.zeros(structure[-1])
    y[0] = 1.0

    numeric = _numeric_gradients(net, x, y)
    before = net.weights
    net.train(x, y)
    for old, new, grad in zip(before, net.weights, numeric):
        assert np.allclose(new - old, -grad, atol=1e-6)


def test_momentum_rule_records_last_change():
    net = Network([2, 2, 1], learning_rate=0.5, momentum=0.3, weight_init=_fixed)
    x, y = [1.0, 0.0], [1.0]
    w0 = net.init_network().weights
    net.train(x, y)
    w1 = net.weights
    first = [b - a for a, b in zip(w0, w1)]
    for change, recorded in zip(first, net.last_changes):
        assert np.allclose(change, recorded)

    reference = Network([2, 2, 1], learning_rate=0.5, momentum=0.0, weight_init=_fixed)
    reference.load_weights(w1)
    reference.train(x, y)
    plain = [b - a for a, b in zip(w1, reference.weights)]

    net.train(x, y)
    second = [b - a for a, b in zip(w1, net.weights)]
    for s, p, f in zip(second, plain, first):
        assert np.allclose(s, p + 0.3 * f)


def test_builtin_rule_equals_plain_gradient_descent_optimizer():
    builtin = Network([2, 3, 1], weight_init=_fixed, learning_rate=0.4, momentum=0.0)
    plugged = Network([2, 3, 1], weight_init=_fixed, optimizer=GradientDescent(learning_rate=0.4))
    for x, y in [([0, 1], [1]), ([1, 1], [0]), ([1, 0], [1])]:
        builtin.train(x, y)
        plugged.train(x, y)
    for a, b in zip(builtin.weights, plugged.weights):
        assert np.allclose(a, b)
    assert all(np.all(c == 0.0) for c in plugged.last_changes)


def test_optimizer_steps_once_per_example_and_resets():
    opt = Adam(learning_rate=0.01)
    net = Network([2, 3, 1], optimizer=opt, seed=2)
    net.train_batch([[0, 1], [1, 0], [1, 1]], [[1], [1], [0]])
    assert opt.iteration == 3
    assert set(opt.m) == {"W0", "W1"}
    net.init_network()
    assert opt.iteration == 0
    assert opt.m == {}


def test_optimizer_from_symbol_and_mapping():
    assert Network([2, 1], optimizer="rmsprop").optimizer.name == "rmsprop"
    net = Network([2, 1], optimizer={"name": "momentum", "learning_rate": 0.2, "momentum": 0.5})
    assert net.optimizer.momentum == 0.5
    with pytest.raises(ConfigurationError):
        Network([2, 1], optimizer={"learning_rate": 0.2})


def test_train_batch_returns_mean_loss():
    a = Network([2, 2, 1], weight_init=_fixed)
    b = Network([2, 2, 1], weight_init=_fixed)
    inputs = [[0, 0], [0, 1], [1, 0]]
    outputs = [[0], [1], [1]]
    mean = a.train_batch(inputs, outputs)
    losses = [b.train(x, y) for x, y in zip(inputs, outputs)]
    assert mean == pytest.approx(sum(losses) / 3)
    with pytest.raises(ConfigurationError):
        a.train_batch([], [])
    with pytest.raises(ConfigurationError):
        a.train_batch([[0, 0]], [[0], [1]])


def test_custom_activation_trains():
    custom = CustomActivation(forward_fn=np.tanh, backward_fn=lambda y: 1.0 - y**2)
    a = Network([2, 2, 1], activation=custom, weight_init=_fixed)
    b = Network([2, 2, 1], activation="tanh", weight_init=_fixed)
    a.train([0.5, 0.1], [0.3])
    b.train([0.5, 0.1], [0.3])
    for wa, wb in zip(a.weights, b.weights):
        assert np.allclose(wa, wb)


def test_nonfinite_policies():
    net = Network([2, 1], seed=0)
    with pytest.warns(RuntimeWarning, match="Non-finite"):
        out = net.eval([float("nan"), 1.0])
    assert np.isnan(out).all()

    strict = Network([2, 1], seed=0, nonfinite="raise").init_network()
    before = strict.weights
    with pytest.raises(ValueError, match="Non-finite"):
        strict.train([1.0, 1.0], [float("inf")])
    assert np.array_equal(before[0], strict.weights[0])

    quiet = Network([2, 1], seed=0, nonfinite="ignore")
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        quiet.eval([float("inf"), 0.0])
    assert not [w for w in caught if "Non-finite" in str(w.message)]

    with pytest.raises(ConfigurationError):
        Network([2, 1], nonfinite="clamp")


def test_get_parameters():
    net = Network([2, 3, 1], "tanh", "he", learning_rate=0.3, momentum=0.0)
    params = net.get_parameters()
    assert params["learning_rate"] == 0.3
    assert params["momentum"] == 0.0
    assert params["activation"] == ["tanh", "tanh"]
    assert params["weight_init"] == "he"
    assert params["loss"] == "mse"
    assert params["optimizer"] is None


def test_state_dict_round_trip():
    net = Network([2, 3, 1], seed=4)
    net.train([1, 0], [1])
    state = net.state_dict()
    assert set(state) == {"W0", "W1", "L0", "L1"}
    other = Network([2, 3, 1], seed=99)
    other.load_state_dict(state)
    assert np.array_equal(other.eval([0.2, 0.9]), net.eval([0.2, 0.9]))
    with pytest.raises(KeyError):
        other.load_state_dict({"W0": state["W0"]})
    with pytest.raises(ConfigurationError):
        other.load_weights([np.zeros((2, 3)), np.zeros((4, 1))])


def test_scalar_custom_activation_trains_like_builtin():
    custom = CustomActivation(
        forward_fn=lambda x: 1.0 / (1.0 + math.exp(-x)),
        backward_fn=lambda y: y * (1.0 - y),
    )
    a = Network([2, 3, 1], activation=custom, weight_init=_fixed)
    b = Network([2, 3, 1], activation="sigmoid", weight_init=_fixed)
    assert np.allclose(a.eval([0.0, 1.0]), b.eval([0.0, 1.0]))
    for x, y in [([0, 0], [0]), ([0, 1], [1]), ([1, 0], [1]), ([1, 1], [0])]:
        assert a.train(x, y) == pytest.approx(b.train(x, y))
    for wa, wb in zip(a.weights, b.weights):
        assert np.allclose(wa, wb)


def test_output_requires_a_forward_pass():
    net = Network([2, 2], seed=0)
    with pytest.raises(RuntimeError):
        net.output
    net.init_network()
    with pytest.raises(RuntimeError):
        net.output
    result = net.eval([0.1, 0.2])
    assert np.array_equal(net.output, result)
    net.init_network()
    with pytest.raises(RuntimeError):
        net.output


@pytest.mark.parametrize(
    "regularization",
    ["l2", {"name": "l1", "lam": 0.05}, {"name": "elastic_net", "lam": 0.1, "l1_ratio": 0.3}],
)
def test_regularized_backprop_matches_numeric_gradient(regularization):
    net = Network(
        [2, 3, 2],
        activation="tanh",
        weight_init="xavier",
        learning_rate=1.0,
        momentum=0.0,
        regularization=regularization,
        seed=5,
    ).init_network()
    x = np.array([0.4, -0.9])
    y = np.array([0.5, -0.2])

    base = net.weights
    eps = 1e-6
    numeric = []
    for idx, W in enumerate(base):
        g = np.zeros_like(W)
        for pos in np.ndindex(W.shape):
            losses = []
            for sign in (1.0, -1.0):
                shifted = [w.copy() for w in base]
                shifted[idx][pos] += sign * eps
                net.load_weights(shifted)
                losses.append(net.calculate_loss(y, net.eval(x)) + net.penalty())
            g[pos] = (losses[0] - losses[1]) / (2 * eps)
        numeric.append(g)
    net.load_weights(base)

    net.train(x, y)
    for old, new, grad in zip(base, net.weights, numeric):
        assert np.allclose(new - old, -grad, atol=1e-6)


def test_regularization_penalty_joins_reported_loss():
    plain = Network([2, 2, 1], weight_init=_fixed)
    decayed = Network([2, 2, 1], weight_init=_fixed, regularization={"name": "l2", "lam": 0.1})
    assert plain.penalty() == 0.0
    decayed.init_network()
    expected_penalty = 0.05 * sum(float(np.sum(w**2)) for w in decayed.weights)
    assert decayed.penalty() == pytest.approx(expected_penalty)
    assert decayed.train([1, 0], [1]) == pytest.approx(plain.train([1, 0], [1]) + expected_penalty)


def test_regularization_with_optimizer_matches_builtin_rule():
    builtin = Network([2, 3, 1], weight_init=_fixed, learning_rate=0.3, momentum=0.0, regularization="l2")
    plugged = Network(
        [2, 3, 1],
        weight_init=_fixed,
        optimizer=GradientDescent(learning_rate=0.3),
        regularization="l2",
    )
    for x, y in [([0, 1], [1]), ([1, 1], [0])]:
        builtin.train(x, y)
        plugged.train(x, y)
    for a, b in zip(builtin.weights, plugged.weights):
        assert np.allclose(a, b)


def test_regularization_parameters():
    net = Network([2, 1], regularization="elastic_net")
    assert net.get_parameters()["regularization"] == "elastic_net"
    net.set_parameters(regularization=None)
    assert net.regularization is None
    with pytest.raises(ConfigurationError):
        Network([2, 1], regularization="dropout")
    with pytest.raises(ConfigurationError):
        Network([2, 1], regularization={"lam": 0.1})


def test_evaluate_does_not_update_weights():
    net = Network([2, 3, 1], weight_init=_fixed).init_network()
    before = net.weights
    loss, acc = net.evaluate([[0, 1], [1, 1]], [[1], [0]])
    expected = np.mean([net.calculate_loss(y, net.eval(x)) for x, y in [([0, 1], [1]), ([1, 1], [0])]])
    assert loss == pytest.approx(expected)
    assert acc in (0.0, 0.5, 1.0)
    for old, new in zip(before, net.weights):
        assert np.array_equal(old, new)
    with pytest.raises(ConfigurationError):
        net.evaluate([], [])
