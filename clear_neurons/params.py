import copy
import enum
import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Union

from clear_neurons.exceptions import InvalidConfigurationError


class Activation(enum.Enum):
    """Hidden layer activation kinds."""
    Tanh = "Tanh"
    TanhWithDropout = "TanhWithDropout"
    Rectifier = "Rectifier"
    RectifierWithDropout = "RectifierWithDropout"
    Maxout = "Maxout"
    MaxoutWithDropout = "MaxoutWithDropout"

    @property
    def has_dropout(self) -> bool:
        return self.value.endswith("WithDropout")


class Loss(enum.Enum):
    """Loss functions understood by the output layers."""
    CrossEntropy = "CrossEntropy"
    MeanSquare = "MeanSquare"


def _to_enum(enum_cls, value, what: str):
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if member.value.lower() == str(value).lower():
            return member
    raise InvalidConfigurationError(
        f"Unknown {what} '{value}'. Available: {[m.value for m in enum_cls]}"
    )


class Parameters:
    """
    Hyperparameters read by the neuron layers.

    Every layer takes its own deep copy (see clone()) and may adjust it, e.g.
    the learning rate is decayed by depth, without affecting other layers.

    Key Attributes:
        hidden (List[int]): Units per hidden layer.
        activation (Activation): Hidden layer kind.
        loss (Loss): Loss used to seed the output gradient.
        classification (bool): Softmax output if True, single Linear unit otherwise.
        rate, rate_annealing, rate_decay: Learning-rate schedule, rate(n) =
            rate / (1 + rate_annealing * n), decayed by rate_decay per layer depth.
        momentum_start, momentum_ramp, momentum_stable: Linear momentum ramp
            over momentum_ramp training examples.
        adaptive_rate, rho, epsilon: ADADELTA. Excludes momentum.
        l1, l2: Weight decay folded into the gradient.
        max_w2: Cap on the squared norm of each unit's incoming weights.
        input_dropout_ratio, hidden_dropout_ratios: Drop probabilities.
        fast_mode: Skip weight updates for zero gradients / zero inputs.
        sparse: Expose the input activation as a sparse vector.
    """

    def __init__(
        self,
        hidden: Sequence[int] = (200, 200),
        activation: Union[str, Activation] = Activation.Tanh,
        loss: Union[str, Loss] = Loss.CrossEntropy,
        classification: bool = True,
        seed: int = 0,
        rate: float = 0.005,
        rate_annealing: float = 1e-6,
        rate_decay: float = 1.0,
        momentum_start: float = 0.0,
        momentum_ramp: float = 1e6,
        momentum_stable: float = 0.0,
        nesterov_accelerated_gradient: bool = True,
        adaptive_rate: bool = True,
        rho: float = 0.99,
        epsilon: float = 1e-8,
        l1: float = 0.0,
        l2: float = 0.0,
        max_w2: float = math.inf,
        input_dropout_ratio: float = 0.0,
        hidden_dropout_ratios: Optional[Sequence[float]] = None,
        fast_mode: bool = True,
        sparse: bool = False,
        weight_init: str = 'xavier',
    ):
        self.hidden: List[int] = [int(h) for h in hidden]
        self.activation = _to_enum(Activation, activation, "activation")
        self.loss = _to_enum(Loss, loss, "loss")
        self.classification = classification
        self.seed = seed
        self.rate = rate
        self.rate_annealing = rate_annealing
        self.rate_decay = rate_decay
        self.momentum_start = momentum_start
        self.momentum_ramp = momentum_ramp
        self.momentum_stable = momentum_stable
        self.nesterov_accelerated_gradient = nesterov_accelerated_gradient
        self.adaptive_rate = adaptive_rate
        self.rho = rho
        self.epsilon = epsilon
        self.l1 = l1
        self.l2 = l2
        self.max_w2 = max_w2
        self.input_dropout_ratio = input_dropout_ratio
        if hidden_dropout_ratios is None and self.activation.has_dropout:
            hidden_dropout_ratios = [0.5] * len(self.hidden)
        self.hidden_dropout_ratios = None if hidden_dropout_ratios is None else [float(r) for r in hidden_dropout_ratios]
        self.fast_mode = fast_mode
        self.sparse = sparse
        self.weight_init = weight_init

    def validate(self) -> "Parameters":
        """Check value ranges and cross-field consistency. Returns self."""
        if not self.hidden or any(h <= 0 for h in self.hidden):
            raise InvalidConfigurationError(f"hidden must be a non-empty list of positive sizes, got {self.hidden}")
        if self.rate < 0 or self.rate_annealing < 0 or self.rate_decay <= 0:
            raise InvalidConfigurationError("rate and rate_annealing must be >= 0 and rate_decay > 0.")
        if not (0 <= self.momentum_start < 1 and 0 <= self.momentum_stable < 1):
            raise InvalidConfigurationError("momentum_start and momentum_stable must be in [0, 1).")
        if self.momentum_ramp < 0:
            raise InvalidConfigurationError("momentum_ramp must be >= 0.")
        if self.adaptive_rate:
            if self.rho <= 0 or self.rho >= 1:
                raise InvalidConfigurationError("rho must be in (0, 1) if adaptive_rate is enabled.")
            if self.epsilon <= 0:
                raise InvalidConfigurationError("epsilon must be > 0 if adaptive_rate is enabled.")
            if self.momentum_start != 0 or self.momentum_stable != 0:
                raise InvalidConfigurationError("momentum cannot be combined with adaptive_rate.")
        if self.l1 < 0 or self.l2 < 0:
            raise InvalidConfigurationError("l1 and l2 must be >= 0.")
        if not self.max_w2 > 0:
            raise InvalidConfigurationError("max_w2 must be > 0.")
        if not 0 <= self.input_dropout_ratio < 1:
            raise InvalidConfigurationError("input_dropout_ratio must be in [0, 1).")
        if self.hidden_dropout_ratios is not None:
            if not self.activation.has_dropout:
                raise InvalidConfigurationError(
                    f"hidden_dropout_ratios requires a dropout activation, got {self.activation.value}."
                )
            if len(self.hidden_dropout_ratios) != len(self.hidden):
                raise InvalidConfigurationError(
                    f"Need {len(self.hidden)} hidden_dropout_ratios, got {len(self.hidden_dropout_ratios)}."
                )
            if any(not 0 <= r < 1 for r in self.hidden_dropout_ratios):
                raise InvalidConfigurationError("hidden_dropout_ratios must be in [0, 1).")
        if not self.classification and self.loss != Loss.MeanSquare:
            logging.warning("Regression is only implemented for MeanSquare loss; training will fail.")
        if self.weight_init not in ('xavier', 'random', 'zeros'):
            raise InvalidConfigurationError(f"Unknown weight_init '{self.weight_init}'.")
        return self

    def clone(self) -> "Parameters":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        d = dict(self.__dict__)
        d['activation'] = self.activation.value
        d['loss'] = self.loss.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Parameters":
        unknown = set(d) - set(cls().__dict__)
        if unknown:
            raise InvalidConfigurationError(f"Unknown parameters: {sorted(unknown)}")
        return cls(**d)

    def __repr__(self):
        fields = ", ".join(f"{k}={v}" for k, v in self.to_dict().items())
        return f"Parameters({fields})"
