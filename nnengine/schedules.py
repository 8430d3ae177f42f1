"""
Learning Rate Schedules
=======================

A schedule maps the training epoch to the step size used by an optimizer.
Optimizers receive the epoch index with every update, so the learning rate
is a pure function of the epoch and training can be resumed at any epoch.

- Constant: lr = c
- InverseTimeDecay: lr = initial / (1 + decay_rate * epoch / decay_steps)
- PiecewiseConstant: lr = values[k] where k counts the boundaries already passed
"""

import math


class LearningRateSchedule:
    """Base class for learning rate schedules."""

    def get_learning_rate(self, epoch):
        raise NotImplementedError

    def __call__(self, epoch):
        return self.get_learning_rate(epoch)

    def to_dict(self):
        raise NotImplementedError


class Constant(LearningRateSchedule):
    """No decay - constant learning rate."""

    def __init__(self, learning_rate=0.001):
        self.learning_rate = float(learning_rate)

    def get_learning_rate(self, epoch):
        return self.learning_rate

    def to_dict(self):
        return {'type': 'constant', 'learning_rate': self.learning_rate}

    def __repr__(self):
        return f"Constant({self.learning_rate})"


class InverseTimeDecay(LearningRateSchedule):
    """
    Inverse time decay: lr = initial / (1 + decay_rate * (epoch / decay_steps))

    With staircase=True the ratio epoch / decay_steps is floored, so the
    learning rate drops in discrete steps every `decay_steps` epochs.
    """

    def __init__(self, initial_learning_rate, decay_steps, decay_rate, staircase=False):
        if decay_steps <= 0:
            raise ValueError(f"decay_steps must be positive, got {decay_steps}")
        self.initial_learning_rate = float(initial_learning_rate)
        self.decay_steps = float(decay_steps)
        self.decay_rate = float(decay_rate)
        self.staircase = staircase

    def get_learning_rate(self, epoch):
        ratio = epoch / self.decay_steps
        if self.staircase:
            ratio = math.floor(ratio)
        return self.initial_learning_rate / (1.0 + self.decay_rate * ratio)

    def to_dict(self):
        return {
            'type': 'inverse_time_decay',
            'initial_learning_rate': self.initial_learning_rate,
            'decay_steps': self.decay_steps,
            'decay_rate': self.decay_rate,
            'staircase': self.staircase,
        }

    def __repr__(self):
        return (f"InverseTimeDecay({self.initial_learning_rate}, {self.decay_steps}, "
                f"{self.decay_rate}, staircase={self.staircase})")


class PiecewiseConstant(LearningRateSchedule):
    """
    Piecewise constant: values[0] until boundaries[0], then values[1] until
    boundaries[1], and so on. `values` has exactly one more entry than
    `boundaries`.

    Example: boundaries=[10, 20], values=[0.1, 0.01, 0.001]
        epochs 0-9 -> 0.1, epochs 10-19 -> 0.01, epochs 20+ -> 0.001
    """

    def __init__(self, boundaries, values):
        boundaries = [int(b) for b in boundaries]
        values = [float(v) for v in values]
        if len(values) != len(boundaries) + 1:
            raise ValueError(
                f"PiecewiseConstant needs len(values) == len(boundaries) + 1, "
                f"got {len(values)} values for {len(boundaries)} boundaries"
            )
        self.boundaries = boundaries
        self.values = values

    def get_learning_rate(self, epoch):
        learning_rate = self.values[0]
        for i, boundary in enumerate(self.boundaries):
            if epoch >= boundary:
                learning_rate = self.values[i + 1]
        return learning_rate

    def to_dict(self):
        return {'type': 'piecewise_constant', 'boundaries': list(self.boundaries),
                'values': list(self.values)}

    def __repr__(self):
        return f"PiecewiseConstant({self.boundaries}, {self.values})"


def default_learning_rate():
    return Constant(0.001)


# Learning rate schedule registry
SCHEDULES = {
    'constant': Constant,
    'inverse_time_decay': InverseTimeDecay,
    'piecewise_constant': PiecewiseConstant,
}


def get_schedule(name, **kwargs):
    """
    Get a learning rate schedule.

    Args:
        name: Schedule name, LearningRateSchedule instance, or a plain number
              (shorthand for a Constant schedule)
        **kwargs: Arguments to pass to the schedule

    Returns:
        LearningRateSchedule instance
    """
    if isinstance(name, LearningRateSchedule):
        return name

    if isinstance(name, (int, float)):
        return Constant(name)

    name_lower = name.lower()
    if name_lower not in SCHEDULES:
        raise ValueError(f"Unknown schedule '{name}'. Available: {list(SCHEDULES.keys())}")

    return SCHEDULES[name_lower](**kwargs)
