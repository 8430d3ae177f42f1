"""
Training Evaluation Records
===========================

Append-only logs produced by the trainers:

    ModelEvaluation          one per training run
      └── FoldEvaluation     one per fold (a single one for split training)
            └── EpochEvaluation   one per epoch, in epoch order

Metrics that were not computed for an epoch (validation is only run on the
last epoch unless requested) are stored as -1.0.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List

import numpy as np

from .matrix import Matrix

NOT_COMPUTED = -1.0


def r2_score(y_true, y_pred):
    """
    Coefficient of determination, averaged over the output rows.

    Args:
        y_true: Targets, Matrix or array of shape (outputs, n)
        y_pred: Predictions, same shape

    Returns:
        R2 score (1.0 is a perfect fit)
    """
    y_true = _as_array(y_true)
    y_pred = _as_array(y_pred)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"r2_score: shapes {y_true.shape} and {y_pred.shape} differ")

    ss_res = np.sum((y_true - y_pred) ** 2, axis=1)
    ss_tot = np.sum((y_true - y_true.mean(axis=1, keepdims=True)) ** 2, axis=1)
    # Constant targets: perfect predictions score 1, anything else 0
    scores = np.where(ss_tot > 0, 1.0 - ss_res / np.where(ss_tot > 0, ss_tot, 1.0),
                      np.where(ss_res == 0, 1.0, 0.0))
    return float(np.mean(scores))


def _as_array(m):
    if isinstance(m, Matrix):
        return m.view()
    return np.asarray(m, dtype=np.float64)


@dataclass
class EpochEvaluation:
    train_loss: float
    val_loss_avg: float = NOT_COMPUTED
    val_loss_std: float = NOT_COMPUTED
    r2: float = NOT_COMPUTED

    def has_validation(self):
        return self.val_loss_avg != NOT_COMPUTED

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


@dataclass
class FoldEvaluation:
    epochs: List[EpochEvaluation] = field(default_factory=list)

    def add_epoch(self, epoch):
        self.epochs.append(epoch)

    def get_final_epoch(self):
        if not self.epochs:
            raise ValueError("FoldEvaluation has no epochs")
        return self.epochs[-1]

    def get_final_r2(self):
        return self.get_final_epoch().r2

    def get_final_val_loss(self):
        return self.get_final_epoch().val_loss_avg

    def __len__(self):
        return len(self.epochs)

    def to_dict(self):
        return {'epochs': [e.to_dict() for e in self.epochs]}

    @classmethod
    def from_dict(cls, data):
        return cls([EpochEvaluation.from_dict(e) for e in data['epochs']])


@dataclass
class ModelEvaluation:
    folds: List[FoldEvaluation] = field(default_factory=list)

    def add_fold(self, fold):
        self.folds.append(fold)

    def get_n_epochs(self):
        return min((len(f) for f in self.folds), default=0)

    def _epoch_avg(self, attribute, epoch):
        values = [getattr(f.epochs[epoch], attribute) for f in self.folds]
        return float(np.mean(values))

    def epochs_avg_train_loss(self):
        return [self._epoch_avg('train_loss', e) for e in range(self.get_n_epochs())]

    def get_final_epoch_avg(self):
        """Mean over the folds of their final epoch."""
        if not self.folds:
            raise ValueError("ModelEvaluation has no folds")
        finals = [f.get_final_epoch() for f in self.folds]
        return EpochEvaluation(
            train_loss=float(np.mean([e.train_loss for e in finals])),
            val_loss_avg=float(np.mean([e.val_loss_avg for e in finals])),
            val_loss_std=float(np.mean([e.val_loss_std for e in finals])),
            r2=float(np.mean([e.r2 for e in finals])),
        )

    def __len__(self):
        return len(self.folds)

    def to_dict(self):
        return {'folds': [f.to_dict() for f in self.folds]}

    @classmethod
    def from_dict(cls, data):
        return cls([FoldEvaluation.from_dict(f) for f in data['folds']])

    def to_json(self, path):
        with open(Path(path), 'w') as f:
            json.dump(self.to_dict(), f)

    @classmethod
    def from_json(cls, path):
        with open(Path(path)) as f:
            return cls.from_dict(json.load(f))
