"""
Trainers
========

Cross-validation drivers around Model and Network.

SplitTraining:
    the first floor(n * ratio) samples train, the rest validate;
    one network, one FoldEvaluation.

KFolds:
    the samples are cut into k contiguous blocks; fold i trains on the
    other k - 1 blocks and validates on block i. Folds run in their own
    worker threads, each with its own network, optimizer state and
    Generator seeded `seed + fold`.

Validation (and its loss mean/std) runs on the final epoch, or on every
epoch with all_epochs_validation(). The R2 score follows the same rule with
all_epochs_r2(), which only has an effect together with validation.
Metrics that were not computed are recorded as -1.0.

Example:
    >>> trainer = KFolds(5).compute_best_model().attach_real_time_reporter(
    ...     lambda fold, epoch, ev: print(fold, epoch, ev.train_loss))
    >>> preds, evaluation = trainer.run(model, x, y)
    >>> best = trainer.take_best_model()
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from tqdm import tqdm

from .matrix import Matrix
from .exceptions import DimensionMismatchError, FoldTrainingError
from .evaluation import (NOT_COMPUTED, EpochEvaluation, FoldEvaluation,
                         ModelEvaluation, r2_score)
from .network import as_matrix
from .params import NetworkParams

logger = logging.getLogger(__name__)


class ValidationPredictions:
    """
    Predictions made on validation samples, tagged with the sample ids.

    Args:
        ids: Sample ids
        values: One list of outputs per sample
    """

    def __init__(self, ids=None, values=None):
        self.ids = list(ids) if ids is not None else []
        self.values = [list(v) for v in values] if values is not None else []
        if len(self.ids) != len(self.values):
            raise DimensionMismatchError('ValidationPredictions',
                                         (len(self.ids),), (len(self.values),))

    def append(self, ids, predictions):
        """
        Add the predictions of a batch.

        Args:
            ids: Sample ids, one per column of `predictions`
            predictions: Matrix of shape (outputs, n)
        """
        ids = list(ids)
        if len(ids) != predictions.ncols:
            raise DimensionMismatchError('ValidationPredictions.append',
                                         (len(ids),), (predictions.ncols,))
        self.ids.extend(ids)
        self.values.extend(predictions.to_column_leading())

    def sorted_by_id(self):
        order = sorted(range(len(self.ids)), key=lambda i: self.ids[i])
        return ValidationPredictions([self.ids[i] for i in order],
                                     [self.values[i] for i in order])

    def to_matrix(self):
        """Predictions as an (outputs, n) Matrix, in the current order."""
        return Matrix.from_column_leading(self.values)

    def __len__(self):
        return len(self.ids)

    def __iter__(self):
        return iter(zip(self.ids, self.values))

    def __repr__(self):
        return f"ValidationPredictions({len(self)} samples)"


def fold_indices(n_samples, k):
    """
    Validation blocks of a k-fold partition.

    The blocks are contiguous and cover every sample exactly once; when
    n_samples is not a multiple of k the first blocks get one extra sample.

    Returns:
        List of k index arrays
    """
    if k < 2:
        raise ValueError(f"k must be at least 2, got {k}")
    if n_samples < k:
        raise ValueError(f"Cannot make {k} folds out of {n_samples} samples")
    return np.array_split(np.arange(n_samples), k)


def _prepare_data(x, y, ids):
    x = as_matrix(x)
    y = as_matrix(y)
    if x.ncols != y.ncols:
        raise DimensionMismatchError('trainer data', x.shape, y.shape)
    ids = list(range(x.ncols)) if ids is None else list(ids)
    if len(ids) != x.ncols:
        raise DimensionMismatchError('trainer ids', (x.ncols,), (len(ids),))
    return x, y, ids


class Trainer:
    """Options and per-epoch loop shared by SplitTraining and KFolds."""

    def __init__(self):
        self.validate_all_epochs = False
        self.r2_all_epochs = False
        self.real_time_reporter = None

    def all_epochs_validation(self):
        """Validate after every epoch instead of only after the last one."""
        self.validate_all_epochs = True
        return self

    def all_epochs_r2(self):
        """Compute R2 on every validated epoch. Requires all_epochs_validation()."""
        self.r2_all_epochs = True
        return self

    def attach_real_time_reporter(self, reporter):
        self.real_time_reporter = reporter
        return self

    def _check_options(self):
        if self.r2_all_epochs and not self.validate_all_epochs:
            logger.warning("all_epochs_r2() has no effect without all_epochs_validation()")

    def _evaluate_epoch(self, model, network, epoch, train_loss, x_val, y_val):
        last = epoch == model.epochs - 1
        preds = None
        val_loss_avg = val_loss_std = r2 = NOT_COMPUTED

        if x_val.ncols > 0 and (last or self.validate_all_epochs):
            preds, val_loss_avg, val_loss_std = network.predict_evaluate_many(
                x_val, y_val, model.loss, model.batch_size)
            if last or self.r2_all_epochs:
                r2 = r2_score(y_val, preds)

        return preds, EpochEvaluation(train_loss, val_loss_avg, val_loss_std, r2)

    def _train_network(self, model, network, rng, x_train, y_train, x_val, y_val,
                       report, stop=None):
        """
        Train `network` for model.epochs epochs.

        Returns:
            (FoldEvaluation, final validation predictions or None), or None
            when `stop` was set before the last epoch
        """
        evaluation = FoldEvaluation()
        preds = None

        for epoch in range(model.epochs):
            if stop is not None and stop.is_set():
                return None

            train_loss = model.train_epoch(epoch, network, x_train, y_train, rng)
            preds, epoch_eval = self._evaluate_epoch(model, network, epoch, train_loss,
                                                     x_val, y_val)
            evaluation.add_epoch(epoch_eval)
            report(epoch, epoch_eval)

        return evaluation, preds

    @staticmethod
    def _progress(total, desc, verbose):
        if not verbose:
            return None
        return tqdm(total=total, desc=desc)

    @staticmethod
    def _tick(pbar, epoch_eval, **postfix):
        if pbar is None:
            return
        postfix['loss'] = f'{epoch_eval.train_loss:.4f}'
        if epoch_eval.has_validation():
            postfix['val_loss'] = f'{epoch_eval.val_loss_avg:.4f}'
        pbar.update(1)
        pbar.set_postfix(postfix)


class SplitTraining(Trainer):
    """
    Single train/validation split.

    Args:
        ratio: Share of the samples used for training, in (0, 1]
    """

    def __init__(self, ratio):
        super().__init__()
        if not 0.0 < ratio <= 1.0:
            raise ValueError(f"ratio must be in (0, 1], got {ratio}")
        self.ratio = ratio
        self.model = None

    def take_model(self):
        """Parameters of the trained network. Only available once after run()."""
        if self.model is None:
            raise RuntimeError("No trained model: call run() first")
        params, self.model = self.model, None
        return params

    def run(self, model, x, y, ids=None, verbose=False):
        """
        Train one network on the first part of the data, validate on the rest.

        Args:
            model: Model (topology and hyperparameters)
            x: Inputs, shape (inputs, n)
            y: Targets, shape (outputs, n)
            ids: Sample ids (default: column indices)
            verbose: Show a progress bar

        Returns:
            (ValidationPredictions, ModelEvaluation)
        """
        self._check_options()
        x, y, ids = _prepare_data(x, y, ids)

        n_train = int(np.floor(x.ncols * self.ratio))
        if n_train == 0:
            raise ValueError(f"ratio {self.ratio} leaves no training samples out of {x.ncols}")

        x_train, y_train = x.slice_columns(0, n_train), y.slice_columns(0, n_train)
        x_val, y_val = x.slice_columns(n_train, x.ncols), y.slice_columns(n_train, y.ncols)
        logger.info("Split training: %d training samples, %d validation samples",
                    x_train.ncols, x_val.ncols)

        rng = model.make_rng()
        network = model.to_network(rng)
        pbar = self._progress(model.epochs, "Split training", verbose)

        def report(epoch, epoch_eval):
            self._tick(pbar, epoch_eval)
            if self.real_time_reporter is not None:
                self.real_time_reporter(epoch, epoch_eval)

        try:
            fold_eval, preds = self._train_network(model, network, rng, x_train, y_train,
                                                   x_val, y_val, report)
        finally:
            if pbar is not None:
                pbar.close()

        predictions = ValidationPredictions()
        if preds is not None:
            predictions.append(ids[n_train:], preds)

        self.model = network.get_params()
        logger.info("Split training done: %r", fold_eval.get_final_epoch())
        return predictions, ModelEvaluation([fold_eval])


class KFolds(Trainer):
    """
    K-fold cross-validation.

    Args:
        k: Number of folds (at least 2)
        parallel: Train the folds in worker threads (default) or one after
            the other on the calling thread

    The real-time reporter is called as reporter(fold, epoch, EpochEvaluation)
    on the thread that called run(), while the folds are training.
    """

    def __init__(self, k, parallel=True):
        super().__init__()
        if k < 2:
            raise ValueError(f"k must be at least 2, got {k}")
        self.k = k
        self.parallel = parallel
        self.return_best = False
        self.return_avg = False
        self.best = None
        self.avg = None

    def compute_best_model(self):
        """Keep the parameters of the fold with the best final R2."""
        self.return_best = True
        return self

    def compute_avg_model(self):
        """Keep the element-wise average of the parameters of all folds."""
        self.return_avg = True
        return self

    def take_best_model(self):
        if self.best is None:
            raise RuntimeError("No best model: enable compute_best_model() and call run()")
        params, self.best = self.best, None
        return params

    def take_avg_model(self):
        if self.avg is None:
            raise RuntimeError("No average model: enable compute_avg_model() and call run()")
        params, self.avg = self.avg, None
        return params

    def _train_fold(self, fold, model, x, y, validation, report, stop=None):
        """
        Worker body: build, train and validate the network of one fold.

        A failure sets `stop` before propagating, so the other folds end at
        their next epoch.
        """
        train = self._training_indices(x.ncols, validation)
        rng = model.make_rng(fold)
        network = model.to_network(rng)
        logger.debug("fold %d: %d training samples, %d validation samples",
                     fold, len(train), len(validation))

        try:
            result = self._train_network(model, network, rng,
                                         x.select_columns(train), y.select_columns(train),
                                         x.select_columns(validation), y.select_columns(validation),
                                         report, stop)
        except Exception:
            if stop is not None:
                stop.set()
            raise
        if result is None:
            return None
        fold_eval, preds = result
        return network.get_params(), fold_eval, preds

    @staticmethod
    def _training_indices(n_samples, validation):
        """Every sample index outside the validation block."""
        return np.setdiff1d(np.arange(n_samples), validation)

    def _on_epoch(self, pbar, fold, epoch, epoch_eval):
        self._tick(pbar, epoch_eval, fold=fold)
        if self.real_time_reporter is not None:
            self.real_time_reporter(fold, epoch, epoch_eval)

    def _run_sequential(self, model, x, y, blocks, pbar):
        results = []
        for fold, validation in enumerate(blocks):
            def report(epoch, epoch_eval, fold=fold):
                self._on_epoch(pbar, fold, epoch, epoch_eval)

            try:
                results.append(self._train_fold(fold, model, x, y, validation, report))
            except Exception as e:
                raise FoldTrainingError(fold, e) from e
        return results

    def _run_parallel(self, model, x, y, blocks, pbar):
        events = queue.Queue()
        stop = threading.Event()

        def drain(block):
            while True:
                try:
                    fold, epoch, epoch_eval = events.get(block, timeout=0.05 if block else None)
                except queue.Empty:
                    return
                self._on_epoch(pbar, fold, epoch, epoch_eval)

        with ThreadPoolExecutor(max_workers=self.k, thread_name_prefix='kfold') as executor:
            futures = []
            for fold, validation in enumerate(blocks):
                def report(epoch, epoch_eval, fold=fold):
                    events.put((fold, epoch, epoch_eval))

                futures.append(executor.submit(self._train_fold, fold, model, x, y,
                                               validation, report, stop))

            try:
                while not all(f.done() for f in futures):
                    drain(block=True)
                    if stop.is_set():
                        logger.error("A fold failed, stopping the other folds")
                        break
                drain(block=False)
            finally:
                stop.set()

        results = []
        for fold, future in enumerate(futures):
            error = future.exception()
            if error is not None:
                raise FoldTrainingError(fold, error) from error
            results.append(future.result())
        return results

    def run(self, model, x, y, ids=None, verbose=False):
        """
        Train and validate one network per fold.

        Args:
            model: Model (topology and hyperparameters)
            x: Inputs, shape (inputs, n)
            y: Targets, shape (outputs, n)
            ids: Sample ids (default: column indices)
            verbose: Show a progress bar over all folds and epochs

        Returns:
            (ValidationPredictions of every fold, ModelEvaluation with one
            FoldEvaluation per fold, in fold order)
        """
        self._check_options()
        x, y, ids = _prepare_data(x, y, ids)
        blocks = fold_indices(x.ncols, self.k)
        self.best = None
        self.avg = None

        logger.info("K-folds training: %d folds of about %d samples, %s",
                    self.k, x.ncols // self.k, "parallel" if self.parallel else "sequential")

        pbar = self._progress(self.k * model.epochs, f"{self.k}-folds", verbose)
        try:
            if self.parallel:
                results = self._run_parallel(model, x, y, blocks, pbar)
            else:
                results = self._run_sequential(model, x, y, blocks, pbar)
        finally:
            if pbar is not None:
                pbar.close()

        predictions = ValidationPredictions()
        evaluation = ModelEvaluation()
        trained = []
        for validation, (params, fold_eval, preds) in zip(blocks, results):
            if preds is not None:
                predictions.append([ids[i] for i in validation], preds)
            evaluation.add_fold(fold_eval)
            trained.append(params)

        if self.return_best:
            self.best = self._compute_best(evaluation, trained)
        if self.return_avg:
            self.avg = NetworkParams.average(trained)

        logger.info("K-folds training done: %r", evaluation.get_final_epoch_avg())
        return predictions, evaluation

    @staticmethod
    def _compute_best(evaluation, trained):
        # Highest final R2, ties broken by the lowest final validation loss
        best_fold = max(range(len(trained)),
                        key=lambda i: (evaluation.folds[i].get_final_r2(),
                                       -evaluation.folds[i].get_final_val_loss()))
        logger.info("Best fold: %d with R2 %.4f and %d parameters", best_fold,
                    evaluation.folds[best_fold].get_final_r2(), trained[best_fold].count())
        return trained[best_fold]
