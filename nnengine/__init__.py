"""
nnengine
========

A feed-forward neural network training engine built on NumPy.
It covers the mechanics of training end to end:
- Immutable column-per-sample matrices
- Dense, activation, dropout, convolution and pooling layers
- Forward and backward propagation with per-tensor optimizers
- SGD, Momentum and Adam with learning rate schedules
- Split and multi-threaded k-fold cross-validation
"""

from .matrix import Matrix
from .activations import Tanh, Sigmoid, ReLU, Linear, Softmax, get_activation
from .losses import MSELoss, BinaryCrossEntropyLoss, get_loss
from .schedules import Constant, InverseTimeDecay, PiecewiseConstant, get_schedule
from .optimizers import SGD, Momentum, Adam, get_optimizer
from .initializers import Zeros, Uniform, UniformSigned, GlorotUniform, HeNormal, get_initializer
from .layers import DenseLayer, ActivationLayer, FullLayer, SkipLayer
from .vision import ConvLayer, AvgPoolLayer, FullConvLayer
from .network import Network
from .params import NetworkParams
from .evaluation import EpochEvaluation, FoldEvaluation, ModelEvaluation, r2_score
from .config import LayerSpec, Model, build_network, set_random_seed
from .trainers import SplitTraining, KFolds, ValidationPredictions
from .exceptions import (NNEngineError, DimensionMismatchError, LayerStateError,
                         NumericDomainError, FoldTrainingError)

__version__ = "1.0.0"
__all__ = [
    'Matrix',
    # Activations
    'Tanh', 'Sigmoid', 'ReLU', 'Linear', 'Softmax', 'get_activation',
    # Losses
    'MSELoss', 'BinaryCrossEntropyLoss', 'get_loss',
    # Schedules and optimizers
    'Constant', 'InverseTimeDecay', 'PiecewiseConstant', 'get_schedule',
    'SGD', 'Momentum', 'Adam', 'get_optimizer',
    # Initializers
    'Zeros', 'Uniform', 'UniformSigned', 'GlorotUniform', 'HeNormal', 'get_initializer',
    # Layers
    'DenseLayer', 'ActivationLayer', 'FullLayer', 'SkipLayer',
    'ConvLayer', 'AvgPoolLayer', 'FullConvLayer',
    # Network
    'Network', 'NetworkParams',
    # Training
    'LayerSpec', 'Model', 'build_network', 'set_random_seed',
    'SplitTraining', 'KFolds', 'ValidationPredictions',
    'EpochEvaluation', 'FoldEvaluation', 'ModelEvaluation', 'r2_score',
    # Errors
    'NNEngineError', 'DimensionMismatchError', 'LayerStateError',
    'NumericDomainError', 'FoldTrainingError',
]
