"""
Convolutional Layers
====================

Image layers that plug into a Network like any other layer.

Every sample column of the input Matrix holds one flattened image in
channel-major order (C, H, W):

    column = [c0 row0 ..., c0 row1 ..., ..., c1 row0 ..., ...]

so a batch of n images of shape (C, H, W) is a Matrix of shape (C*H*W, n).
Internally the layers reshape to (n, C, H, W) arrays and back.

Layers implemented:
- ConvLayer: 2D cross-correlation with `nkern` kernels, per-kernel bias
- AvgPoolLayer: non-overlapping average pooling
- FullConvLayer: ConvLayer -> Activation, with optional dropout
"""

import numpy as np

from .matrix import Matrix
from .exceptions import DimensionMismatchError
from .initializers import (default_biases_initializer, default_weights_initializer,
                           get_initializer)
from .layers import Layer, FullLayer
from .optimizers import default_optimizer, get_optimizer


def _as_pair(value):
    return value if isinstance(value, tuple) else (value, value)


def columns_to_images(m, image_shape):
    """(C*H*W, n) Matrix -> (n, C, H, W) array."""
    c, h, w = image_shape
    if m.nrows != c * h * w:
        raise DimensionMismatchError('columns_to_images', (c * h * w, '*'), m.shape)
    return np.ascontiguousarray(m.view().T.reshape(m.ncols, c, h, w))


def images_to_columns(images):
    """(n, C, H, W) array -> (C*H*W, n) Matrix."""
    n = images.shape[0]
    return Matrix._wrap(images.reshape(n, -1).T)


class ConvLayer(Layer):
    """
    2D Convolutional Layer.

    Args:
        image_shape: Input image shape (channels, height, width)
        nkern: Number of kernels (output channels)
        kernel_size: Size of convolutional kernel (int or tuple)
        stride: Stride of convolution (default: 1)
        padding: 'valid' (no padding) or 'same' (pad to keep size) or int
        kernels_optimizer / biases_optimizer: Optimizers (default: SGD)
        kernels_initializer / biases_initializer: Initializers
            (default: GlorotUniform / Zeros)
        rng: numpy Generator used by the initializers

    Output image shape: (nkern, out_height, out_width) where
        out_height = (height + 2*pad - kernel_size) // stride + 1
        out_width = (width + 2*pad - kernel_size) // stride + 1

    The kernels are stored as a (nkern, channels * kh * kw) Matrix, so the
    same optimizers as DenseLayer apply unchanged.
    """

    def __init__(self, image_shape, nkern, kernel_size=3, stride=1, padding='valid',
                 kernels_optimizer=None, biases_optimizer=None,
                 kernels_initializer=None, biases_initializer=None, rng=None):
        super().__init__()

        self.image_shape = tuple(image_shape)
        self.nkern = nkern
        self.kernel_size = _as_pair(kernel_size)
        self.stride = _as_pair(stride)
        self.padding_mode = padding

        channels, height, width = self.image_shape
        kh, kw = self.kernel_size

        # Calculate padding
        if padding == 'same':
            self.padding = (kh // 2, kw // 2)
        elif padding == 'valid':
            self.padding = (0, 0)
        elif isinstance(padding, int):
            self.padding = (padding, padding)
        else:
            self.padding = tuple(padding)

        ph, pw = self.padding
        sh, sw = self.stride
        self.h_out = (height + 2 * ph - kh) // sh + 1
        self.w_out = (width + 2 * pw - kw) // sw + 1
        if self.h_out <= 0 or self.w_out <= 0:
            raise DimensionMismatchError('ConvLayer', self.image_shape, self.kernel_size)

        kernels_initializer = get_initializer(kernels_initializer or default_weights_initializer())
        biases_initializer = get_initializer(biases_initializer or default_biases_initializer())

        fan_in = channels * kh * kw
        fan_out = nkern * kh * kw
        self.params['weights'] = Matrix._wrap(
            kernels_initializer.gen_array((nkern, fan_in), fan_in, fan_out, rng))
        self.params['biases'] = biases_initializer.gen_vector(nkern, rng)

        self.kernels_optimizer = get_optimizer(kernels_optimizer or default_optimizer())
        self.biases_optimizer = get_optimizer(biases_optimizer or default_optimizer())

    @property
    def input_size(self):
        return int(np.prod(self.image_shape))

    @property
    def output_shape(self):
        return (self.nkern, self.h_out, self.w_out)

    @property
    def output_size(self):
        return self.nkern * self.h_out * self.w_out

    def _pad_input(self, x):
        """Apply padding to input."""
        if self.padding == (0, 0):
            return x

        ph, pw = self.padding
        return np.pad(x, ((0, 0), (0, 0), (ph, ph), (pw, pw)), mode='constant')

    def _im2col(self, x_padded):
        """
        Convert image patches to columns for efficient convolution.

        Returns:
            col: Shape (n * h_out * w_out, channels * kh * kw)
        """
        n, c, _, _ = x_padded.shape
        kh, kw = self.kernel_size
        sh, sw = self.stride

        shape = (n, c, kh, kw, self.h_out, self.w_out)
        strides = (
            x_padded.strides[0],
            x_padded.strides[1],
            x_padded.strides[2],
            x_padded.strides[3],
            x_padded.strides[2] * sh,
            x_padded.strides[3] * sw,
        )
        patches = np.lib.stride_tricks.as_strided(x_padded, shape=shape, strides=strides,
                                                  writeable=False)

        # (n, C, kh, kw, h_out, w_out) -> (n * h_out * w_out, C * kh * kw)
        return patches.transpose(0, 4, 5, 1, 2, 3).reshape(n * self.h_out * self.w_out, -1)

    def _col2im(self, col, x_padded_shape):
        """Inverse of im2col, overlapping patches are accumulated."""
        n, c, _, _ = x_padded_shape
        kh, kw = self.kernel_size
        sh, sw = self.stride

        col_reshaped = col.reshape(n, self.h_out, self.w_out, c, kh, kw)
        x_padded = np.zeros(x_padded_shape, dtype=col.dtype)

        for i in range(self.h_out):
            for j in range(self.w_out):
                h_start = i * sh
                w_start = j * sw
                x_padded[:, :, h_start:h_start + kh, w_start:w_start + kw] += col_reshaped[:, i, j]

        return x_padded

    def forward(self, input, training=False):
        x = columns_to_images(input, self.image_shape)
        x_padded = self._pad_input(x)
        col = self._im2col(x_padded)

        # (n * h_out * w_out, C*kh*kw) @ (C*kh*kw, nkern)
        output = col @ self.params['weights'].view().T
        output = output.reshape(x.shape[0], self.h_out, self.w_out, self.nkern)
        output = output.transpose(0, 3, 1, 2)
        output = output + self.params['biases'].view().reshape(1, -1, 1, 1)

        self.cache['x'] = (x_padded.shape, col)
        return images_to_columns(output)

    def compute_gradients(self, output_gradient):
        x_padded_shape, col = self._cached('x')
        n = x_padded_shape[0]
        if output_gradient.shape != (self.output_size, n):
            raise DimensionMismatchError('ConvLayer.backward', (self.output_size, n),
                                         output_gradient.shape)

        grad = columns_to_images(output_gradient, self.output_shape)
        # (n, nkern, h_out, w_out) -> (n * h_out * w_out, nkern)
        grad_reshaped = grad.transpose(0, 2, 3, 1).reshape(-1, self.nkern)

        self.grads['weights'] = Matrix._wrap((col.T @ grad_reshaped).T)
        self.grads['biases'] = Matrix._wrap(grad.sum(axis=(0, 2, 3)).reshape(-1, 1))

        dcol = grad_reshaped @ self.params['weights'].view()
        dx_padded = self._col2im(dcol, x_padded_shape)

        ph, pw = self.padding
        _, _, height, width = x_padded_shape
        dx = dx_padded[:, :, ph:height - ph, pw:width - pw]
        return images_to_columns(dx)

    def backward(self, epoch, output_gradient):
        input_gradient = self.compute_gradients(output_gradient)

        self.params['weights'] = self.kernels_optimizer.update(
            epoch, self.params['weights'], self.grads['weights'])
        self.params['biases'] = self.biases_optimizer.update(
            epoch, self.params['biases'], self.grads['biases'])

        return input_gradient

    def get_learnable_parameters(self):
        """Columns of the (nkern, C*kh*kw) kernels followed by the biases column."""
        params = self.params['weights'].to_column_leading()
        params.append(self.params['biases'].get_column(0))
        return params

    def set_learnable_parameters(self, params):
        columns = [list(c) for c in params]
        biases = Matrix.from_column_vector(columns.pop())
        kernels = Matrix.from_column_leading(columns)
        if kernels.shape != self.params['weights'].shape:
            raise DimensionMismatchError('set kernels', self.params['weights'].shape, kernels.shape)
        if biases.shape != self.params['biases'].shape:
            raise DimensionMismatchError('set biases', self.params['biases'].shape, biases.shape)
        self.params['weights'] = kernels
        self.params['biases'] = biases

    def __repr__(self):
        return (f"ConvLayer({self.image_shape}, nkern={self.nkern}, "
                f"kernel_size={self.kernel_size}, stride={self.stride}, "
                f"padding={self.padding_mode})")


class AvgPoolLayer(Layer):
    """
    Average Pooling Layer.

    Downsamples each channel by averaging non-overlapping div x div windows.
    Rows/columns that don't fill a whole window are dropped.

    Backprop: Gradient is distributed equally to all elements in window.
    """

    def __init__(self, image_shape, div=2):
        super().__init__()
        self.image_shape = tuple(image_shape)
        self.div = div

        channels, height, width = self.image_shape
        self.h_out = height // div
        self.w_out = width // div
        if self.h_out == 0 or self.w_out == 0:
            raise DimensionMismatchError('AvgPoolLayer', self.image_shape, (div, div))

    @property
    def input_size(self):
        return int(np.prod(self.image_shape))

    @property
    def output_shape(self):
        return (self.image_shape[0], self.h_out, self.w_out)

    @property
    def output_size(self):
        return int(np.prod(self.output_shape))

    def forward(self, input, training=False):
        x = columns_to_images(input, self.image_shape)
        n, c, _, _ = x.shape
        d = self.div

        windows = x[:, :, :self.h_out * d, :self.w_out * d]
        windows = windows.reshape(n, c, self.h_out, d, self.w_out, d)
        output = windows.mean(axis=(3, 5))

        self.cache['x'] = n
        return images_to_columns(output)

    def backward(self, epoch, output_gradient):
        n = self._cached('x')
        if output_gradient.shape != (self.output_size, n):
            raise DimensionMismatchError('AvgPoolLayer.backward', (self.output_size, n),
                                         output_gradient.shape)

        d = self.div
        grad = columns_to_images(output_gradient, self.output_shape) / (d * d)

        grad_input = np.zeros((n,) + self.image_shape)
        grad_input[:, :, :self.h_out * d, :self.w_out * d] = np.repeat(
            np.repeat(grad, d, axis=2), d, axis=3)

        return images_to_columns(grad_input)

    def __repr__(self):
        return f"AvgPoolLayer({self.image_shape}, div={self.div})"


class FullConvLayer(FullLayer):
    """
    ConvLayer -> Activation, with optional dropout on the input pixels.

    Dropout follows the same convention as FullLayer: masked input while
    training, input scaled by (1 - dropout) at inference.
    """

    def __init__(self, conv, activation, dropout=None, rng=None):
        if not isinstance(conv, ConvLayer):
            raise TypeError(f"FullConvLayer expects a ConvLayer, got {type(conv).__name__}")
        super().__init__(conv, activation, dropout=dropout, rng=rng)

    @property
    def output_shape(self):
        return self.dense.output_shape

    def __repr__(self):
        dropout = f", dropout={self.dropout_rate}" if self.dropout_rate else ""
        return f"FullConvLayer({self.dense!r}, {self.activation.activation.name}{dropout})"
