import numpy as np

from numba import njit


@njit(cache=True)
def integral_img(img_arr):
    # Inclusive prefix sum: int_img[y, x] = img_arr[:y+1, :x+1].sum()
    shape = img_arr.shape
    int_img = np.zeros(shape, dtype=np.int64)
    for y in range(shape[0]):
        row_sum = 0
        for x in range(shape[1]):
            row_sum += img_arr[y, x]
            if y == 0:
                int_img[y, x] = row_sum
            else:
                int_img[y, x] = int_img[y - 1, x] + row_sum
    return int_img


class IntegralImage:
    def __init__(self, integral: np.ndarray):
        """Read-only integral image.
        Args:
            integral (np.ndarray): 2D array where integral[y, x] holds the sum of
                all the source pixels with coordinates <= (x, y).
        """
        array = np.array(integral, dtype=np.int64)
        if array.ndim != 2:
            raise ValueError(f'Integral image must be 2D, got shape {array.shape}')
        array.flags.writeable = False
        self.array = array

    @classmethod
    def from_image(cls, image: np.ndarray) -> 'IntegralImage':
        """Computes the integral image of a single channel integer image"""
        return cls(integral_img(np.asarray(image, dtype=np.int64)))

    @property
    def shape(self) -> tuple:
        return self.array.shape

    @property
    def width(self) -> int:
        return self.array.shape[1]

    @property
    def height(self) -> int:
        return self.array.shape[0]

    def value_at(self, x: int, y: int) -> int:
        return int(self.array[y, x])

    def __repr__(self):
        return f'{self.__class__.__name__}(width={self.width}, height={self.height})'
