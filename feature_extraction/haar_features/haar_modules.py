import typing as tp
from enum import Enum

import numpy as np
from numba import njit

from general_utils.utils import IntegralImage


# Largest number of distinct points any supported shape collapses to
# (the four region shape: a 3x3 grid of corners).
CAPACITY = 9

Point = tp.Tuple[int, int]
Rectangle = tp.NamedTuple(
    'Rectangle', [('top', int), ('left', int), ('width', int), ('height', int)])
CornerWeights = tp.NamedTuple(
    'CornerWeights', [('points', tp.Tuple[Point, ...]), ('weights', tp.Tuple[int, ...])])


class HaarFilterError(Exception):
    """Base exception for Haar filter construction and evaluation."""


class InvalidRectangleError(HaarFilterError, ValueError):
    """A rectangle with a non positive extent or a negative anchor."""


class ExceedsCapacityError(HaarFilterError, AssertionError):
    """A combination of rectangles produced more than CAPACITY points.

    Only a wrongly assembled shape builder can trigger this.
    """


class InvalidFilterError(HaarFilterError, ValueError):
    """Points and weights that are not in canonical form."""


class OutOfBoundsError(HaarFilterError, IndexError):
    """A filter references points outside the integral image."""


class Sign(Enum):
    """Whether the top left region of a filter is counted positively."""
    POSITIVE = 1
    NEGATIVE = -1

    @property
    def multiplier(self) -> int:
        return self.value


@njit(cache=True)
def _weighted_sum(integral, points, weights, count):
    total = 0
    for i in range(count):
        total += np.int64(integral[points[i, 1], points[i, 0]]) * np.int64(weights[i])
    return total


class HaarFilter:
    # Immutable sparse filter: the value on an integral image I is
    # sum(weights[i] * I(points[i])) over the first `count` entries.
    __slots__ = ('_points', '_weights', '_count', '_extent')

    def __init__(self, points: np.ndarray, weights: np.ndarray, count: int):
        """Packs canonical points and weights into fixed size storage.
        Args:
            points (np.ndarray): (count, 2) array of (x, y) points, strictly
                ascending by (y, x).
            weights (np.ndarray): (count,) array of non zero integer weights.
            count (int): number of active points.
        Raises:
            ExceedsCapacityError: if count is larger than CAPACITY.
            InvalidFilterError: if points and weights are not canonical.
        """
        if count > CAPACITY:
            raise ExceedsCapacityError(
                f'Filter has {count} distinct points, at most {CAPACITY} are supported')
        point_list = [(int(x), int(y)) for x, y in np.asarray(points).reshape(-1, 2).tolist()]
        weight_list = [int(w) for w in np.asarray(weights).reshape(-1).tolist()]
        if len(point_list) != count or len(weight_list) != count:
            raise InvalidFilterError(
                f'Expected {count} points and weights, got {len(point_list)} and '
                f'{len(weight_list)}')
        if any(w == 0 for w in weight_list):
            raise InvalidFilterError(f'Zero weight in {weight_list}')
        keys = [(y, x) for x, y in point_list]
        if any(a >= b for a, b in zip(keys, keys[1:])):
            raise InvalidFilterError(f'Points not strictly ascending by (y, x): {point_list}')

        self._points = np.zeros((CAPACITY, 2), dtype=np.uint32)
        self._weights = np.zeros(CAPACITY, dtype=np.int8)
        self._points[:count] = np.asarray(point_list, dtype=np.uint32).reshape(-1, 2)
        self._weights[:count] = weight_list
        self._points.flags.writeable = False
        self._weights.flags.writeable = False
        self._count = count
        if count == 0:
            self._extent = (-1, -1)
        else:
            self._extent = (max(x for x, _ in point_list), max(y for _, y in point_list))

    @property
    def count(self) -> int:
        return self._count

    @property
    def points(self) -> np.ndarray:
        """Active (x, y) points, shape (count, 2)."""
        return self._points[:self._count]

    @property
    def weights(self) -> np.ndarray:
        return self._weights[:self._count]

    @property
    def extent(self) -> Point:
        """Largest x and y referenced, (-1, -1) for an empty filter."""
        return self._extent

    def scaled_by(self, sign: Sign) -> 'HaarFilter':
        """Returns a new filter with every weight multiplied by the sign."""
        return HaarFilter(self.points, self.weights * sign.multiplier, self._count)

    def evaluate(self, integral: tp.Union[IntegralImage, np.ndarray]) -> int:
        """Evaluates the filter on an integral image.
        Args:
            integral (IntegralImage | np.ndarray): integral image, arrays must
                be 2D, of an integer dtype and indexed as [y, x]. They are read
                in place, never copied.
        Returns:
            int: the feature value.
        Raises:
            TypeError: if the array is not 2D or not of an integer dtype.
            OutOfBoundsError: if a filter point lies outside the image.
        """
        if isinstance(integral, IntegralImage):
            array = integral.array
        else:
            array = integral
            if not isinstance(array, np.ndarray) or array.ndim != 2 or \
                    not np.issubdtype(array.dtype, np.integer):
                raise TypeError(
                    f'Expected an IntegralImage or a 2D integer array, got {type(integral)} '
                    f'with dtype {getattr(integral, "dtype", None)}')
        max_x, max_y = self._extent
        if max_y >= array.shape[0] or max_x >= array.shape[1]:
            raise OutOfBoundsError(
                f'Point ({max_x}, {max_y}) outside integral image of shape '
                f'{array.shape} in {self}')
        return int(_weighted_sum(array, self._points, self._weights, self._count))

    def __eq__(self, other):
        if not isinstance(other, HaarFilter):
            return NotImplemented
        return self._count == other._count and \
            np.array_equal(self.points, other.points) and \
            np.array_equal(self.weights, other.weights)

    def __hash__(self):
        return hash((self._count, self.points.tobytes(), self.weights.tobytes()))

    def __repr__(self):
        pairs = ', '.join(
            f'({x}, {y}): {w}' for (x, y), w in zip(self.points.tolist(), self.weights.tolist()))
        return f'{self.__class__.__name__}({{{pairs}}})'


def evaluate(haar_filter: HaarFilter, integral: tp.Union[IntegralImage, np.ndarray]) -> int:
    return haar_filter.evaluate(integral)


def corner_weights(rect: Rectangle) -> CornerWeights:
    """Points of an integral image whose weighted sum gives the sum of the
    pixels inside the rectangle. When the rectangle touches the top or left
    border the points falling on row or column -1 are replaced by a zero
    weight at (0, 0).
    Args:
        rect (Rectangle): rectangle fully contained in the image.
    Returns:
        CornerWeights: four (x, y) points and their weights in order
            top left, top right, bottom left, bottom right.
    """
    top, left, width, height = rect
    if width < 1 or height < 1 or top < 0 or left < 0:
        raise InvalidRectangleError(f'Invalid rectangle {rect}')
    right = left + width - 1
    bottom = top + height - 1

    points = [(0, 0), (0, 0), (0, 0), (right, bottom)]
    weights = [0, 0, 0, 1]
    if top > 0 and left > 0:
        points[0] = (left - 1, top - 1)
        weights[0] = 1
    if top > 0:
        points[1] = (right, top - 1)
        weights[1] = -1
    if left > 0:
        points[2] = (left - 1, bottom)
        weights[2] = -1
    return CornerWeights(tuple(points), tuple(weights))


def combine_alternating(rects: tp.Sequence[CornerWeights]) -> HaarFilter:
    """Combines rectangles with alternating sign, the first one counted
    positively. Weights of shared points are summed, points whose weight
    cancels are dropped and the rest ordered by (y, x).
    Args:
        rects (Sequence[CornerWeights]): corner weights of each rectangle.
    Returns:
        HaarFilter: canonical filter.
    """
    accumulated = {}
    sign = 1
    for rect in rects:
        for point, weight in zip(rect.points, rect.weights):
            accumulated[point] = accumulated.get(point, 0) + sign * weight
        sign *= -1

    # dict iteration order depends on insertion, sort to get a canonical form
    sorted_points = sorted(
        ((point, weight) for point, weight in accumulated.items() if weight != 0),
        key=lambda pw: (pw[0][1], pw[0][0]))

    points = [point for point, _ in sorted_points]
    weights = [weight for _, weight in sorted_points]
    return HaarFilter(points, weights, len(sorted_points))


def two_region_horizontal(
    top: int, left: int, dx1: int, dx2: int, dy: int, sign: Sign = Sign.POSITIVE
) -> HaarFilter:
    """
        A   B   C
          +   -
        D   E   F
    A = (left, top), B.x = A.x + dx1, C.x = B.x + dx2, D.y = A.y + dy.
    Value on an integral image I with positive sign:
        I(A) - 2I(B) + I(C) - I(D) + 2I(E) - I(F)
    """
    return combine_alternating([
        corner_weights(Rectangle(top, left, dx1, dy)),
        corner_weights(Rectangle(top, left + dx1, dx2, dy)),
    ]).scaled_by(sign)


def two_region_vertical(
    top: int, left: int, dx: int, dy1: int, dy2: int, sign: Sign = Sign.POSITIVE
) -> HaarFilter:
    """
        A   B
          +
        C   D
          -
        E   F
    dx is the distance between A and B, dy1 between A and C, dy2 between C and E.
    Value on an integral image I with positive sign:
        I(A) - I(B) - 2I(C) + 2I(D) + I(E) - I(F)
    """
    return combine_alternating([
        corner_weights(Rectangle(top, left, dx, dy1)),
        corner_weights(Rectangle(top + dy1, left, dx, dy2)),
    ]).scaled_by(sign)


def three_region_horizontal(
    top: int, left: int, dx1: int, dx2: int, dx3: int, dy: int, sign: Sign = Sign.POSITIVE
) -> HaarFilter:
    """
        A   B   C   D
          +   -   +
        E   F   G   H
    Value on an integral image I with positive sign:
        I(A) - 2I(B) + 2I(C) - I(D) - I(E) + 2I(F) - 2I(G) + I(H)
    """
    return combine_alternating([
        corner_weights(Rectangle(top, left, dx1, dy)),
        corner_weights(Rectangle(top, left + dx1, dx2, dy)),
        corner_weights(Rectangle(top, left + dx1 + dx2, dx3, dy)),
    ]).scaled_by(sign)


def three_region_vertical(
    top: int, left: int, dx: int, dy1: int, dy2: int, dy3: int, sign: Sign = Sign.POSITIVE
) -> HaarFilter:
    """
        A   B
          +
        C   D
          -
        E   F
          +
        G   H
    Value on an integral image I with positive sign:
        I(A) - I(B) - 2I(C) + 2I(D) + 2I(E) - 2I(F) - I(G) + I(H)
    """
    return combine_alternating([
        corner_weights(Rectangle(top, left, dx, dy1)),
        corner_weights(Rectangle(top + dy1, left, dx, dy2)),
        corner_weights(Rectangle(top + dy1 + dy2, left, dx, dy3)),
    ]).scaled_by(sign)


def four_region(
    top: int, left: int, dx1: int, dx2: int, dy1: int, dy2: int, sign: Sign = Sign.POSITIVE
) -> HaarFilter:
    """
        A   B   C
          +   -
        D   E   F
          -   +
        G   H   I
    dx1 is the distance between A and B, dx2 between B and C, dy1 between
    A and D and dy2 between D and G.
    Value on an integral image I with positive sign:
        I(A) - 2I(B) + I(C) - 2I(D) + 4I(E) - 2I(F) + I(G) - 2I(H) + I(I)
    """
    # Regions go around E so that alternating signs give the checkerboard
    return combine_alternating([
        corner_weights(Rectangle(top, left, dx1, dy1)),
        corner_weights(Rectangle(top, left + dx1, dx2, dy1)),
        corner_weights(Rectangle(top + dy1, left + dx1, dx2, dy2)),
        corner_weights(Rectangle(top + dy1, left, dx1, dy2)),
    ]).scaled_by(sign)


SHAPE_BUILDERS = {
    'two_region_horizontal': two_region_horizontal,
    'two_region_vertical': two_region_vertical,
    'three_region_horizontal': three_region_horizontal,
    'three_region_vertical': three_region_vertical,
    'four_region': four_region,
}
