import logging
import typing as tp
from enum import Enum
from pathlib import Path

import numpy as np
import yaml

import feature_extraction.haar_features.haar_modules as hm
from general_utils.utils import IntegralImage


logging.basicConfig(level=logging.INFO)

WINDOW_SIZE = 24
Size = tp.NamedTuple('Size', [('height', int), ('width', int)])
Location = tp.NamedTuple('Location', [('top', int), ('left', int)])

# extent arguments each builder expects after (top, left)
SHAPE_EXTENTS = {
    'two_region_horizontal': ('dx1', 'dx2', 'dy'),
    'two_region_vertical': ('dx', 'dy1', 'dy2'),
    'three_region_horizontal': ('dx1', 'dx2', 'dx3', 'dy'),
    'three_region_vertical': ('dx', 'dy1', 'dy2', 'dy3'),
    'four_region': ('dx1', 'dx2', 'dy1', 'dy2'),
}


class ShapeType(Enum):
    TWO_REGION_HORIZONTAL = 'two_region_horizontal'
    TWO_REGION_VERTICAL = 'two_region_vertical'
    THREE_REGION_HORIZONTAL = 'three_region_horizontal'
    THREE_REGION_VERTICAL = 'three_region_vertical'
    FOUR_REGION = 'four_region'

    @property
    def base_size(self) -> Size:
        return BASE_SIZES[self]

    def build(self, location: Location, shape: Size, sign: hm.Sign) -> hm.HaarFilter:
        """Builds the filter covering `shape` at `location`, regions split evenly"""
        top, left = location
        height, width = shape
        if self is ShapeType.TWO_REGION_HORIZONTAL:
            return hm.two_region_horizontal(top, left, width // 2, width // 2, height, sign)
        if self is ShapeType.TWO_REGION_VERTICAL:
            return hm.two_region_vertical(top, left, width, height // 2, height // 2, sign)
        if self is ShapeType.THREE_REGION_HORIZONTAL:
            tw = width // 3
            return hm.three_region_horizontal(top, left, tw, tw, tw, height, sign)
        if self is ShapeType.THREE_REGION_VERTICAL:
            th = height // 3
            return hm.three_region_vertical(top, left, width, th, th, th, sign)
        hw = width // 2
        hh = height // 2
        return hm.four_region(top, left, hw, hw, hh, hh, sign)


BASE_SIZES = {
    ShapeType.TWO_REGION_HORIZONTAL: Size(height=1, width=2),
    ShapeType.TWO_REGION_VERTICAL: Size(height=2, width=1),
    ShapeType.THREE_REGION_HORIZONTAL: Size(height=1, width=3),
    ShapeType.THREE_REGION_VERTICAL: Size(height=3, width=1),
    ShapeType.FOUR_REGION: Size(height=2, width=2),
}


def possible_position(size: int, window_size: int = WINDOW_SIZE) -> tp.Iterable[int]:
    return range(0, window_size - size + 1)


def possible_locations(base_shape: Size, window_size: int = WINDOW_SIZE) -> tp.Iterable[Location]:
    return (Location(left=x, top=y)
            for y in possible_position(base_shape.height, window_size)
            for x in possible_position(base_shape.width, window_size))


def possible_shapes(base_shape: Size, window_size: int = WINDOW_SIZE) -> tp.Iterable[Size]:
    base_height = base_shape.height
    base_width = base_shape.width
    return (Size(height=height, width=width)
            for width in range(base_width, window_size + 1, base_width)
            for height in range(base_height, window_size + 1, base_height))


def filter_instantiator(
    window_size: int = WINDOW_SIZE, shape_types: tp.Sequence[ShapeType] = None,
    sign: hm.Sign = hm.Sign.POSITIVE
) -> tp.List[hm.HaarFilter]:
    """Generates every filter of the given templates that fits in the window,
    at all scales that are multiples of the template base size.
    Args:
        window_size (int, optional): side of the square detection window.
            Defaults to WINDOW_SIZE.
        shape_types (Sequence[ShapeType], optional): templates to generate.
            Defaults to all of them.
        sign (Sign, optional): sign of the top left region. Defaults to POSITIVE.
    Returns:
        list[HaarFilter]: filters, grouped by template, then scale, then location.
    """
    if shape_types is None:
        shape_types = list(ShapeType)
    filters = []
    for shape_type in shape_types:
        n_before = len(filters)
        filters.extend(
            shape_type.build(location, shape, sign)
            for shape in possible_shapes(shape_type.base_size, window_size)
            for location in possible_locations(shape, window_size))
        logging.debug(
            f'{shape_type.value}: {len(filters) - n_before} filters in a '
            f'{window_size}x{window_size} window')
    return filters


def _filter_from_definition(definition: dict) -> hm.HaarFilter:
    definition = dict(definition)
    shape = definition.pop('shape', None)
    if shape not in hm.SHAPE_BUILDERS:
        raise ValueError(
            f'Unknown filter shape {shape!r}, expected one of {list(hm.SHAPE_BUILDERS)}')
    sign_name = str(definition.pop('sign', 'positive'))
    try:
        sign = hm.Sign[sign_name.upper()]
    except KeyError:
        raise ValueError(f'Unknown sign {sign_name!r}, expected positive or negative')

    expected = ('top', 'left') + SHAPE_EXTENTS[shape]
    missing = [name for name in expected if name not in definition]
    unexpected = [name for name in definition if name not in expected]
    if missing or unexpected:
        raise ValueError(
            f'Bad parameters for {shape}: missing {missing}, unexpected {unexpected}')
    # bool is an int subclass, YAML turns yes/no into booleans
    not_integers = {name: definition[name] for name in expected
                    if isinstance(definition[name], bool) or not isinstance(definition[name], int)}
    if not_integers:
        raise ValueError(f'Parameters of {shape} must be integers, got {not_integers}')
    return hm.SHAPE_BUILDERS[shape](*(definition[name] for name in expected), sign)


def filters_from_config(cfg: dict) -> tp.List[hm.HaarFilter]:
    """Builds the filters described in a parsed configuration.
    Args:
        cfg (dict): with a 'filters' list, each item holding 'shape', 'top',
            'left', the extents of that shape and optionally 'sign'. If
            'window_size' is given every filter must fit in it.
    Returns:
        list[HaarFilter]: filters in the order they were defined.
    """
    window_size = cfg.get('window_size')
    filters = []
    seen = set()
    for i, definition in enumerate(cfg.get('filters', [])):
        haar_filter = _filter_from_definition(definition)
        if window_size is not None and max(haar_filter.extent) >= window_size:
            raise ValueError(
                f'Filter {i} ({definition}) does not fit in a {window_size} window')
        if haar_filter in seen:
            logging.warning(f'Filter {i} ({definition}) duplicates a previous filter')
        seen.add(haar_filter)
        filters.append(haar_filter)
    return filters


def load_filters(config_path: tp.Union[str, Path]) -> tp.List[hm.HaarFilter]:
    with open(config_path, 'r') as ymlfile:
        cfg = yaml.safe_load(ymlfile)
    filters = filters_from_config(cfg or {})
    logging.info(f'Loaded {len(filters)} Haar filters from {config_path}')
    return filters


class HaarFeatureExtractor:
    def __init__(self, filters: tp.Sequence[hm.HaarFilter] = None, window_size: int = WINDOW_SIZE):
        """Evaluates a fixed set of filters on image crops.
        Args:
            filters (Sequence[HaarFilter], optional): filters to evaluate.
                Defaults to every template placement in the window.
            window_size (int, optional): used only when filters is None.
        """
        if filters is None:
            filters = filter_instantiator(window_size)
        self.filters = list(filters)

    def extract_features(self, integral_image: tp.Union[IntegralImage, np.ndarray]) -> np.ndarray:
        if not isinstance(integral_image, IntegralImage):
            integral_image = IntegralImage(integral_image)
        features_values = np.empty(len(self.filters), dtype=np.int64)
        for i, haar_filter in enumerate(self.filters):
            features_values[i] = haar_filter.evaluate(integral_image)
        return features_values

    def extract_features_from_crop(self, img: np.ndarray) -> np.ndarray:
        return self.extract_features(IntegralImage.from_image(img))
