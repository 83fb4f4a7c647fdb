"""Shape addressing utilities for 2D sample grids."""

from abc import ABC, abstractmethod


class Shape2(ABC):
    """
    Abstract base class for 2D grid addressing.

    A shape maps a grid coordinate (x, y) to an offset into a flat sample
    array and back. Different layouts (x-fastest, y-fastest, statically
    sized) can be passed to the mesh generator interchangeably.
    """

    def __init__(self, width, height):
        """
        Initialize shape.

        Args:
            width: Number of samples along X
            height: Number of samples along Y
        """
        width = int(width)
        height = int(height)
        if width < 1 or height < 1:
            raise ValueError(f"Shape dimensions must be positive, got {width}x{height}")
        self.width = width
        self.height = height

    @property
    def dims(self):
        """Grid extent as (width, height)."""
        return self.width, self.height

    def total_elements(self):
        """Number of samples addressed by this shape."""
        return self.width * self.height

    def contains(self, coord):
        """Test if a coordinate lies inside the grid."""
        x, y = coord
        return 0 <= x < self.width and 0 <= y < self.height

    def _check_coord(self, coord):
        if not self.contains(coord):
            raise IndexError(f"Coordinate {tuple(coord)} outside {self.width}x{self.height} grid")

    def _check_index(self, index):
        if not 0 <= index < self.total_elements():
            raise IndexError(f"Index {index} outside grid of {self.total_elements()} samples")

    @abstractmethod
    def linearize(self, coord):
        """
        Convert a grid coordinate to a linear array offset.

        Args:
            coord: (x, y) pair

        Returns:
            int: Offset into the flat sample array
        """
        pass

    @abstractmethod
    def delinearize(self, index):
        """
        Convert a linear array offset back to a grid coordinate.

        Args:
            index: Offset into the flat sample array

        Returns:
            tuple: (x, y) grid coordinate
        """
        pass

    def __eq__(self, other):
        return type(self) is type(other) and self.dims == other.dims

    def __hash__(self):
        return hash((type(self).__name__, self.dims))

    def __repr__(self):
        return f"{type(self).__name__}({self.width}, {self.height})"


class RuntimeShape2(Shape2):
    """X-fastest layout, matching a C-ordered numpy array indexed [y, x]."""

    def linearize(self, coord):
        self._check_coord(coord)
        x, y = coord
        return int(x) + self.width * int(y)

    def delinearize(self, index):
        index = int(index)
        self._check_index(index)
        y, x = divmod(index, self.width)
        return x, y


class TransposedShape2(Shape2):
    """Y-fastest layout, matching a Fortran-ordered array indexed [y, x]."""

    def linearize(self, coord):
        self._check_coord(coord)
        x, y = coord
        return int(y) + self.height * int(x)

    def delinearize(self, index):
        index = int(index)
        self._check_index(index)
        x, y = divmod(index, self.height)
        return x, y


class ConstShape2(RuntimeShape2):
    """
    Statically-sized x-fastest layout.

    Subclasses fix WIDTH and HEIGHT as class attributes, so every instance
    addresses the same grid. Use const_shape2() to build one.
    """

    WIDTH = None
    HEIGHT = None
    SIZE = None

    def __init__(self):
        if self.WIDTH is None or self.HEIGHT is None:
            raise TypeError("ConstShape2 must be specialized with const_shape2()")
        super().__init__(self.WIDTH, self.HEIGHT)

    def __repr__(self):
        return f"ConstShape2<{self.WIDTH}, {self.HEIGHT}>()"


_CONST_SHAPES = {}


def const_shape2(width, height):
    """
    Return the ConstShape2 subclass for a fixed grid size.

    Classes are memoized so the same dimensions always yield the same type.

    Args:
        width: Number of samples along X
        height: Number of samples along Y

    Returns:
        type: ConstShape2 subclass with WIDTH, HEIGHT and SIZE set
    """
    key = (int(width), int(height))
    if key[0] < 1 or key[1] < 1:
        raise ValueError(f"Shape dimensions must be positive, got {key[0]}x{key[1]}")
    cls = _CONST_SHAPES.get(key)
    if cls is None:
        cls = type(
            f"ConstShape2_{key[0]}x{key[1]}",
            (ConstShape2,),
            {'WIDTH': key[0], 'HEIGHT': key[1], 'SIZE': key[0] * key[1]},
        )
        _CONST_SHAPES[key] = cls
    return cls
