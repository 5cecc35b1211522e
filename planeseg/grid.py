"""Cell grid geometry: linear cell ids, (row, col) and 4-neighbours."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from utils.error_tracker import ConfigurationError


@dataclass(frozen=True)
class CellGrid:
    nr_horizontal_cells: int
    nr_vertical_cells: int
    patch_size: int

    @classmethod
    def from_image(cls, height: int, width: int, patch_size: int) -> "CellGrid":
        """Grid of ``patch_size`` cells; the border remainder is cropped."""
        if patch_size <= 0:
            raise ConfigurationError(f"patch size must be > 0, got {patch_size}")
        grid = cls(int(width) // patch_size, int(height) // patch_size, patch_size)
        if grid.nr_horizontal_cells <= 0 or grid.nr_vertical_cells <= 0:
            raise ConfigurationError(
                f"image {width}x{height} yields an empty cell grid "
                f"({grid.nr_horizontal_cells}x{grid.nr_vertical_cells}) "
                f"with patch size {patch_size}"
            )
        return grid

    @property
    def nr_total_cells(self) -> int:
        return self.nr_horizontal_cells * self.nr_vertical_cells

    @property
    def nr_pts_per_cell(self) -> int:
        return self.patch_size * self.patch_size

    @property
    def shape(self) -> Tuple[int, int]:
        """(vertical, horizontal), the label map shape."""
        return (self.nr_vertical_cells, self.nr_horizontal_cells)

    def cell_id(self, row: int, col: int) -> int:
        return col + self.nr_horizontal_cells * row

    def row_col(self, cell_id: int) -> Tuple[int, int]:
        return divmod(cell_id, self.nr_horizontal_cells)

    def contains(self, row: int, col: int) -> bool:
        return 0 <= row < self.nr_vertical_cells and 0 <= col < self.nr_horizontal_cells

    def neighbors(self, cell_id: int) -> List[int]:
        """In-bounds 4-connected neighbours (left, right, up, down)."""
        row, col = self.row_col(cell_id)
        out = []
        if col > 0:
            out.append(cell_id - 1)
        if col < self.nr_horizontal_cells - 1:
            out.append(cell_id + 1)
        if row > 0:
            out.append(cell_id - self.nr_horizontal_cells)
        if row < self.nr_vertical_cells - 1:
            out.append(cell_id + self.nr_horizontal_cells)
        return out

    def block_slice(self, cell_id: int) -> slice:
        """Rows of the cell-ordered point array that belong to ``cell_id``."""
        start = cell_id * self.nr_pts_per_cell
        return slice(start, start + self.nr_pts_per_cell)
