"""
Assembly of the symmetric LiGT system M = A^T A.

The constraint matrix A stacks one 3-row block per triplet with one 3-column
block per camera. Instead of forming A, every triplet row Row(i) = [C | B | D]
contributes Row(i)^T Row(i) directly:

    Row(i)^T Row(i) = [ C^T C  C^T B  C^T D ]
                      [ B^T C  B^T B  B^T D ]
                      [ D^T C  D^T B  D^T D ]

Only blocks on or above the block diagonal are accumulated. The first view
encountered is pinned at the origin and has no columns in M.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from motion_avg.geometry.triplets import ConstraintBlocks, Triplet

BlockMap = Dict[Tuple[int, int], np.ndarray]
TrackConstraints = List[Tuple[Triplet, ConstraintBlocks]]


@dataclass(frozen=True)
class SystemIndex:
    """Either the pinned reference view or a block index into M."""

    index: Optional[int] = None

    @classmethod
    def pinned(cls) -> "SystemIndex":
        return cls(None)

    @classmethod
    def mapped(cls, index: int) -> "SystemIndex":
        if index < 0:
            raise ValueError(f"Mapped index must be >= 0, got {index}")
        return cls(index)

    @property
    def is_pinned(self) -> bool:
        return self.index is None

    def offset(self) -> int:
        """First row/column of this view's 3x3 block."""
        if self.index is None:
            raise ValueError("The pinned view has no columns in the linear system")
        return 3 * self.index


@dataclass
class LinearSystem:
    """Upper block-triangular half of M plus the view -> index mapping."""

    upper: sp.csr_matrix
    view_index: Dict[int, SystemIndex]

    @property
    def num_views(self) -> int:
        return len(self.view_index)

    @property
    def dimension(self) -> int:
        return self.upper.shape[0]

    def pinned_view(self) -> Optional[int]:
        for view_id, index in self.view_index.items():
            if index.is_pinned:
                return view_id
        return None

    def full(self) -> sp.csr_matrix:
        """Symmetric M obtained by mirroring the off-diagonal blocks."""
        upper = self.upper.tocoo()
        off_diagonal = (upper.row // 3) != (upper.col // 3)
        mirrored = sp.coo_matrix(
            (upper.data[off_diagonal], (upper.col[off_diagonal], upper.row[off_diagonal])),
            shape=upper.shape,
        )
        return (upper + mirrored).tocsr()


def build_system_index(triplets: Iterable[Triplet]) -> Dict[int, SystemIndex]:
    """
    Number the views in order of first appearance.

    The very first view is pinned; each later new view receives the next
    free block index starting at 0.
    """
    view_index: Dict[int, SystemIndex] = {}
    for triplet in triplets:
        for view_id in triplet:
            if view_id in view_index:
                continue
            if not view_index:
                view_index[view_id] = SystemIndex.pinned()
            else:
                view_index[view_id] = SystemIndex.mapped(len(view_index) - 1)
    return view_index


def add_triplet_to_blocks(
    triplet: Triplet,
    blocks: ConstraintBlocks,
    view_index: Dict[int, SystemIndex],
    accumulator: BlockMap,
) -> None:
    """Add Row^T Row of one triplet to the upper block triangle."""
    # Column order of the row is (base_left, middle, base_right).
    row = (blocks.C, blocks.B, blocks.D)
    indices = [view_index[view_id] for view_id in triplet]

    for a in range(3):
        if indices[a].is_pinned:
            continue
        for b in range(3):
            if indices[b].is_pinned:
                continue
            if indices[a].index > indices[b].index:
                continue
            key = (indices[a].index, indices[b].index)
            accumulator[key] = accumulator.get(key, 0.0) + row[a].T @ row[b]


def accumulate_blocks(
    constraints: Iterable[Tuple[Triplet, ConstraintBlocks]],
    view_index: Dict[int, SystemIndex],
) -> BlockMap:
    accumulator: BlockMap = {}
    for triplet, blocks in constraints:
        add_triplet_to_blocks(triplet, blocks, view_index, accumulator)
    return accumulator


def merge_blocks(partials: Iterable[BlockMap]) -> BlockMap:
    merged: BlockMap = {}
    for partial in partials:
        for key, block in partial.items():
            merged[key] = merged.get(key, 0.0) + block
    return merged


def blocks_to_sparse(blocks: BlockMap, num_mapped_views: int) -> sp.csr_matrix:
    """Scatter 3x3 blocks into a (3n, 3n) sparse matrix."""
    size = 3 * num_mapped_views
    if not blocks:
        return sp.csr_matrix((size, size))

    local_rows = np.repeat(np.arange(3), 3)
    local_cols = np.tile(np.arange(3), 3)
    rows, cols, data = [], [], []
    for (i, j), block in blocks.items():
        rows.append(3 * i + local_rows)
        cols.append(3 * j + local_cols)
        data.append(block.ravel())

    return sp.coo_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(size, size),
    ).tocsr()


def _chunk(items: Sequence, num_chunks: int) -> List[Sequence]:
    if not items:
        return []
    num_chunks = max(1, min(num_chunks, len(items)))
    size = -(-len(items) // num_chunks)
    return [items[k:k + size] for k in range(0, len(items), size)]


def assemble_linear_system(
    track_constraints: Sequence[TrackConstraints],
    num_threads: int = 1,
) -> LinearSystem:
    """
    Build the LiGT system from per-track constraints.

    Args:
        track_constraints: For each track (in a deterministic order), the
            list of (triplet, blocks) it contributes.
        num_threads: Worker threads used for the accumulation. Each worker
            fills its own block map; the maps are merged afterwards.

    Returns:
        LinearSystem with the upper half of M, of size 3 * (num_views - 1).
    """
    flat = [item for constraints in track_constraints for item in constraints]
    view_index = build_system_index(triplet for triplet, _ in flat)

    chunks = _chunk(flat, num_threads)
    if len(chunks) <= 1:
        partials = [accumulate_blocks(chunk, view_index) for chunk in chunks]
    else:
        with ThreadPoolExecutor(max_workers=num_threads) as ex:
            partials = list(ex.map(lambda chunk: accumulate_blocks(chunk, view_index), chunks))

    num_mapped = max(len(view_index) - 1, 0)
    upper = blocks_to_sparse(merge_blocks(partials), num_mapped)
    return LinearSystem(upper=upper, view_index=view_index)


__all__ = [
    "SystemIndex",
    "LinearSystem",
    "build_system_index",
    "add_triplet_to_blocks",
    "accumulate_blocks",
    "merge_blocks",
    "blocks_to_sparse",
    "assemble_linear_system",
]
