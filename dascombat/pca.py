"""**approximate PCA** of the samples by power iteration on the sample Gram matrix

Only the first two components are computed. They are used to show the sample
layout before and after batch correction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from dascombat.linalg import multiply, transpose

logger = logging.getLogger(__name__)

NORM_TOLERANCE = 1e-10


@dataclass(frozen=True)
class PcaPoint:
    """One sample in PC1/PC2 space."""

    pc1: float
    pc2: float
    sample_id: Any
    batch: str
    sample_name: str


@dataclass(frozen=True)
class PcaResult:
    """PCA of one matrix (before or after correction)."""

    points: List[PcaPoint]
    variance_explained_pc1: float
    variance_explained_pc2: float
    degenerate: bool = False

    def to_df(self) -> pd.DataFrame:

        return pd.DataFrame(
            {
                "sample": [point.sample_id for point in self.points],
                "name": [point.sample_name for point in self.points],
                "batch": [point.batch for point in self.points],
                "PC1": [point.pc1 for point in self.points],
                "PC2": [point.pc2 for point in self.points],
            }
        )


class PowerIterationPCA:

    n_iterations: int
    random_state: int

    def __init__(self, n_iterations: int = 100, random_state: int = 42) -> None:

        self.n_iterations = n_iterations
        self.random_state = random_state

    def fit_transform(
        self,
        X: np.ndarray,
        sample_ids: Sequence[Any],
        batches: Sequence[str],
        sample_names: Optional[Dict[Any, str]] = None,
    ) -> PcaResult:
        """Project the samples of a features x samples matrix onto the first two components.

        Args:
            X (np.ndarray): Matrix with features as rows and samples as columns.
            sample_ids (Sequence[Any]): Sample identity for each column of X.
            batches (Sequence[str]): Batch label for each column of X.
            sample_names (Optional[Dict[Any, str]], optional): Display names by sample id. Defaults to "Sample <id>".

        Returns:
            PcaResult: Scores and percentage of variance explained by PC1 and PC2.

        """
        X = np.asarray(X, dtype=np.float64)
        sample_names = sample_names or {}

        samples = transpose(X)
        centered = samples - samples.mean(axis=0)

        gram = multiply(centered, transpose(centered))

        pc1_vector, pc1_degenerate = self._power_iteration(gram)
        eigenvalue1 = _rayleigh_quotient(gram, pc1_vector)

        deflated = gram - eigenvalue1 * np.outer(pc1_vector, pc1_vector)

        pc2_vector, pc2_degenerate = self._power_iteration(deflated)
        eigenvalue2 = _rayleigh_quotient(deflated, pc2_vector)

        total_variance = float(np.trace(gram))

        degenerate = pc1_degenerate or pc2_degenerate

        if total_variance > 0:
            variance_explained1 = float(np.clip(eigenvalue1 / total_variance * 100, 0.0, 100.0))
            variance_explained2 = float(np.clip(eigenvalue2 / total_variance * 100, 0.0, 100.0))
        else:
            variance_explained1 = 0.0
            variance_explained2 = 0.0
            degenerate = True

        pc1_scores = pc1_vector * np.sqrt(abs(eigenvalue1))
        pc2_scores = pc2_vector * np.sqrt(abs(eigenvalue2))

        points = []

        for sample_idx, sample_id in enumerate(sample_ids):

            points.append(
                PcaPoint(
                    pc1=float(pc1_scores[sample_idx]),
                    pc2=float(pc2_scores[sample_idx]),
                    sample_id=sample_id,
                    batch=str(batches[sample_idx]),
                    sample_name=sample_names.get(sample_id, f"Sample {sample_id}"),
                )
            )

        if degenerate:
            logger.warning(
                "PCA is degenerate (constant or near-constant data), scores are not reliable"
            )

        return PcaResult(
            points=points,
            variance_explained_pc1=variance_explained1,
            variance_explained_pc2=variance_explained2,
            degenerate=degenerate,
        )

    def _power_iteration(self, matrix: np.ndarray) -> Tuple[np.ndarray, bool]:

        rng = np.random.default_rng(self.random_state)

        vector, degenerate = _normalize(rng.random(matrix.shape[0]) - 0.5)

        for _ in range(self.n_iterations):

            vector, degenerate = _normalize(matrix @ vector)

        return vector, degenerate


def _normalize(vector: np.ndarray) -> Tuple[np.ndarray, bool]:
    norm = np.sqrt(np.sum(vector * vector))

    # near-zero vectors are returned unchanged
    if norm < NORM_TOLERANCE:
        return vector, True

    return vector / norm, False


def _rayleigh_quotient(matrix: np.ndarray, vector: np.ndarray) -> float:

    return float(vector @ matrix @ vector)
