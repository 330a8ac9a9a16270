"""**corrects batch effects** in quantitative matrices with the ComBat empirical Bayes method

Location/scale (L/S) correction:

>>> import numpy as np
>>> from dascombat.correction import ComBat
>>> X = np.array(
...     [
...         [10.0, 10.4, 9.7, 13.1, 12.8, 13.5],
...         [20.2, 19.8, 20.5, 23.0, 23.4, 22.7],
...         [15.1, 14.6, 15.3, 18.2, 17.9, 18.6],
...         [8.3, 8.9, 8.6, 11.4, 11.0, 11.8],
...     ]
... )
>>> combat = ComBat()
>>> corrected = combat.fit_transform(X, ["A", "A", "A", "B", "B", "B"])
>>> combat.model.batch_levels
['A', 'B']

Location only (L) correction with a reference batch, which is left untouched:

>>> corrected = ComBat(mean_only=True, reference_batch="A").fit_transform(X, ["A", "A", "A", "B", "B", "B"])
>>> bool(np.all(corrected[:, :3] == X[:, :3]))
True

"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from dascombat.exceptions import (
    DegeneratePriorError,
    DimensionMismatchError,
    EmptyModelError,
    InsufficientBatchSizeError,
    InsufficientFeaturesError,
    MalformedModelError,
    UnknownBatchLevelError,
    UnknownReferenceBatchError,
    ZeroVarianceFeatureError,
)
from dascombat.linalg import invert, multiply, transpose

logger = logging.getLogger(__name__)

SCALE_TOLERANCE = 1e-20
MODEL_FIELDS = ("L", "S", "gammaStar", "deltaStar", "batchLevels")


@dataclass(frozen=True, eq=False)
class ComBatModel:
    """Fitted ComBat parameters.

    Attributes:
        L (np.ndarray): Grand mean per feature.
        S (np.ndarray): Pooled variance per feature.
        gamma_star (np.ndarray): Adjusted location per batch and feature (batches x features).
        delta_star (np.ndarray): Adjusted scale per batch and feature (batches x features).
        batch_levels (List[str]): Sorted batch levels seen at fit time, in the row order of gamma_star and delta_star.

    """

    L: np.ndarray
    S: np.ndarray
    gamma_star: np.ndarray
    delta_star: np.ndarray
    batch_levels: List[str]

    def __post_init__(self) -> None:

        for name in ("L", "S", "gamma_star", "delta_star"):
            array = np.array(getattr(self, name), dtype=np.float64)
            array.setflags(write=False)
            object.__setattr__(self, name, array)

        object.__setattr__(self, "batch_levels", list(self.batch_levels))

    @property
    def num_features(self) -> int:

        return self.L.shape[0]

    def apply(self, X: np.ndarray, batches: Sequence[str]) -> np.ndarray:
        """Correct new data with the stored parameters, without re-estimating anything.

        Args:
            X (np.ndarray): Matrix with features as rows and samples as columns.
            batches (Sequence[str]): Batch label per sample, all of them seen at fit time.

        Returns:
            np.ndarray: The corrected matrix.

        Raises:
            DimensionMismatchError: If the number of labels or features does not match.
            UnknownBatchLevelError: If a label was not seen at fit time.

        """
        X = np.asarray(X, dtype=np.float64)
        batches = [str(batch) for batch in batches]

        if len(batches) != X.shape[1]:
            raise DimensionMismatchError(
                f"Data matrix and batch variable don't match ({X.shape[1]} samples, {len(batches)} batch labels)."
            )

        if X.shape[0] != self.num_features:
            raise DimensionMismatchError(
                f"Data matrix has {X.shape[0]} features but the model was fit on {self.num_features}."
            )

        level_index = {level: idx for idx, level in enumerate(self.batch_levels)}

        for batch in batches:
            if batch not in level_index:
                raise UnknownBatchLevelError(batch, self.batch_levels)

        sqrt_s = np.sqrt(self.S)
        passthrough = sqrt_s < SCALE_TOLERANCE
        safe_sqrt_s = np.where(passthrough, 1.0, sqrt_s)

        corrected = X.copy()

        for sample_idx, batch in enumerate(batches):

            batch_idx = level_index[batch]

            standardized = (X[:, sample_idx] - self.L) / safe_sqrt_s
            adjusted = (standardized - self.gamma_star[batch_idx]) / np.sqrt(
                self.delta_star[batch_idx]
            )

            corrected[:, sample_idx] = np.where(
                passthrough, X[:, sample_idx], adjusted * safe_sqrt_s + self.L
            )

        return corrected

    def to_dict(self) -> Dict[str, Any]:

        return {
            "L": self.L.tolist(),
            "S": self.S.tolist(),
            "gammaStar": self.gamma_star.tolist(),
            "deltaStar": self.delta_star.tolist(),
            "batchLevels": list(self.batch_levels),
        }

    def to_json(self) -> str:

        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> ComBatModel:
        """Build a model from its serialized record, validating every field.

        Raises:
            MalformedModelError: If a field is missing, not finite, or the shapes do not agree.

        """
        if not isinstance(record, dict):
            raise MalformedModelError("A serialized ComBat model must be a mapping.")

        missing = [name for name in MODEL_FIELDS if name not in record]

        if missing:
            raise MalformedModelError(
                f"Serialized ComBat model is missing fields: {', '.join(missing)}"
            )

        L = _to_array(record["L"], "L", ndim=1)
        S = _to_array(record["S"], "S", ndim=1)
        gamma_star = _to_array(record["gammaStar"], "gammaStar", ndim=2)
        delta_star = _to_array(record["deltaStar"], "deltaStar", ndim=2)

        batch_levels = record["batchLevels"]

        if not isinstance(batch_levels, list) or not all(
            isinstance(level, str) for level in batch_levels
        ):
            raise MalformedModelError("batchLevels must be a list of strings.")

        if len(set(batch_levels)) != len(batch_levels) or not batch_levels:
            raise MalformedModelError("batchLevels must be non-empty and unique.")

        num_features = L.shape[0]
        expected = (len(batch_levels), num_features)

        if S.shape[0] != num_features:
            raise MalformedModelError(
                f"L has {num_features} features but S has {S.shape[0]}."
            )

        if np.any(S < 0):
            raise MalformedModelError("S must not contain negative variances.")

        if np.any(delta_star <= 0):
            raise MalformedModelError("deltaStar must be strictly positive.")

        for name, array in (("gammaStar", gamma_star), ("deltaStar", delta_star)):
            if array.shape != expected:
                raise MalformedModelError(
                    f"{name} has shape {array.shape}, expected {expected} (batches x features)."
                )

        return cls(
            L=L,
            S=S,
            gamma_star=gamma_star,
            delta_star=delta_star,
            batch_levels=batch_levels,
        )

    @classmethod
    def from_json(cls, model_json: str) -> ComBatModel:

        try:
            record = json.loads(model_json)
        except (TypeError, json.JSONDecodeError) as e:
            raise MalformedModelError(f"Serialized ComBat model is not valid JSON: {e}") from e

        return cls.from_dict(record)

    @classmethod
    def load(cls, model: Union[ComBatModel, Dict[str, Any], str]) -> ComBatModel:

        if isinstance(model, ComBatModel):
            return model

        if isinstance(model, dict):
            return cls.from_dict(model)

        return cls.from_json(model)


class CorrectionMethod:
    def __init__(self) -> None:
        pass

    def fit_transform(self, X: np.ndarray, batches: Sequence[str]) -> np.ndarray:
        pass


class ComBat(CorrectionMethod):
    """ComBat batch correction without covariates.

    The data is standardized per feature, batch location (gamma) and scale (delta)
    effects are estimated by least squares and shrunk with empirical Bayes priors
    fit across features, then removed.
    """

    mean_only: bool
    reference_batch: Optional[str]
    model: Optional[ComBatModel]
    n_iterations_: Dict[str, int]

    def __init__(
        self,
        mean_only: bool = False,
        reference_batch: Optional[str] = None,
        conv: float = 0.0001,
        max_iterations: int = 5000,
        model: Optional[ComBatModel] = None,
    ) -> None:

        self.mean_only = mean_only
        self.reference_batch = reference_batch
        self.conv = conv
        self.max_iterations = max_iterations
        self.model = model
        self.n_iterations_ = dict()

    def fit_transform(self, X: np.ndarray, batches: Sequence[str]) -> np.ndarray:
        """Fit the model and return the corrected data.

        Args:
            X (np.ndarray): Matrix with features as rows and samples as columns, no missing values.
            batches (Sequence[str]): Batch label per sample.

        Returns:
            np.ndarray: The corrected matrix, same shape as X.

        Raises:
            UnknownReferenceBatchError: If the reference batch is not one of the batches.
            InsufficientBatchSizeError: If a batch has a single sample and mean_only is False.
            DimensionMismatchError: If the number of labels does not match the number of samples.
            SingularMatrixError: If the batch design cannot be inverted.
            InsufficientFeaturesError: If there are fewer than 2 features to fit the priors on.
            ZeroVarianceFeatureError: If a feature is constant within every batch, the row indices are listed.
            DegeneratePriorError: If the priors of a batch are not finite.

        """
        X = np.asarray(X, dtype=np.float64)
        batches = np.array([str(batch) for batch in batches])

        num_features, num_samples = X.shape

        if batches.shape[0] != num_samples:
            raise DimensionMismatchError(
                f"Data matrix and batch variable don't match ({num_samples} samples, {batches.shape[0]} batch labels)."
            )

        levels = sorted(set(batches.tolist()))
        num_batches = len(levels)

        reference_batch = self.reference_batch

        if reference_batch is not None and reference_batch not in levels:
            raise UnknownReferenceBatchError(reference_batch, levels)

        if reference_batch is None and num_batches == 1:
            logger.warning(
                f"Only one batch ({levels[0]}) - it is used as the reference and left unchanged"
            )
            reference_batch = levels[0]

        reference_idx = levels.index(reference_batch) if reference_batch is not None else None

        batch_indices = [np.flatnonzero(batches == level) for level in levels]
        batch_sizes = np.array([len(indices) for indices in batch_indices])

        if not self.mean_only:
            single_sample_batches = [
                level for level, size in zip(levels, batch_sizes) if size == 1
            ]

            if single_sample_batches:
                raise InsufficientBatchSizeError(single_sample_batches)

        if num_features < 2:
            raise InsufficientFeaturesError(num_features)

        logger.info(
            f"Fitting ComBat ({'L' if self.mean_only else 'L/S'}) on {num_features} features x "
            f"{num_samples} samples in {num_batches} batches"
        )

        batch_model = np.zeros((num_samples, num_batches))

        for batch_idx, indices in enumerate(batch_indices):
            batch_model[indices, batch_idx] = 1.0

        if reference_idx is not None:
            batch_model[:, reference_idx] = 1.0

        # intercept-like columns are dropped, except the reference one
        keep_columns = [
            column
            for column in range(num_batches)
            if column == reference_idx or not np.all(batch_model[:, column] == 1.0)
        ]

        design = batch_model[:, keep_columns]
        design_index = {batch_idx: column for column, batch_idx in enumerate(keep_columns)}

        B_hat = _least_squares(design, X)

        if reference_idx is not None:
            grand_mean = B_hat[design_index[reference_idx]]
        else:
            grand_mean = np.zeros(num_features)

            for batch_idx in range(num_batches):
                if batch_idx in design_index:
                    grand_mean = grand_mean + (
                        batch_sizes[batch_idx] / num_samples
                    ) * B_hat[design_index[batch_idx]]

        residuals = X - transpose(multiply(design, B_hat))

        # population variance (divisor n), unlike delta_hat below
        if reference_idx is not None:
            var_pooled = np.mean(residuals[:, batch_indices[reference_idx]] ** 2, axis=1)
        else:
            var_pooled = np.mean(residuals**2, axis=1)

        stand_mean = grand_mean[:, None]

        sqrt_var_pooled = np.sqrt(var_pooled)
        zero_scale = np.flatnonzero(sqrt_var_pooled < SCALE_TOLERANCE)

        # constant within every batch, nothing left to standardize
        if zero_scale.shape[0] > 0:
            raise ZeroVarianceFeatureError(zero_scale.tolist())

        s_data = (X - stand_mean) / sqrt_var_pooled[:, None]

        batch_design = design[
            :, [design_index[batch_idx] for batch_idx in range(num_batches) if batch_idx in design_index]
        ]

        gamma_hat = _least_squares(batch_design, s_data)

        delta_hat = np.ones((num_batches, num_features))

        for batch_idx, indices in enumerate(batch_indices):
            if len(indices) > 1:
                delta_hat[batch_idx] = np.var(s_data[:, indices], axis=1, ddof=1)

        with np.errstate(divide="ignore", invalid="ignore"):
            gamma_bar = np.mean(gamma_hat, axis=1)
            t2 = np.var(gamma_hat, axis=1, ddof=1)
            a_prior = _a_prior(delta_hat)
            b_prior = _b_prior(delta_hat)

        for batch_idx, level in enumerate(levels):

            if batch_idx == reference_idx:
                continue

            priors = [t2[batch_idx]] if self.mean_only else [t2[batch_idx], a_prior[batch_idx], b_prior[batch_idx]]

            if not np.all(np.isfinite(priors)):
                raise DegeneratePriorError(level)

        gamma_star = np.zeros((num_batches, num_features))
        delta_star = np.ones((num_batches, num_features))

        self.n_iterations_ = dict()

        for batch_idx, level in enumerate(levels):

            if batch_idx == reference_idx:
                continue

            if self.mean_only:
                gamma_star[batch_idx] = _postmean(
                    gamma_hat[batch_idx], gamma_bar[batch_idx], 1.0, 1.0, t2[batch_idx]
                )
                delta_star[batch_idx] = 1.0

            else:
                gamma_star[batch_idx], delta_star[batch_idx] = self._iterative_solution(
                    s_data[:, batch_indices[batch_idx]],
                    gamma_hat[batch_idx],
                    delta_hat[batch_idx],
                    gamma_bar[batch_idx],
                    t2[batch_idx],
                    a_prior[batch_idx],
                    b_prior[batch_idx],
                    level,
                )

        bayes_data = s_data.copy()

        for batch_idx, indices in enumerate(batch_indices):
            bayes_data[:, indices] = (
                bayes_data[:, indices] - gamma_star[batch_idx][:, None]
            ) / np.sqrt(delta_star[batch_idx])[:, None]

        corrected = bayes_data * sqrt_var_pooled[:, None] + stand_mean

        if reference_idx is not None:
            reference_samples = batch_indices[reference_idx]
            corrected[:, reference_samples] = X[:, reference_samples]

        self.model = ComBatModel(
            L=grand_mean,
            S=var_pooled,
            gamma_star=gamma_star,
            delta_star=delta_star,
            batch_levels=levels,
        )

        return corrected

    def transform(self, X: np.ndarray, batches: Sequence[str]) -> np.ndarray:

        if self.model is None:
            raise EmptyModelError()

        return self.model.apply(X, batches)

    def _iterative_solution(
        self,
        s_data: np.ndarray,
        g_hat: np.ndarray,
        d_hat: np.ndarray,
        g_bar: float,
        t2: float,
        a: float,
        b: float,
        level: str,
    ) -> Tuple[np.ndarray, np.ndarray]:

        n = float(s_data.shape[1])

        g_old = g_hat.copy()
        d_old = d_hat.copy()

        change = 1.0
        count = 0

        while change > self.conv:

            g_new = _postmean(g_hat, g_bar, n, d_old, t2)

            sum2 = np.sum((s_data - g_new[:, None]) ** 2, axis=1)

            d_new = _postvar(sum2, n, a, b)

            change = max(_max_relative_change(g_new, g_old), _max_relative_change(d_new, d_old))

            g_old = g_new
            d_old = d_new
            count += 1

            if count >= self.max_iterations:
                logger.warning(
                    f"Empirical Bayes estimation for batch {level} did not converge after {count} iterations"
                )
                break

        self.n_iterations_[level] = count

        logger.debug(f"Batch {level}: empirical Bayes estimates after {count} iterations")

        return g_old, d_old


def _least_squares(design: np.ndarray, X: np.ndarray) -> np.ndarray:
    design_t = transpose(design)

    return multiply(invert(multiply(design_t, design)), multiply(design_t, transpose(X)))


def _a_prior(delta_hat: np.ndarray) -> np.ndarray:
    m = np.mean(delta_hat, axis=1)
    s2 = np.var(delta_hat, axis=1, ddof=1)

    return (2 * s2 + m**2) / s2


def _b_prior(delta_hat: np.ndarray) -> np.ndarray:
    m = np.mean(delta_hat, axis=1)
    s2 = np.var(delta_hat, axis=1, ddof=1)

    return (m * s2 + m**3) / s2


def _postmean(g_hat, g_bar, n, d_star, t2):

    return (t2 * n * g_hat + d_star * g_bar) / (t2 * n + d_star)


def _postvar(sum2, n, a, b):

    return (0.5 * sum2 + b) / (n / 2.0 + a - 1.0)


def _max_relative_change(new: np.ndarray, old: np.ndarray) -> float:
    mask = np.abs(old) > SCALE_TOLERANCE

    if not np.any(mask):
        return 0.0

    return float(np.max(np.abs(new[mask] - old[mask]) / np.abs(old[mask])))


def _to_array(values: Any, name: str, ndim: int) -> np.ndarray:

    try:
        array = np.array(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise MalformedModelError(f"{name} must be a numeric array: {e}") from e

    if not np.all(np.isfinite(array)):
        raise MalformedModelError(f"{name} must not contain NaN or infinite values.")

    if array.ndim != ndim:
        raise MalformedModelError(f"{name} must be a {ndim}-dimensional array.")

    return array
