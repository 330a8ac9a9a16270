"""quant_matrix module

instanciate a quant matrix and correct its batch effects:

>>> from dascombat.quant_matrix import QuantMatrix
>>> quant_matrix = QuantMatrix( quantification_file="tests/input_files/minimal_matrix.tsv", design_matrix_file="tests/input_files/minimal_design_matrix.tsv")
>>> result = quant_matrix.correct(model_type="L/S").correction_result

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import anndata as ad
import matplotlib
import numpy as np
import pandas as pd  # type: ignore

from dascombat.correction import ComBat, ComBatModel
from dascombat.exceptions import (
    InsufficientBatchSizeError,
    MissingModelError,
    MissingValuesError,
    ZeroVarianceFeatureError,
)
from dascombat.parsers import parse_long_table
from dascombat.pca import PcaResult, PowerIterationPCA
from dascombat.plot import PCAPlot

logger = logging.getLogger(__name__)

VARIANCE_TOLERANCE = 1e-20
MODEL_TYPES = {"L/S", "L"}
MODES = {"fit", "apply"}


@dataclass(frozen=True, eq=False)
class CorrectionResult:
    """Everything one correction produces.

    Attributes:
        before (PcaResult): PCA of the uncorrected data.
        after (PcaResult): PCA of the corrected data.
        batch_labels (List[str]): Distinct batch labels found in the data, sorted.
        corrected_matrix (np.ndarray): Corrected data, features x samples.
        sample_order (List[Any]): Sample identifiers matching the matrix columns.
        feature_order (List[Any]): Feature identifiers matching the matrix rows.
        model (ComBatModel): The model that was fit or applied.
        model_json (Optional[str]): Serialized model, only set when a model was fit.

    """

    before: PcaResult
    after: PcaResult
    batch_labels: List[str]
    corrected_matrix: np.ndarray
    sample_order: List[Any]
    feature_order: List[Any]
    model: ComBatModel
    model_json: Optional[str] = None

    def to_long_table(
        self,
        feature_column: str = ".ri",
        sample_column: str = ".ci",
        value_column: str = "CmbCor",
    ) -> pd.DataFrame:
        """Flatten the corrected matrix to one row per feature and sample, feature by feature.

        Examples:
            >>> result.to_long_table().head(2)

        """
        num_features, num_samples = self.corrected_matrix.shape

        return pd.DataFrame(
            {
                feature_column: np.repeat(np.array(self.feature_order, dtype=object), num_samples),
                sample_column: np.tile(np.array(self.sample_order, dtype=object), num_features),
                value_column: self.corrected_matrix.reshape(-1),
            }
        )


def check_missing_values(X: np.ndarray) -> None:

    if not np.all(np.isfinite(X)):
        raise MissingValuesError()


def check_zero_variance(X: np.ndarray, feature_ids: Sequence[Any]) -> None:

    if X.shape[1] < 2:
        return

    variances = np.var(X, axis=1, ddof=1)

    zero_variance_rows = np.flatnonzero(variances < VARIANCE_TOLERANCE)

    if zero_variance_rows.shape[0] > 0:
        raise ZeroVarianceFeatureError([feature_ids[row] for row in zero_variance_rows])


def compute_correction(
    matrix: Union[np.ndarray, pd.DataFrame],
    batch_labels: Sequence[str],
    model_type: str = "L/S",
    reference_batch: Optional[str] = None,
    mode: str = "fit",
    saved_model: Union[ComBatModel, Dict[str, Any], str, None] = None,
    sample_ids: Optional[Sequence[Any]] = None,
    feature_ids: Optional[Sequence[Any]] = None,
    sample_names: Optional[Dict[Any, str]] = None,
) -> CorrectionResult:
    """Validate the data, fit or apply ComBat and compute the PCA before and after correction.

    Args:
        matrix (Union[np.ndarray, pd.DataFrame]): Quantities with features as rows and samples as columns.
        batch_labels (Sequence[str]): Batch label per sample.
        model_type (str, optional): "L/S" (location and scale) or "L" (location only). Defaults to "L/S".
        reference_batch (Optional[str], optional): Batch left unchanged that the others are adjusted to. Defaults to None.
        mode (str, optional): "fit" a new model or "apply" a saved one. Defaults to "fit".
        saved_model (Union[ComBatModel, Dict[str, Any], str, None], optional): Model to apply, as a model, a record or JSON.
        sample_ids (Optional[Sequence[Any]], optional): Sample identifiers. Defaults to the DataFrame columns or 0..n-1.
        feature_ids (Optional[Sequence[Any]], optional): Feature identifiers. Defaults to the DataFrame index or 0..n-1.
        sample_names (Optional[Dict[Any, str]], optional): Display names by sample identifier.

    Returns:
        CorrectionResult: PCA before and after, corrected matrix, orderings and model.

    Raises:
        ValueError: If the model type or mode is not supported.
        CombatError: If the data or the model cannot be used for the correction.

    Examples:
        >>> result = compute_correction(X, ["a", "a", "a", "b", "b", "b"], model_type="L")
        >>> applied = compute_correction(X, ["a", "a", "a", "b", "b", "b"], mode="apply", saved_model=result.model_json)

    """
    if model_type not in MODEL_TYPES:
        raise ValueError(f"Unsupported model type: {model_type}")

    if mode not in MODES:
        raise ValueError(f"Unsupported correction mode: {mode}")

    if isinstance(matrix, pd.DataFrame):
        if sample_ids is None:
            sample_ids = list(matrix.columns)
        if feature_ids is None:
            feature_ids = list(matrix.index)

    X = np.array(matrix, dtype=np.float64)

    if X.ndim != 2:
        raise ValueError(f"Expected a features x samples matrix, got shape {X.shape}")

    num_features, num_samples = X.shape

    sample_ids = list(sample_ids) if sample_ids is not None else list(range(num_samples))
    feature_ids = list(feature_ids) if feature_ids is not None else list(range(num_features))
    batches = [str(batch) for batch in batch_labels]

    if reference_batch in ("", "None"):
        reference_batch = None

    logger.info(
        f"Computing correction (mode={mode}, model_type={model_type}) on "
        f"{num_features} features x {num_samples} samples"
    )

    check_missing_values(X)
    check_zero_variance(X, feature_ids)

    model_json = None

    if mode == "apply":

        if saved_model is None:
            raise MissingModelError()

        combat = ComBat(model=ComBatModel.load(saved_model))

        corrected_matrix = combat.transform(X, batches)

    else:

        mean_only = model_type == "L"

        if not mean_only:
            batch_counts = pd.Series(batches).value_counts()
            single_sample_batches = sorted(batch_counts[batch_counts == 1].index)

            if single_sample_batches:
                raise InsufficientBatchSizeError(single_sample_batches)

        combat = ComBat(mean_only=mean_only, reference_batch=reference_batch)

        try:
            corrected_matrix = combat.fit_transform(X, batches)
        except ZeroVarianceFeatureError as e:
            raise ZeroVarianceFeatureError([feature_ids[row] for row in e.features]) from e

        model_json = combat.model.to_json()

    pca = PowerIterationPCA()

    before = pca.fit_transform(X, sample_ids, batches, sample_names)
    after = pca.fit_transform(corrected_matrix, sample_ids, batches, sample_names)

    logger.info("Correction computed successfully")

    return CorrectionResult(
        before=before,
        after=after,
        batch_labels=sorted(set(batches)),
        corrected_matrix=corrected_matrix,
        sample_order=sample_ids,
        feature_order=feature_ids,
        model=combat.model,
        model_json=model_json,
    )


class QuantMatrix:
    """Class for working with quantitative matrices."""

    quantification_file_path: Union[str, pd.DataFrame]
    design_matrix_file: Union[str, pd.DataFrame]
    num_rows: int
    num_samples: int
    quantitative_data: ad.AnnData
    correction_result: Optional[CorrectionResult]

    def __init__(
        self,
        quantification_file: Union[str, pd.DataFrame],
        design_matrix_file: Union[str, pd.DataFrame],
        feature_column: str = "Peptide",
    ) -> None:
        """Initialize the QuantMatrix instance.

        Args:
            quantification_file (Union[str, pd.DataFrame]): Path to the quantification file or DataFrame, one column per sample.
            design_matrix_file (Union[str, pd.DataFrame]): Path to the design matrix file or DataFrame with "sample" and "batch" columns.
            feature_column (str, optional): Column identifying the features. Defaults to "Peptide", the row number is used when it is absent.

        Examples:
            >>> quant_matrix = QuantMatrix("quantification.tsv", "design_matrix.tsv")
        """

        self.correction_result = None
        self.feature_column = feature_column

        if isinstance(design_matrix_file, str):
            design_matrix_file = pd.read_csv(design_matrix_file, sep="\t")

            design_matrix_file.columns = map(str.lower, design_matrix_file.columns)

            if "sample" in design_matrix_file:
                design_matrix_file["sample"] = design_matrix_file["sample"].astype(str)

        if isinstance(quantification_file, str):
            quantification_file = pd.read_csv(quantification_file, sep="\t")

        for column in ("sample", "batch"):
            if column not in design_matrix_file:
                raise ValueError(f"The design matrix must have a {column} column.")

        design_matrix_file = design_matrix_file.copy()
        design_matrix_file["batch"] = design_matrix_file["batch"].astype(str)

        self.num_samples = len(design_matrix_file)
        self.num_rows = len(quantification_file)

        quantification_file = quantification_file.reset_index(drop=True)

        quantitative_data = (
            quantification_file[list(design_matrix_file["sample"])]
            .copy()
            .astype(np.float64)
            .set_index(np.arange(self.num_rows, dtype=int).astype(str))
        )

        row_obs = quantification_file.drop(
            list(design_matrix_file["sample"]), axis=1
        ).set_index(np.arange(self.num_rows, dtype=int).astype(str))

        self.quantitative_data = ad.AnnData(
            quantitative_data.to_numpy(),
            obs=row_obs,
            var=design_matrix_file.set_index(
                design_matrix_file["sample"].astype(str).to_numpy()
            ),
        )

    @classmethod
    def from_long(
        cls,
        long_file: Union[str, pd.DataFrame],
        value_column: str = ".y",
        sample_column: str = ".ci",
        feature_column: str = ".ri",
        batch_column: str = "batch",
        name_column: str = None,
    ) -> QuantMatrix:
        """Build a QuantMatrix from a long table with one observation per row.

        Examples:
            >>> quant_matrix = QuantMatrix.from_long("long_table.tsv", batch_column="run")
        """

        quantification, design_matrix = parse_long_table(
            long_file,
            value_column=value_column,
            sample_column=sample_column,
            feature_column=feature_column,
            batch_column=batch_column,
            name_column=name_column,
        )

        return cls(quantification, design_matrix, feature_column=feature_column)

    @property
    def samples(self) -> List[Any]:

        return list(self.sample_annotations["sample"])

    @property
    def features(self) -> List[Any]:

        if self.feature_column in self.row_annotations:
            return list(self.row_annotations[self.feature_column])

        return list(self.row_annotations.index)

    @property
    def sample_names(self) -> Dict[Any, str]:

        if "name" not in self.sample_annotations:
            return {}

        return dict(
            zip(self.sample_annotations["sample"], self.sample_annotations["name"].astype(str))
        )

    @property
    def batch_labels(self) -> List[str]:

        return sorted(set(self.get_batches()))

    @property
    def sample_annotations(self) -> pd.DataFrame:

        return self.quantitative_data.var

    @property
    def row_annotations(self) -> pd.DataFrame:

        return self.quantitative_data.obs

    def get_batches(self) -> List[str]:
        return [str(batch) for batch in self.sample_annotations["batch"]]

    def filter(
        self,
        remove_missing_rows: bool = True,
        remove_zero_variance_rows: bool = True,
    ) -> QuantMatrix:
        """Filter out the rows ComBat cannot correct.

        Args:
            remove_missing_rows (bool, optional): Whether to remove rows with missing values. Defaults to True.
            remove_zero_variance_rows (bool, optional): Whether to remove rows with zero variance. Defaults to True.

        Returns:
            QuantMatrix: Filtered QuantMatrix object.

        Examples:
            >>> quant_matrix.filter().correct(model_type="L/S")

        """

        filtered_data = self.quantitative_data

        if remove_missing_rows:
            finite_rows_mask = np.all(np.isfinite(filtered_data.X), axis=1)
            filtered_data = filtered_data[finite_rows_mask].copy()

        if remove_zero_variance_rows and filtered_data.n_vars > 1:
            variances = np.var(np.asarray(filtered_data.X, dtype=np.float64), axis=1, ddof=1)
            filtered_data = filtered_data[~(variances < VARIANCE_TOLERANCE)].copy()

        removed = self.num_rows - filtered_data.n_obs

        if removed:
            logger.info(f"Removed {removed} rows that cannot be batch corrected")

        self.num_rows = filtered_data.n_obs

        row_obs = filtered_data.obs.set_index(
            np.arange(self.num_rows, dtype=int).astype(str)
        )

        self.quantitative_data = ad.AnnData(
            np.asarray(filtered_data.X, dtype=np.float64), obs=row_obs, var=filtered_data.var
        )

        return self

    def correct(
        self,
        model_type: str = "L/S",
        reference_batch: Optional[str] = None,
        mode: str = "fit",
        saved_model: Union[ComBatModel, Dict[str, Any], str, None] = None,
    ) -> QuantMatrix:
        """Correct batch effects with ComBat.

        Args:
            model_type (str, optional): "L/S" (location and scale) or "L" (location only). Defaults to "L/S".
            reference_batch (Optional[str], optional): Batch left unchanged. Defaults to None.
            mode (str, optional): "fit" a new model or "apply" a saved one. Defaults to "fit".
            saved_model (optional): Model to apply, as a ComBatModel, a record or JSON.

        Returns:
            QuantMatrix: The QuantMatrix with corrected values, the full result is kept in correction_result.

        Examples:
            >>> quant_matrix.correct(model_type="L", reference_batch="a")

        """

        self.correction_result = compute_correction(
            np.asarray(self.quantitative_data.X, dtype=np.float64),
            self.get_batches(),
            model_type=model_type,
            reference_batch=reference_batch,
            mode=mode,
            saved_model=saved_model,
            sample_ids=self.samples,
            feature_ids=self.features,
            sample_names=self.sample_names,
        )

        self.quantitative_data.X = self.correction_result.corrected_matrix.copy()

        return self

    def pca(self) -> PcaResult:
        """Compute the PCA of the current values."""

        return PowerIterationPCA().fit_transform(
            np.asarray(self.quantitative_data.X, dtype=np.float64),
            self.samples,
            self.get_batches(),
            self.sample_names,
        )

    def plot(
        self,
        plot_type: str = "pca",
        save: bool = False,
        fig: matplotlib.figure.Figure = None,
        ax: Union[list, matplotlib.axes.Axes] = None,
        **kwargs: Union[str, int],
    ) -> Tuple[matplotlib.figure.Figure, Any]:
        """Plot the PCA before and after correction.

        Args:
            plot_type (str): The type of plot to generate. Only "pca" is supported.
            save (bool): Whether to save the plot. Defaults to False.
            fig (matplotlib.figure.Figure): The matplotlib figure object. Defaults to None.
            ax (Union[list, matplotlib.axes.Axes]): Two matplotlib axes objects. Defaults to None.
            **kwargs: "cmap", "filepath" and "dpi".

        Returns:
            tuple[matplotlib.figure.Figure, Any]: The matplotlib figure and axes objects.

        Raises:
            ValueError: If an unsupported plot type is provided or the data was not corrected yet.

        Examples:
            >>> fig, ax = quant_matrix.correct().plot(plot_type="pca", save=True, filepath="pca.png")
        """

        if plot_type != "pca":
            raise ValueError(f"Unsupported plot type: {plot_type}")

        if self.correction_result is None:
            raise ValueError("The data has not been corrected yet, call correct first.")

        fig, ax = PCAPlot(
            fig=fig,
            axs=ax,
            before=self.correction_result.before,
            after=self.correction_result.after,
            cmap=kwargs.get("cmap", "tab10"),
        ).plot()

        if save:
            filepath = str(kwargs.get("filepath", f"{plot_type}.png"))
            dpi = int(kwargs.get("dpi", 300))
            fig.savefig(filepath, dpi=dpi)

        return fig, ax

    def write(self, file_path: str) -> None:
        """Write the QuantMatrix to a tab-separated file.

        Examples:
            >>> quant_matrix.write("corrected.tsv")
        """

        self.to_df().to_csv(file_path, sep="\t", index=False)

    def write_model(self, file_path: str) -> None:
        """Write the fitted ComBat model as JSON.

        Examples:
            >>> quant_matrix.correct().write_model("model.json")
        """

        if self.correction_result is None:
            raise ValueError("The data has not been corrected yet, call correct first.")

        with open(file_path, "w") as f:
            f.write(self.correction_result.model.to_json())

    def to_df(self) -> pd.DataFrame:
        """Convert the QuantMatrix object to a pandas DataFrame.

        Examples:
            >>> quant_matrix.to_df()

        """

        quant_data = pd.DataFrame(
            np.asarray(self.quantitative_data.X, dtype=np.float64),
            index=self.row_annotations.index,
            columns=self.samples,
        )

        merged = pd.concat([self.row_annotations, quant_data], axis=1)

        return merged
