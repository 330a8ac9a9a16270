#!/usr/bin/env python3
"""Tests for the quant_matrix module"""

import numpy as np
import pandas
import pytest

from dascombat.correction import ComBatModel
from dascombat.exceptions import (
    InsufficientBatchSizeError,
    InsufficientFeaturesError,
    MalformedModelError,
    MissingModelError,
    MissingValuesError,
    UnknownReferenceBatchError,
    ZeroVarianceFeatureError,
)
from dascombat.quant_matrix import CorrectionResult, QuantMatrix, compute_correction


@pytest.mark.quant_matrix()
def test_quant_matrix_as_dataframe(quant_matrix):
    """test quant matrix as dataframe"""

    assert type(quant_matrix) == QuantMatrix

    quant_matrix_df = quant_matrix.to_df()

    assert type(quant_matrix_df) == pandas.core.frame.DataFrame
    assert list(quant_matrix_df.columns) == ["Peptide"] + [f"S{i}" for i in range(1, 10)]
    assert quant_matrix_df.shape == (8, 10)


@pytest.mark.quant_matrix()
def test_quant_matrix_annotations(quant_matrix):

    assert quant_matrix.num_rows == 8
    assert quant_matrix.num_samples == 9
    assert quant_matrix.samples == [f"S{i}" for i in range(1, 10)]
    assert quant_matrix.features[0] == "ANXA1_209_221"
    assert quant_matrix.get_batches() == ["a"] * 3 + ["b"] * 3 + ["c"] * 3
    assert quant_matrix.batch_labels == ["a", "b", "c"]
    assert quant_matrix.sample_names["S1"] == "Control (B101)"


@pytest.mark.quant_matrix()
def test_quant_matrix_correct(quant_matrix):
    """the batch means move together after correction"""

    X = quant_matrix.to_df()[quant_matrix.samples].to_numpy()

    quant_matrix.correct(model_type="L/S")

    result = quant_matrix.correction_result

    assert isinstance(result, CorrectionResult)
    assert result.batch_labels == ["a", "b", "c"]
    assert result.sample_order == quant_matrix.samples
    assert result.feature_order == quant_matrix.features
    assert result.model_json is not None

    corrected = quant_matrix.to_df()[quant_matrix.samples].to_numpy()

    assert np.array_equal(corrected, result.corrected_matrix)

    def spread(values):
        batch_means = np.stack(
            [values[:, 0:3].mean(axis=1), values[:, 3:6].mean(axis=1), values[:, 6:9].mean(axis=1)]
        )
        return batch_means.max(axis=0) - batch_means.min(axis=0)

    assert np.all(spread(corrected) < 0.5 * spread(X))
    assert result.before.variance_explained_pc1 > result.after.variance_explained_pc1


@pytest.mark.quant_matrix()
def test_quant_matrix_correct_reference_batch(quant_matrix):

    X = quant_matrix.to_df()[quant_matrix.samples].to_numpy()

    quant_matrix.correct(model_type="L", reference_batch="b")

    corrected = quant_matrix.correction_result.corrected_matrix

    assert np.array_equal(corrected[:, 3:6], X[:, 3:6])
    assert np.all(quant_matrix.correction_result.model.delta_star == 1.0)


@pytest.mark.quant_matrix()
def test_quant_matrix_apply_saved_model(quant_matrix, paths):
    """a saved model corrects new samples the way the fit corrected the training samples"""

    quant_matrix.correct()

    model_path = paths["test_base_path"] / "quant_matrix_model.json"

    quant_matrix.write_model(str(model_path))

    fitted = quant_matrix.correction_result.corrected_matrix

    new_samples = QuantMatrix(
        pandas.read_csv(paths["baseline_matrix_path"], sep="\t")[["Peptide", "S2", "S8"]],
        pandas.DataFrame({"sample": ["S2", "S8"], "batch": ["a", "c"]}),
    )

    new_samples.correct(mode="apply", saved_model=model_path.read_text())

    assert np.allclose(new_samples.correction_result.corrected_matrix, fitted[:, [1, 7]])
    assert new_samples.correction_result.model_json is None


@pytest.mark.quant_matrix()
def test_quant_matrix_write(quant_matrix, paths):

    output_path = paths["test_base_path"] / "corrected.tsv"

    quant_matrix.correct().write(str(output_path))

    written = pandas.read_csv(output_path, sep="\t")

    assert list(written.columns) == ["Peptide"] + quant_matrix.samples
    assert np.allclose(
        written[quant_matrix.samples].to_numpy(),
        quant_matrix.correction_result.corrected_matrix,
    )


@pytest.mark.quant_matrix()
def test_quant_matrix_write_model_before_correct(quant_matrix, paths):

    with pytest.raises(ValueError):
        quant_matrix.write_model(str(paths["test_base_path"] / "model.json"))


@pytest.mark.quant_matrix()
def test_quant_matrix_filter():
    """rows with missing values or no variance are removed"""

    quantification = pandas.DataFrame(
        {
            "Peptide": ["P1", "P2", "P3", "P4"],
            "S1": [1.0, np.nan, 3.0, 4.0],
            "S2": [1.5, 2.0, 3.0, 4.4],
            "S3": [2.0, 2.5, 3.0, 5.1],
            "S4": [2.5, 3.0, 3.0, 5.0],
        }
    )
    design_matrix = pandas.DataFrame(
        {"sample": ["S1", "S2", "S3", "S4"], "batch": ["a", "a", "b", "b"]}
    )

    quant_matrix = QuantMatrix(quantification, design_matrix)

    with pytest.raises(MissingValuesError):
        quant_matrix.correct()

    quant_matrix.filter()

    assert quant_matrix.num_rows == 2
    assert quant_matrix.features == ["P1", "P4"]

    quant_matrix.correct(model_type="L")

    assert quant_matrix.correction_result.corrected_matrix.shape == (2, 4)


@pytest.mark.quant_matrix()
def test_quant_matrix_design_needs_batch():

    with pytest.raises(ValueError):
        QuantMatrix(
            pandas.DataFrame({"Peptide": ["P1"], "S1": [1.0]}),
            pandas.DataFrame({"sample": ["S1"]}),
        )


@pytest.mark.quant_matrix()
def test_quant_matrix_from_long(paths):

    quant_matrix = QuantMatrix.from_long(
        str(paths["long_table_path"]), batch_column="run", name_column="barcode"
    )

    assert quant_matrix.samples == [0, 1, 2, 3]
    assert quant_matrix.features == [0, 1, 2]
    assert quant_matrix.get_batches() == ["a", "a", "b", "b"]
    assert quant_matrix.sample_names[2] == "B003"

    result = quant_matrix.correct(model_type="L/S").correction_result

    long_table = result.to_long_table()

    assert list(long_table.columns) == [".ri", ".ci", "CmbCor"]
    assert len(long_table) == 12
    assert list(long_table[".ri"][:4]) == [0, 0, 0, 0]
    assert list(long_table[".ci"][:4]) == [0, 1, 2, 3]
    assert np.allclose(long_table["CmbCor"].to_numpy(), result.corrected_matrix.reshape(-1))


@pytest.mark.quant_matrix()
def test_to_long_table(minimal_quant_matrix):

    result = minimal_quant_matrix.correct().correction_result

    long_table = result.to_long_table(feature_column="Peptide", sample_column="sample", value_column="value")

    assert list(long_table.columns) == ["Peptide", "sample", "value"]
    assert len(long_table) == 24
    assert list(long_table["Peptide"][:6]) == ["ANXA1_209_221"] * 6
    assert list(long_table["sample"][:6]) == [f"SAMPLE_{i}" for i in range(1, 7)]
    assert long_table["value"][7] == result.corrected_matrix[1, 1]


@pytest.mark.quant_matrix()
def test_compute_correction_fit_then_apply(batch_matrix):

    X, batches = batch_matrix

    result = compute_correction(X, batches)

    assert result.sample_order == list(range(6))
    assert result.feature_order == list(range(4))
    assert result.batch_labels == ["A", "B"]
    assert len(result.before.points) == 6
    assert len(result.after.points) == 6

    applied = compute_correction(X[:, [1]], ["A"], mode="apply", saved_model=result.model_json)

    assert np.allclose(applied.corrected_matrix, result.corrected_matrix[:, [1]])


@pytest.mark.quant_matrix()
def test_compute_correction_accepts_model_objects(batch_matrix):

    X, batches = batch_matrix

    result = compute_correction(X, batches, model_type="L")

    from_model = compute_correction(X, batches, mode="apply", saved_model=result.model)
    from_record = compute_correction(X, batches, mode="apply", saved_model=result.model.to_dict())

    assert np.allclose(from_model.corrected_matrix, result.corrected_matrix)
    assert np.array_equal(from_model.corrected_matrix, from_record.corrected_matrix)


@pytest.mark.quant_matrix()
def test_compute_correction_dataframe_ids(batch_matrix):

    X, batches = batch_matrix

    matrix = pandas.DataFrame(
        X, index=["f0", "f1", "f2", "f3"], columns=["s0", "s1", "s2", "s3", "s4", "s5"]
    )

    result = compute_correction(matrix, batches, sample_names={"s0": "Control"})

    assert result.feature_order == ["f0", "f1", "f2", "f3"]
    assert result.sample_order == ["s0", "s1", "s2", "s3", "s4", "s5"]
    assert result.before.points[0].sample_name == "Control"
    assert result.before.points[1].sample_name == "Sample s1"


@pytest.mark.quant_matrix()
@pytest.mark.parametrize("reference_batch", ["", "None"])
def test_compute_correction_empty_reference(batch_matrix, reference_batch):

    X, batches = batch_matrix

    result = compute_correction(X, batches, reference_batch=reference_batch)

    assert not np.array_equal(result.corrected_matrix[:, :3], X[:, :3])


@pytest.mark.quant_matrix()
def test_compute_correction_unknown_reference(batch_matrix):

    X, batches = batch_matrix

    with pytest.raises(UnknownReferenceBatchError):
        compute_correction(X, batches, reference_batch="C")


@pytest.mark.quant_matrix()
def test_compute_correction_missing_before_zero_variance(batch_matrix):
    """missing values are reported first"""

    X, batches = batch_matrix

    X = X.copy()
    X[0, 2] = np.nan
    X[1] = 5.0

    with pytest.raises(MissingValuesError):
        compute_correction(X, batches)


@pytest.mark.quant_matrix()
def test_compute_correction_zero_variance(batch_matrix):

    X, batches = batch_matrix

    X = X.copy()
    X[1] = 5.0
    X[3] = 2.0

    with pytest.raises(ZeroVarianceFeatureError) as error:
        compute_correction(X, batches, feature_ids=["f0", "f1", "f2", "f3"])

    assert error.value.features == ["f1", "f3"]
    assert "f1, f3" in str(error.value)


@pytest.mark.quant_matrix()
def test_compute_correction_single_sample_batch(batch_matrix):

    X, _ = batch_matrix

    with pytest.raises(InsufficientBatchSizeError):
        compute_correction(X, ["A", "B", "B", "B", "B", "B"], model_type="L/S")

    result = compute_correction(X, ["A", "B", "B", "B", "B", "B"], model_type="L")

    assert np.all(np.isfinite(result.corrected_matrix))


@pytest.mark.quant_matrix()
def test_compute_correction_apply_without_model(batch_matrix):

    X, batches = batch_matrix

    with pytest.raises(MissingModelError):
        compute_correction(X, batches, mode="apply")


@pytest.mark.quant_matrix()
def test_compute_correction_apply_malformed_model(batch_matrix):

    X, batches = batch_matrix

    with pytest.raises(MalformedModelError):
        compute_correction(X, batches, mode="apply", saved_model="{}")


@pytest.mark.quant_matrix()
@pytest.mark.parametrize("option", [{"mode": "refit"}, {"model_type": "S"}])
def test_compute_correction_unsupported_options(batch_matrix, option):

    X, batches = batch_matrix

    with pytest.raises(ValueError):
        compute_correction(X, batches, **option)


@pytest.mark.quant_matrix()
def test_compute_correction_model_json(batch_matrix):

    X, batches = batch_matrix

    result = compute_correction(X, batches)

    model = ComBatModel.from_json(result.model_json)

    assert np.array_equal(model.gamma_star, result.model.gamma_star)


@pytest.mark.quant_matrix()
def test_quant_matrix_pca(quant_matrix):
    """the PCA of the current values is the after-correction PCA once corrected"""

    before = quant_matrix.pca()

    assert len(before.points) == 9
    assert before.points[0].sample_name == "Control (B101)"

    quant_matrix.correct()

    assert quant_matrix.pca() == quant_matrix.correction_result.after
    assert before == quant_matrix.correction_result.before


@pytest.mark.quant_matrix()
def test_compute_correction_constant_within_batches(batch_matrix):
    """the offending feature is reported by its identifier"""

    X, batches = batch_matrix

    X = X.copy()
    X[2] = [1.0, 1.0, 1.0, 2.0, 2.0, 2.0]

    with pytest.raises(ZeroVarianceFeatureError) as error:
        compute_correction(X, batches, model_type="L", feature_ids=["f0", "f1", "f2", "f3"])

    assert error.value.features == ["f2"]


@pytest.mark.quant_matrix()
@pytest.mark.parametrize("model_type", ["L/S", "L"])
def test_compute_correction_single_feature(batch_matrix, model_type):

    X, batches = batch_matrix

    with pytest.raises(InsufficientFeaturesError):
        compute_correction(X[:1], batches, model_type=model_type)
