from typing import Tuple, Union

import numpy as np
import pandas as pd


def parse_long_table(
    long_file: Union[str, pd.DataFrame],
    value_column: str = ".y",
    sample_column: str = ".ci",
    feature_column: str = ".ri",
    batch_column: str = "batch",
    name_column: str = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Pivot a long table of observations into a wide quantification table and a design matrix.

    Each row of the long table is one measurement of one feature in one sample.
    Features and samples are sorted by their identifiers, cells that were not
    observed are left as NaN.

    Args:
        long_file (Union[str, pd.DataFrame]): Path to a tab-separated long table or a DataFrame.
        value_column (str, optional): Column with the quantities. Defaults to ".y".
        sample_column (str, optional): Column identifying the sample. Defaults to ".ci".
        feature_column (str, optional): Column identifying the feature. Defaults to ".ri".
        batch_column (str, optional): Column with the batch label. Defaults to "batch".
        name_column (str, optional): Column with a display name per sample. Defaults to None.

    Returns:
        Tuple[pd.DataFrame, pd.DataFrame]: The wide quantification table (feature column followed by
        one column per sample) and the design matrix with "sample", "batch" and "name" columns.

    Examples:
        >>> long_table = pd.DataFrame(
        ...     {
        ...         ".y": [1.0, 2.0, 3.0, 4.0],
        ...         ".ci": [0, 1, 0, 1],
        ...         ".ri": [0, 0, 1, 1],
        ...         "batch": ["a", "b", "a", "b"],
        ...     }
        ... )
        >>> quantification, design = parse_long_table(long_table)
        >>> list(design["batch"])
        ['a', 'b']

    """
    if isinstance(long_file, str):

        long_table = pd.read_csv(long_file, sep="\t")

    else:

        long_table = long_file

    for column in (value_column, sample_column, feature_column, batch_column):

        if column not in long_table:

            raise ValueError(f"Column {column} not found in the long table.")

    wide_results = long_table.pivot_table(
        index=feature_column,
        columns=sample_column,
        values=value_column,
        aggfunc="last",
        dropna=False,
    )

    wide_results = wide_results.sort_index(axis=0).sort_index(axis=1)

    samples = list(wide_results.columns)

    wide_results.columns.name = None

    wide_results = wide_results.reset_index()

    wide_results[samples] = wide_results[samples].astype(np.float64)

    sample_batches = long_table.groupby(sample_column, sort=True)[batch_column].last()

    design_matrix = pd.DataFrame(
        {
            "sample": samples,
            "batch": [str(sample_batches[sample]) for sample in samples],
        }
    )

    if name_column is not None and name_column in long_table:

        sample_names = long_table.groupby(sample_column, sort=True)[name_column].first()

        design_matrix["name"] = [str(sample_names[sample]) for sample in samples]

    else:

        design_matrix["name"] = [f"Sample {sample}" for sample in samples]

    return wide_results, design_matrix
