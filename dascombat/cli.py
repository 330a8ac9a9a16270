"""Command-line interface for dascombat.

Fit a ComBat model and correct a quantitative matrix, or apply a saved model to new data:

    dascombat fit quantification.tsv design_matrix.tsv --model-type L/S -o corrected.tsv --model-output model.json
    dascombat apply quantification.tsv design_matrix.tsv --model model.json -o corrected.tsv
"""
import logging
from typing import Optional

import click

from dascombat import __version__
from dascombat.exceptions import CombatError
from dascombat.quant_matrix import QuantMatrix

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def input_options(function):
    options = [
        click.argument("quantification", type=click.Path(exists=True, dir_okay=False)),
        click.argument(
            "design_matrix", required=False, type=click.Path(exists=True, dir_okay=False)
        ),
        click.option(
            "--long",
            "long_format",
            is_flag=True,
            help="QUANTIFICATION is a long table with one observation per row.",
        ),
        click.option("--value-column", default=".y", show_default=True),
        click.option("--sample-column", default=".ci", show_default=True),
        click.option("--feature-column", default=None, help="Defaults to .ri for long tables and Peptide otherwise."),
        click.option("--batch-column", default="batch", show_default=True),
        click.option("--name-column", default=None),
        click.option(
            "-o", "--output", required=True, type=click.Path(dir_okay=False), help="Corrected values (tsv)."
        ),
        click.option("--plot", "plot_path", default=None, type=click.Path(dir_okay=False), help="PCA before/after figure."),
        click.option("-v", "--verbose", is_flag=True),
    ]

    for option in reversed(options):
        function = option(function)

    return function


def load_quant_matrix(
    quantification: str,
    design_matrix: Optional[str],
    long_format: bool,
    value_column: str,
    sample_column: str,
    feature_column: Optional[str],
    batch_column: str,
    name_column: Optional[str],
) -> QuantMatrix:

    if long_format:

        return QuantMatrix.from_long(
            quantification,
            value_column=value_column,
            sample_column=sample_column,
            feature_column=feature_column or ".ri",
            batch_column=batch_column,
            name_column=name_column,
        )

    if design_matrix is None:
        raise click.UsageError("DESIGN_MATRIX is required unless --long is given.")

    return QuantMatrix(quantification, design_matrix, feature_column=feature_column or "Peptide")


def run_correction(
    quant_matrix: QuantMatrix,
    long_format: bool,
    output: str,
    plot_path: Optional[str],
    **correct_kwargs,
) -> QuantMatrix:

    try:
        quant_matrix.correct(**correct_kwargs)
    except CombatError as e:
        raise click.ClickException(str(e)) from e

    if long_format:
        quant_matrix.correction_result.to_long_table().to_csv(output, sep="\t", index=False)
    else:
        quant_matrix.write(output)

    logger.info(f"Corrected values written to {output}")

    if plot_path:
        quant_matrix.plot(plot_type="pca", save=True, filepath=plot_path)
        logger.info(f"PCA plot written to {plot_path}")

    return quant_matrix


@click.group()
@click.version_option(__version__)
def main() -> None:
    """ComBat batch correction of quantitative proteomics matrices."""


@main.command()
@input_options
@click.option(
    "--model-type",
    type=click.Choice(["L/S", "L"]),
    default="L/S",
    show_default=True,
    help="L/S corrects location and scale, L only the location.",
)
@click.option("--reference-batch", default=None, help="Batch left unchanged, the others are adjusted to it.")
@click.option("--model-output", default=None, type=click.Path(dir_okay=False), help="Save the fitted model (json).")
def fit(
    quantification,
    design_matrix,
    long_format,
    value_column,
    sample_column,
    feature_column,
    batch_column,
    name_column,
    output,
    plot_path,
    verbose,
    model_type,
    reference_batch,
    model_output,
) -> None:
    """Fit a ComBat model and correct the data."""

    setup_logging(verbose)

    quant_matrix = load_quant_matrix(
        quantification,
        design_matrix,
        long_format,
        value_column,
        sample_column,
        feature_column,
        batch_column,
        name_column,
    )

    quant_matrix = run_correction(
        quant_matrix,
        long_format,
        output,
        plot_path,
        model_type=model_type,
        reference_batch=reference_batch,
        mode="fit",
    )

    if model_output:
        quant_matrix.write_model(model_output)
        logger.info(f"Model written to {model_output}")


@main.command()
@input_options
@click.option("--model", "model_path", required=True, type=click.Path(exists=True, dir_okay=False), help="Saved model (json).")
def apply(
    quantification,
    design_matrix,
    long_format,
    value_column,
    sample_column,
    feature_column,
    batch_column,
    name_column,
    output,
    plot_path,
    verbose,
    model_path,
) -> None:
    """Correct the data with a previously fitted ComBat model."""

    setup_logging(verbose)

    quant_matrix = load_quant_matrix(
        quantification,
        design_matrix,
        long_format,
        value_column,
        sample_column,
        feature_column,
        batch_column,
        name_column,
    )

    with open(model_path) as f:
        saved_model = f.read()

    run_correction(
        quant_matrix,
        long_format,
        output,
        plot_path,
        mode="apply",
        saved_model=saved_model,
    )


if __name__ == "__main__":
    main()
