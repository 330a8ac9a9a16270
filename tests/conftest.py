#!/usr/bin/env python

import matplotlib

matplotlib.use("Agg")

import numpy as np  # noqa: E402
import pytest  # noqa: E402
from pathlib import Path  # noqa: E402
from dascombat.quant_matrix import QuantMatrix  # noqa: E402
from dascombat.plot import Plot  # noqa: E402

base_dir = Path(__file__).resolve().parent.parent

MARKERS = [
    "linalg",
    "pca",
    "correction",
    "quant_matrix",
    "parsers",
    "plot",
    "cli",
    "docs",
]


def pytest_configure(config):
    for marker in MARKERS:
        config.addinivalue_line("markers", f"{marker}: tests for the {marker} module")


@pytest.fixture(scope="session")
def paths(tmpdir_factory):
    """create a dictionary with paths to input data files"""

    paths = {}
    paths["test_base_path"] = Path(tmpdir_factory.mktemp("dascombat"))
    paths["design_matrix_path"] = base_dir / Path("tests/input_files/design_matrix.tsv")
    paths["baseline_matrix_path"] = base_dir / Path(
        "tests/input_files/baseline_matrix.tsv"
    )
    paths["minimal_design_matrix_path"] = base_dir / Path(
        "tests/input_files/minimal_design_matrix.tsv"
    )
    paths["minimal_matrix_path"] = base_dir / Path("tests/input_files/minimal_matrix.tsv")
    paths["long_table_path"] = base_dir / Path("tests/input_files/long_table.tsv")

    yield paths


@pytest.fixture()
def quant_matrix(paths):
    """instanciate a quant_matrix, corrections modify it so every test gets its own"""
    assert paths["baseline_matrix_path"].is_file()
    assert paths["design_matrix_path"].is_file()
    quant_matrix = QuantMatrix(
        str(paths["baseline_matrix_path"]),
        str(paths["design_matrix_path"]),
    )
    yield quant_matrix


@pytest.fixture()
def minimal_quant_matrix(paths):
    """instanciate the two batch quant_matrix"""
    quant_matrix = QuantMatrix(
        str(paths["minimal_matrix_path"]),
        str(paths["minimal_design_matrix_path"]),
    )
    yield quant_matrix


@pytest.fixture()
def batch_matrix():
    """four features measured in two batches of three samples, batch b shifted up by about 3"""

    X = np.array(
        [
            [10.0, 10.4, 9.7, 13.1, 12.8, 13.5],
            [20.2, 19.8, 20.5, 23.0, 23.4, 22.7],
            [15.1, 14.6, 15.3, 18.2, 17.9, 18.6],
            [8.3, 8.9, 8.6, 11.4, 11.0, 11.8],
        ]
    )
    batches = ["A", "A", "A", "B", "B", "B"]

    yield X, batches


@pytest.fixture(scope="session")
def plot_object():
    """create a plot object"""
    yield Plot()
