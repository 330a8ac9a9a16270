"""ComBat batch correction for quantitative proteomics matrices, with PCA before and after correction."""

__version__ = "0.1.0"
