"""**dense matrix algebra** used by the ComBat least squares fits and the PCA engine

>>> import numpy as np
>>> from dascombat.linalg import invert, multiply
>>> A = np.array([[4.0, 7.0], [2.0, 6.0]])
>>> bool(np.allclose(multiply(A, invert(A)), np.eye(2)))
True

"""
import numpy as np

from dascombat.exceptions import SingularMatrixError

PIVOT_TOLERANCE = 1e-20


def transpose(M: np.ndarray) -> np.ndarray:

    return np.array(M, dtype=np.float64).T.copy()


def multiply(A: np.ndarray, B: np.ndarray) -> np.ndarray:

    A = np.asarray(A, dtype=np.float64)
    B = np.asarray(B, dtype=np.float64)

    if A.ndim != 2 or B.ndim != 2 or A.shape[1] != B.shape[0]:
        raise ValueError(
            f"Cannot multiply matrices of shape {A.shape} and {B.shape}"
        )

    return A @ B


def invert(M: np.ndarray) -> np.ndarray:
    """Invert a square matrix with Gauss-Jordan elimination and partial pivoting.

    Args:
        M (np.ndarray): Square matrix.

    Returns:
        np.ndarray: The inverse of M.

    Raises:
        ValueError: If M is not square.
        SingularMatrixError: If a pivot smaller than 1e-20 is met during elimination.

    """
    M = np.asarray(M, dtype=np.float64)

    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise ValueError(f"Cannot invert a matrix of shape {M.shape}")

    n = M.shape[0]

    augmented = np.hstack([M, np.eye(n)])

    for i in range(n):

        max_row = i + int(np.argmax(np.abs(augmented[i:, i])))

        if max_row != i:
            augmented[[i, max_row]] = augmented[[max_row, i]]

        pivot = augmented[i, i]

        if abs(pivot) < PIVOT_TOLERANCE:
            raise SingularMatrixError()

        augmented[i] = augmented[i] / pivot

        for k in range(n):

            if k == i:
                continue

            augmented[k] = augmented[k] - augmented[k, i] * augmented[i]

    return augmented[:, n:].copy()
