"""**errors raised by the batch correction**, each one aborts the current correction attempt"""
from typing import List, Any


class CombatError(ValueError):
    """the base class"""

    pass


class MissingValuesError(CombatError):
    def __init__(self) -> None:
        super().__init__(
            "Missing values are not allowed. Remove or impute them before running ComBat."
        )


class ZeroVarianceFeatureError(CombatError):
    features: List[Any]

    def __init__(self, features: List[Any]) -> None:
        self.features = list(features)

        super().__init__(
            "Variables with 0 standard deviation found "
            f"(rows: {', '.join(str(feature) for feature in self.features)}). "
            "Remove them before running ComBat."
        )


class InsufficientBatchSizeError(CombatError):
    def __init__(self, batches: List[str]) -> None:
        self.batches = list(batches)

        super().__init__(
            f"At least one batch has only 1 observation ({', '.join(self.batches)}). "
            "Consider using the L (location only) model."
        )


class UnknownReferenceBatchError(CombatError):
    def __init__(self, reference_batch: str, levels: List[str]) -> None:
        self.reference_batch = reference_batch
        self.levels = list(levels)

        super().__init__(
            f'Reference batch "{reference_batch}" is not one of the batch levels: {self.levels}'
        )


class EmptyModelError(CombatError):
    def __init__(self) -> None:
        super().__init__("Empty combat model, use fit before apply.")


class UnknownBatchLevelError(CombatError):
    def __init__(self, batch: str, levels: List[str]) -> None:
        self.batch = batch
        self.levels = list(levels)

        super().__init__(
            f'Batch "{batch}" not found in model batch levels: {self.levels}'
        )


class DimensionMismatchError(CombatError):
    pass


class SingularMatrixError(CombatError):
    def __init__(self) -> None:
        super().__init__(
            "Matrix is singular, cannot invert. Check the batch design for collinearity."
        )


class MissingModelError(CombatError):
    def __init__(self) -> None:
        super().__init__(
            "No saved model found. Fit a model first or supply a saved model to apply."
        )


class MalformedModelError(CombatError):
    pass


class InsufficientFeaturesError(CombatError):
    def __init__(self, num_features: int) -> None:
        self.num_features = num_features

        super().__init__(
            f"At least 2 features are needed to estimate the batch priors, got {num_features}."
        )


class DegeneratePriorError(CombatError):
    def __init__(self, batch: str) -> None:
        self.batch = batch

        super().__init__(
            f'Batch "{batch}" priors cannot be estimated, its batch effects do not vary across features.'
        )
