import seaborn as sns  # type: ignore # noqa: F401
from typing import List, Tuple, Union

import numpy as np
import matplotlib

import matplotlib.pyplot as plt

from dascombat.pca import PcaResult


class Plot:
    """the base class"""

    def __init__(self) -> None:
        """init"""

        pass

    def plot(self) -> None:
        """create the plot"""
        pass


class PCAPlot(Plot):
    def __init__(
        self,
        fig: matplotlib.figure.Figure,
        axs: Union[List[matplotlib.axes.Axes], np.ndarray],
        before: PcaResult,
        after: PcaResult,
        cmap: Union[list, str] = "tab10",
    ):
        """Side by side PCA score plots before and after batch correction.

        Args:
            fig (matplotlib.figure.Figure): figure to draw on, a new one is created when None
            axs (Union[List[matplotlib.axes.Axes], np.ndarray]): two axes, before and after
            before (PcaResult): PCA of the uncorrected data
            after (PcaResult): PCA of the corrected data
            cmap (Union[list, str]): colors for the batches

        """
        self.before = before
        self.after = after
        self.cmap = cmap
        self.fig = fig
        if isinstance(axs, list):
            axs = np.array(axs)
        self.axs = axs
        if not fig:
            self.fig, self.axs = plt.subplots(1, 2, figsize=(10, 5))

    def plot(self) -> Tuple[matplotlib.figure.Figure, np.ndarray]:
        batches = sorted(
            {point.batch for point in self.before.points}
            | {point.batch for point in self.after.points}
        )

        if isinstance(self.cmap, list):
            palette = dict(zip(batches, self.cmap))
        else:
            palette = dict(zip(batches, sns.color_palette(self.cmap, len(batches))))

        for ax, result, title in zip(
            self.axs.ravel(),
            [self.before, self.after],
            ["Before correction", "After correction"],
        ):
            scores = result.to_df()

            sns.scatterplot(
                data=scores,
                x="PC1",
                y="PC2",
                hue="batch",
                hue_order=batches,
                palette=palette,
                ax=ax,
            )

            ax.set_title(title)
            ax.set_xlabel(f"PC1 ({result.variance_explained_pc1:.1f}%)")
            ax.set_ylabel(f"PC2 ({result.variance_explained_pc2:.1f}%)")

        sns.despine(fig=self.fig)

        return self.fig, self.axs
