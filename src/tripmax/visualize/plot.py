# tripmax/visualize/plot.py
"""
Plotting routines for TripMax
"""

import matplotlib.pyplot as plt

from tripmax.analyze.histogram import SpeedHistogram, distribution_minutes


def plot_speed_distribution(hist: SpeedHistogram, *, title: str = "Speed distribution", show: bool = True):
    rows = distribution_minutes(hist)
    labels = [r["label"] for r in rows]
    minutes = [r["minutes"] for r in rows]

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.bar(labels, minutes, color="tab:blue")
    ax.set_xlabel("Speed (km/h)")
    ax.set_ylabel("Time (minutes)")
    ax.set_title(title)
    if show:
        plt.show()
    return fig
