import numpy as np
import matplotlib.pyplot as plt

from songmatch.logging_config import setup_logger
from songmatch.matcher import calculate_time_offsets, confidence_label

logger = setup_logger(__name__)


def _finish(fig, save_path):
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        logger.info(f"✓ Visualization saved to: {save_path}")
        plt.close(fig)
    else:
        plt.show()


def visualize_constellation_map(spec, freqs, times, peaks, save_path=None):
    """
    Visualize the constellation map (peaks on spectrogram).
    This should look like a "star field".

    Args:
        spec: Magnitude spectrogram (freq bins × time bins)
        freqs: Frequency bins
        times: Time bins
        peaks: List of Peak
        save_path: Optional path to save figure (shown interactively otherwise)
    """
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(14, 8))

    spec_db = 20 * np.log10(spec + 1e-10)

    # Plot 1: Full Spectrogram
    if spec.size:
        im = ax1.pcolormesh(times, freqs, spec_db, shading="auto", cmap="viridis")
        fig.colorbar(im, ax=ax1, label="Magnitude (dB)")
    ax1.set_ylabel("Frequency (Hz)")
    ax1.set_xlabel("Time (s)")
    ax1.set_title("Spectrogram (Log Scale)")

    # Plot 2: Constellation Map (peaks only)
    if spec.size:
        ax2.pcolormesh(times, freqs, spec_db, shading="auto", cmap="gray", alpha=0.3)
    if peaks:
        ax2.scatter(
            [times[p.time_offset] for p in peaks],
            [freqs[p.frequency_bin] for p in peaks],
            c="red",
            s=5,
            alpha=0.8,
            label=f"{len(peaks)} peaks",
        )
        ax2.legend()
    ax2.set_ylabel("Frequency (Hz)")
    ax2.set_xlabel("Time (s)")
    ax2.set_title('Constellation Map ("Star Field")')

    _finish(fig, save_path)
    return fig


def visualize_match(time_pairs, offset, score, title="", save_path=None):
    """
    Visualize the match using scatterplot and histogram.

    Creates two plots:
    1. Scatterplot: db_time vs sample_time (should show diagonal line)
    2. Histogram: distribution of time offsets (should show clear peak)

    Args:
        time_pairs: List of (sample_time, db_time) pairs, in frames
        offset: Best-aligned offset in frames
        score: Number of hashes at that offset
        title: Song title for the plot header
        save_path: Optional path to save figure
    """
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 5))

    sample_times = [s_time for s_time, _ in time_pairs]
    db_times = [db_time for _, db_time in time_pairs]

    ax1.scatter(sample_times, db_times, alpha=0.6, s=30, c="steelblue")

    if offset is not None and sample_times:
        x_range = [0, max(sample_times)]
        ax1.plot(
            x_range,
            [offset, offset + x_range[1]],
            "r--",
            linewidth=2,
            label=f"Match line (offset={offset} frames)",
            alpha=0.7,
        )
        ax1.legend()

    ax1.set_xlabel("Sample Time (frames)", fontsize=11)
    ax1.set_ylabel("Database Time (frames)", fontsize=11)
    ax1.set_title(f"Time Alignment Scatterplot\nSong: {title[:40]}", fontsize=12)
    ax1.grid(True, alpha=0.3)

    offsets = calculate_time_offsets(time_pairs)
    if offsets:
        ax2.hist(offsets, bins=30, color="steelblue", alpha=0.7, edgecolor="black")
    if offset is not None:
        ax2.axvline(
            offset, color="red", linestyle="--", linewidth=2, label=f"Peak at {offset}"
        )
        ax2.legend()

    ax2.set_xlabel("Time Offset (db_time - sample_time) [frames]", fontsize=11)
    ax2.set_ylabel("Number of Matches", fontsize=11)
    ax2.set_title(
        f"Offset Histogram\nScore: {score}, Confidence: {confidence_label(score)}",
        fontsize=12,
    )
    ax2.grid(True, alpha=0.3, axis="y")

    _finish(fig, save_path)
    return fig
