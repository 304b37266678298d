import numpy as np
from scipy import signal
from scipy.ndimage import maximum_filter, maximum_filter1d

from songmatch.config import AudioConfig as Config
from songmatch.errors import UnsupportedAudioError
from songmatch.logging_config import setup_logger
from songmatch.models import Peak

logger = setup_logger(__name__)

# Integer PCM formats and the divisor that maps them onto [-1, 1]
_INT_SCALES = {
    np.dtype(np.int8): 128.0,
    np.dtype(np.int16): 32768.0,
    np.dtype(np.int32): 2147483648.0,
}


def load_audio(filepath):
    """
    Load audio file and convert to mono at target sample rate.

    Args:
        filepath: Path to audio file (wav, mp3, etc.)

    Returns:
        audio: numpy array of audio samples
        sr: sample rate
    """
    import librosa

    try:
        audio, sr = librosa.load(filepath, sr=Config.SAMPLE_RATE, mono=True)
    except Exception as e:
        # librosa surfaces decoder-specific exception types
        raise UnsupportedAudioError(f"Cannot decode {filepath}: {e}") from e

    logger.info(f"✓ Loaded with librosa: {filepath}")
    logger.info(f"  Duration: {len(audio) / sr:.2f} seconds")
    logger.info(f"  Sample rate: {sr} Hz")

    return audio, sr


def prepare_samples(samples, channels=1):
    """
    Validate raw PCM and convert it to mono float32 in [-1, 1].

    Stereo (or any multi-channel) input is downmixed by averaging the
    channels, so a mono and a stereo copy of the same recording produce
    the same peaks.

    Args:
        samples: 1-D interleaved samples or 2-D (frames, channels) array
        channels: Number of interleaved channels

    Returns:
        audio: 1-D float32 array
    """
    try:
        audio = np.asarray(samples)
    except (TypeError, ValueError) as e:
        raise UnsupportedAudioError(f"Samples are not an array: {e}")

    if not isinstance(channels, (int, np.integer)) or channels < 1:
        raise UnsupportedAudioError(f"Invalid channel count: {channels!r}")

    dtype = audio.dtype
    if dtype.kind == "u" and dtype.itemsize == 1:
        audio = (audio.astype(np.float32) - 128.0) / 128.0
    elif dtype.kind == "i":
        if dtype not in _INT_SCALES:
            raise UnsupportedAudioError(f"Unsupported sample format: {dtype}")
        audio = audio.astype(np.float32) / _INT_SCALES[dtype]
    elif dtype.kind == "f":
        audio = audio.astype(np.float32)
    else:
        raise UnsupportedAudioError(f"Unsupported sample format: {dtype}")

    if audio.ndim == 1:
        if channels > 1:
            if len(audio) % channels:
                raise UnsupportedAudioError(
                    f"{len(audio)} interleaved samples do not split into "
                    f"{channels} channels"
                )
            audio = audio.reshape(-1, channels)
    elif audio.ndim == 2:
        if audio.shape[1] != channels:
            raise UnsupportedAudioError(
                f"Sample array has {audio.shape[1]} channels, expected {channels}"
            )
    else:
        raise UnsupportedAudioError(f"Unsupported sample shape: {audio.shape}")

    if audio.ndim == 2:
        audio = audio.mean(axis=1, dtype=np.float32)

    if not np.all(np.isfinite(audio)):
        raise UnsupportedAudioError("Samples contain NaN or infinite values")

    return audio


def resample_if_needed(audio, sample_rate):
    if not sample_rate or sample_rate <= 0:
        raise UnsupportedAudioError(f"Invalid sample rate: {sample_rate!r}")
    if sample_rate == Config.SAMPLE_RATE or len(audio) == 0:
        return audio

    import librosa

    logger.debug(f"Resampling {sample_rate} Hz -> {Config.SAMPLE_RATE} Hz")
    return librosa.resample(
        audio, orig_sr=sample_rate, target_sr=Config.SAMPLE_RATE
    ).astype(np.float32)


def generate_spectrogram(audio, sr):
    """
    Generate a magnitude spectrogram from audio using STFT.

    Args:
        audio: Mono audio signal
        sr: Sample rate

    Returns:
        freqs: Frequency bins
        times: Time bins
        spec: Magnitude grid (freq bins × time bins)
    """
    nperseg = Config.FFT_WINDOW_SIZE
    noverlap = int(nperseg * Config.OVERLAP_RATIO)

    if len(audio) < nperseg:
        # Too short for a single analysis window
        freqs = np.fft.rfftfreq(nperseg, d=1.0 / sr)
        return freqs, np.zeros(0), np.zeros((len(freqs), 0), dtype=np.float32)

    freqs, times, spec = signal.spectrogram(
        audio,
        fs=sr,
        window="hann",
        nperseg=nperseg,
        noverlap=noverlap,
        detrend=False,
        scaling="spectrum",
        mode="magnitude",
    )

    logger.debug(
        f"Spectrogram: {spec.shape} (freq bins × time bins), "
        f"max frequency {freqs[-1]:.0f} Hz"
    )

    return freqs, times, spec


def band_thresholds(spec):
    """Per-frame, per-band magnitude floor: band mean × BAND_THRESHOLD_RATIO."""
    threshold = np.full(spec.shape, np.inf, dtype=np.float64)
    n_bins = spec.shape[0]
    for low, high in Config.BANDS:
        high = min(high, n_bins)
        if low >= high:
            continue
        band_mean = spec[low:high].mean(axis=0, keepdims=True)
        threshold[low:high] = band_mean * Config.BAND_THRESHOLD_RATIO
    return threshold


def loudness_floor(spec):
    """
    Per-frame floor relative to the loudest bin nearby in time.

    Bins quieter than PEAK_RELATIVE_THRESHOLD × the strongest bin within
    PEAK_TIME_RADIUS frames are background, so noise between a few loud
    tones does not fill the per-frame peak budget.
    """
    frame_max = spec[: Config.MAX_FREQ_BIN + 1].max(axis=0)
    nearby_max = maximum_filter1d(
        frame_max, size=2 * Config.PEAK_TIME_RADIUS + 1, mode="constant", cval=0.0
    )
    return nearby_max * Config.PEAK_RELATIVE_THRESHOLD


def _held_from_earlier(candidates):
    """True where the same tone (±1 bin) was a candidate in the previous
    PEAK_TIME_RADIUS frames."""
    near = maximum_filter1d(candidates.astype(np.uint8), size=3, axis=0, mode="constant")
    near = near > 0
    held = np.zeros_like(candidates)
    for lag in range(1, Config.PEAK_TIME_RADIUS + 1):
        held[:, lag:] |= near[:, :-lag]
    return held


def find_peak_mask(spec):
    """
    Find local maxima (peaks) in the spectrogram.
    This creates the "constellation map" - the sparse set of points.

    A bin is a candidate when it is the loudest of its frame's frequency
    neighborhood, within PEAK_PLATEAU_TOLERANCE of the maximum of its
    (frequency, time) neighborhood, louder than the silence floor, louder
    than its band's adaptive threshold in the same frame, and not drowned
    out by the loudest bin of the surrounding frames. A held tone stays a
    candidate for as long as it lasts; only its first frame is a peak.
    Every rule looks at the frame's neighborhood only, never at the whole
    recording.

    Args:
        spec: Magnitude spectrogram (freq bins × time bins)

    Returns:
        mask: Boolean array, True at peak positions
    """
    if spec.size == 0:
        return np.zeros(spec.shape, dtype=bool)

    size = (2 * Config.PEAK_FREQ_RADIUS + 1, 2 * Config.PEAK_TIME_RADIUS + 1)
    local_max = maximum_filter(spec, size=size, mode="constant", cval=0.0)
    freq_max = maximum_filter(
        spec, size=(2 * Config.PEAK_FREQ_RADIUS + 1, 1), mode="constant", cval=0.0
    )

    candidates = spec == freq_max
    candidates &= spec >= local_max * (1.0 - Config.PEAK_PLATEAU_TOLERANCE)
    candidates &= spec > Config.MIN_MAGNITUDE
    candidates &= spec >= band_thresholds(spec)
    candidates &= spec >= loudness_floor(spec)[np.newaxis, :]
    candidates[Config.MAX_FREQ_BIN + 1 :, :] = False

    mask = candidates & ~_held_from_earlier(candidates)

    # Density control: keep the strongest peaks of each frame
    for time_idx in np.flatnonzero(mask.sum(axis=0) > Config.MAX_PEAKS_PER_FRAME):
        column = mask[:, time_idx]
        freq_idx = np.flatnonzero(column)
        # stable sort keeps the lower bin on equal magnitude
        order = np.argsort(-spec[freq_idx, time_idx], kind="stable")
        column[freq_idx[order[Config.MAX_PEAKS_PER_FRAME :]]] = False

    return mask


def iter_spectrogram_peaks(spec):
    """Yield Peaks of a spectrogram in (time, frequency) order."""
    mask = find_peak_mask(spec)
    for time_idx in range(mask.shape[1]):
        for freq_idx in np.flatnonzero(mask[:, time_idx]):
            yield Peak(int(time_idx), int(freq_idx), float(spec[freq_idx, time_idx]))


def compute_spectrogram(samples, sample_rate, channels=1):
    """
    PCM -> mono audio at the target rate -> spectrogram.

    Returns:
        audio, freqs, times, spec
    """
    audio = prepare_samples(samples, channels)
    audio = resample_if_needed(audio, sample_rate)
    freqs, times, spec = generate_spectrogram(audio, Config.SAMPLE_RATE)
    return audio, freqs, times, spec


def extract_peaks(samples, sample_rate, channels=1):
    """
    Convert PCM samples into a lazy sequence of spectral peaks.

    Input is validated eagerly; the returned generator is ordered by time
    offset, then frequency bin, and can only be consumed once. Silence or
    audio shorter than one analysis window yields no peaks.

    Args:
        samples: PCM samples (see prepare_samples)
        sample_rate: Sample rate of the input in Hz
        channels: Number of channels in the input

    Returns:
        Generator of Peak(time_offset, frequency_bin, magnitude)
    """
    _, _, _, spec = compute_spectrogram(samples, sample_rate, channels)
    return iter_spectrogram_peaks(spec)

