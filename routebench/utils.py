"""
Utility functions for routebench.
"""

import json
import math
import statistics
from pathlib import Path
from typing import Any, Optional
from datetime import datetime, timezone
from dataclasses import dataclass

import numpy as np


@dataclass
class StatisticalResult:
    """Statistical summary of a sample."""

    mean: float
    std_dev: float


def calculate_statistics(values: list[float]) -> StatisticalResult:
    """
    Mean and standard deviation of a list of values.

    The standard deviation is the sample (N-1) deviation and is 0.0
    for fewer than two values.

    Args:
        values: List of numeric values

    Returns:
        StatisticalResult; both are 0.0 for an empty list
    """
    if not values:
        return StatisticalResult(mean=0.0, std_dev=0.0)

    return StatisticalResult(
        mean=statistics.fmean(values),
        std_dev=statistics.stdev(values) if len(values) > 1 else 0.0,
    )


def z_scores(values: list[float]) -> list[float]:
    """
    Standardize values against their own population mean and deviation.

    A zero deviation is replaced by 1, so a constant set maps to zeros.

    Args:
        values: Values measured in one unit

    Returns:
        z-score of each value, in input order
    """
    if not values:
        return []

    arr = np.asarray(values, dtype=float)
    std = float(arr.std()) or 1.0
    return [float(z) for z in (arr - arr.mean()) / std]


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Approximate token count: ceiling of characters per token."""
    return math.ceil(len(text) / chars_per_token)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def mask_api_key(api_key: Optional[str]) -> str:
    """Masked display form of a stored credential."""
    if not api_key:
        return ""
    return f"sk-or-v1-{'*' * 20}"


def save_results(
    results: Any,
    output_path: Path,
) -> Path:
    """
    Save results as JSON.

    Args:
        results: JSON-serializable results
        output_path: Path to save to

    Returns:
        Path to saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(results, f, indent=2, default=str)

    return output_path


def load_results(input_path: Path) -> Any:
    """
    Load results from a JSON file.

    Args:
        input_path: Path to load from

    Returns:
        Decoded JSON document
    """
    with open(input_path, "r", encoding="utf-8") as f:
        return json.load(f)


def format_duration(seconds: float) -> str:
    """
    Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    else:
        minutes = int(seconds // 60)
        return f"{minutes}m {seconds % 60:.1f}s"


def format_cost(cost: float) -> str:
    """
    Format cost to human-readable string.

    Args:
        cost: Cost in dollars

    Returns:
        Formatted string
    """
    if cost < 0.01:
        return f"${cost:.6f}"
    elif cost < 1.0:
        return f"${cost:.4f}"
    else:
        return f"${cost:.2f}"


def truncate_text(text: str, max_length: int = 500) -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length]
