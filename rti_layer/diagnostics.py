from __future__ import annotations

import numpy as np
from typing import Dict, Any, Tuple

from .model import TimeSeries


def aligned_residuals(model: TimeSeries, reference: TimeSeries) -> Tuple[np.ndarray, np.ndarray]:
    """
    Residuals model - reference on the shorter curve's samples, pairing
    sample i of the shorter curve with sample round(i * n_long / n_short)
    of the longer one (the pairing used by the fit objective).
    """
    n_m, n_r = len(model), len(reference)
    if n_m > n_r:
        idx = np.floor(np.arange(n_r) * (n_m / n_r) + 0.5).astype(int)
        return reference.t, model.values[idx] - reference.values
    idx = np.floor(np.arange(n_m) * (n_r / n_m) + 0.5).astype(int)
    return model.t, model.values - reference.values[idx]


def residual_summary(model: TimeSeries, reference: TimeSeries) -> Dict[str, Any]:
    """
    Goodness-of-fit summary of a fitted curve.

    Parameters
    ----------
    model : TimeSeries
        Fitted curve (forward run or characteristic curve).
    reference : TimeSeries
        Curve it was fitted to (probe curve or measured data).

    Returns
    -------
    dict
        Residual moments, and the peak time and height of both curves.
    """
    t, resid = aligned_residuals(model, reference)
    resid = resid[1:]
    t_pk_m, c_pk_m = model.peak()
    t_pk_r, c_pk_r = reference.peak()
    mse = float(np.mean(resid ** 2)) if resid.size else 0.0

    return {
        "n": int(resid.size),
        "mse": mse,
        "rmse": float(np.sqrt(mse)),
        "bias": float(np.mean(resid)) if resid.size else 0.0,
        "max_abs": float(np.max(np.abs(resid))) if resid.size else 0.0,
        "peak_time_model": t_pk_m,
        "peak_time_reference": t_pk_r,
        "peak_model": c_pk_m,
        "peak_reference": c_pk_r,
        "peak_ratio": float(c_pk_m / c_pk_r) if c_pk_r != 0 else np.nan,
        "relative_rmse": float(np.sqrt(mse) / abs(c_pk_r)) if c_pk_r != 0 else np.nan,
    }
