"""Fitting y = exp(a x^2 + b x + c) by nonlinear least squares."""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field

import numpy as np

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)


@dataclass
class FitResult:
    """Outcome of a fit: parameters, residual sum of squares and per-iteration history.

    Each history entry is ``(cost, update, params)``: the cost before the update,
    the update applied and the parameters after it.
    """

    params: np.ndarray
    cost: float
    iterations: int
    history: list = field(default_factory=list)


def model(params, x):
    """Evaluate exp(a x^2 + b x + c)."""
    a, b, c = params
    x = np.asarray(x, dtype=float)
    with np.errstate(over="ignore"):
        return np.exp(a * x * x + b * x + c)


def make_samples(params=TRUE_PARAMS, count: int = 100, sigma: float = 1.0, seed=None):
    """Samples at x = i/100 with Gaussian noise of standard deviation sigma^2."""
    if count < 0:
        raise ValueError("count must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(count) / 100.0
    y = model(params, x) + rng.normal(0.0, sigma * sigma, size=count)
    return x, y


def _linearize(params, x, y):
    pred = model(params, x)
    err = y - pred
    jac = -np.column_stack((x * x * pred, x * pred, pred))
    return err, jac


def _cost(params, x, y) -> float:
    with np.errstate(invalid="ignore"):
        err = y - model(params, x)
        return float(err @ err)


def _prepare(x, y, initial):
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError("x and y must have the same shape")
    return x, y, np.array(initial, dtype=float).reshape(3)


def gauss_newton(x, y, initial=INITIAL_PARAMS, iterations: int = 100, sigma: float = 1.0) -> FitResult:
    """Plain Gauss-Newton; stops when the cost no longer decreases."""
    x, y, params = _prepare(x, y, initial)
    weight = 1.0 / (sigma * sigma)
    last_cost = 0.0
    history = []
    for iteration in range(iterations):
        err, jac = _linearize(params, x, y)
        h = weight * jac.T @ jac
        b = -weight * jac.T @ err
        cost = float(err @ err)
        try:
            dx = np.linalg.solve(h, b)
        except np.linalg.LinAlgError:
            break
        if np.isnan(dx).any():
            break
        if iteration > 0 and cost >= last_cost:
            break
        params = params + dx
        last_cost = cost
        history.append((cost, dx, params.copy()))
    return FitResult(params, _cost(params, x, y), len(history), history)


def levenberg_marquardt(
    x, y, initial=INITIAL_PARAMS, iterations: int = 50, sigma: float = 1.0
) -> FitResult:
    """Levenberg-Marquardt with an adaptive damping factor."""
    x, y, params = _prepare(x, y, initial)
    weight = 1.0 / (sigma * sigma)

    def system(p):
        err, jac = _linearize(p, x, y)
        return err, weight * jac.T @ jac, -weight * jac.T @ err

    err, h, b = system(params)
    chi2 = weight * float(err @ err)
    damping = 1e-5 * float(np.max(np.diag(h))) if x.size else 0.0
    factor = 2.0
    history = []
    for _ in range(iterations):
        accepted = None
        for _attempt in range(10):
            try:
                dx = np.linalg.solve(h + damping * np.eye(3), b)
            except np.linalg.LinAlgError:
                damping, factor = damping * factor, factor * 2.0
                continue
            candidate = params + dx
            new_chi2 = weight * _cost(candidate, x, y)
            predicted = float(dx @ (damping * dx + b))
            rho = (chi2 - new_chi2) / predicted if predicted > 0 else -1.0
            if rho > 0 and np.isfinite(new_chi2):
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                factor = 2.0
                accepted = (dx, candidate)
                break
            damping, factor = damping * factor, factor * 2.0
        if accepted is None:
            break
        dx, params = accepted
        history.append((chi2 / weight, dx, params.copy()))
        err, h, b = system(params)
        chi2 = weight * float(err @ err)
        if np.linalg.norm(dx) <= 1e-12 * (np.linalg.norm(params) + 1e-12):
            break
    return FitResult(params, _cost(params, x, y), len(history), history)


def _format(values) -> str:
    return " ".join(f"{v:g}" for v in values)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fit y = exp(ax^2+bx+c) to noisy samples.")
    parser.add_argument(
        "--method", choices=("gauss-newton", "levenberg-marquardt"), default="gauss-newton"
    )
    parser.add_argument("--count", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args(argv)

    x, y = make_samples(TRUE_PARAMS, args.count, args.sigma, args.seed)
    start = time.perf_counter()
    if args.method == "gauss-newton":
        result = gauss_newton(x, y, INITIAL_PARAMS, 100, args.sigma)
    else:
        result = levenberg_marquardt(x, y, INITIAL_PARAMS, 50, args.sigma)
    elapsed = time.perf_counter() - start

    for cost, update, params in result.history:
        print(
            f"total cost: {cost:g}, \t\tupdate: {_format(update)}"
            f"\t\testimated params: {params[0]:g},{params[1]:g},{params[2]:g}"
        )
    print(f"solve time cost = {elapsed:g} seconds. ")
    a, b, c = result.params
    print(f"estimated abc = {a:g}, {b:g}, {c:g}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())