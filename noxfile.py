"""Nox automation for riskgate development tasks."""

from pathlib import Path

import nox

# Default sessions to run
nox.options.sessions = ["lint", "test"]


@nox.session(python=["3.11", "3.12", "3.13"])
def test(session: nox.Session) -> None:
    """Run the test suite with coverage."""
    session.install("-e", ".[dev]")
    session.run(
        "pytest",
        "--cov=riskgate",
        "--cov-report=term-missing",
        "--cov-fail-under=70",
        "-q",
        *session.posargs,
    )


@nox.session(python="3.11")
def lint(session: nox.Session) -> None:
    """Run linting with ruff and black."""
    session.install("ruff", "black")
    session.run("ruff", "check", ".")
    session.run("black", "--check", ".")


@nox.session(python="3.11")
def typecheck(session: nox.Session) -> None:
    """Run type checking with mypy."""
    session.install("mypy", "pandas-stubs", "types-PyYAML")
    session.install("-e", ".")
    session.run("mypy", "riskgate")


@nox.session(python=False)
def smoke(session: nox.Session) -> None:
    """Run the backtest CLI end to end on a synthetic parquet file.

    Writes a small trending series under runs/ci_smoke and checks that the
    run artifacts are produced.
    """
    import numpy as np
    import pandas as pd

    root = Path("runs") / "ci_smoke"
    data_dir = root / "ohlcv"
    data_dir.mkdir(parents=True, exist_ok=True)

    dates = pd.date_range(start="2023-01-02", periods=120, freq="B")
    close = 100 + 10 * np.sin(np.linspace(0, 6 * np.pi, len(dates)))
    pd.DataFrame(
        {
            "date": dates,
            "open": close,
            "high": close + 1.0,
            "low": close - 1.0,
            "close": close,
            "volume": 1_000_000,
        }
    ).to_parquet(data_dir / "SMOKE.parquet", index=False)

    out_dir = root / "out"
    session.run(
        "python",
        "-m",
        "riskgate.cli.backtest",
        "--instrument",
        "SMOKE",
        "--data-dir",
        str(data_dir),
        "--fast",
        "5",
        "--slow",
        "20",
        "--out",
        str(out_dir),
    )

    for name in ("results.json", "equity_curve.csv", "trades.csv"):
        if not (out_dir / name).exists():
            session.error(f"Missing artifact: {name}")

    session.log("Smoke test passed!")


@nox.session(python=False)
def clean(session: nox.Session) -> None:
    """Clean up generated files and caches."""
    import shutil

    paths_to_remove = [
        ".pytest_cache",
        ".mypy_cache",
        ".ruff_cache",
        ".coverage",
        "htmlcov",
        ".nox",
        "dist",
        "build",
        "*.egg-info",
    ]

    for pattern in paths_to_remove:
        for path in Path(".").glob(pattern):
            session.log(f"Removing {path}")
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
