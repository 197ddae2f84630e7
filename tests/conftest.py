"""
Shared fixtures: synthetic S&P 500 style financial tables.
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


def make_financials(n_rows=40, years=(2021, 2022, 2023), seed=42, relative=False):
    """
    Build a table shaped like the input spreadsheet.

    Market cap is roughly proportional to revenue and EBIT so the models
    have something to learn. All values are strictly positive.
    """
    rng = np.random.default_rng(seed)
    periods = ["PrevYear", "NextYear"] if relative else [str(y) for y in years]

    base_revenue = rng.lognormal(mean=22, sigma=0.8, size=n_rows)
    data = {
        "Ticker": [f"T{i:03d}" for i in range(n_rows)],
        "Sector": rng.choice(["Tech", "Energy", "Health"], size=n_rows),
    }

    for step, period in enumerate(periods):
        growth = 1 + 0.05 * step
        revenue = base_revenue * growth * rng.uniform(0.9, 1.1, n_rows)
        ebit = revenue * rng.uniform(0.05, 0.25, n_rows)
        data[f"Revenue.{period}"] = revenue
        data[f"Cash.{period}"] = revenue * rng.uniform(0.05, 0.3, n_rows)
        data[f"EBIT.{period}"] = ebit
        data[f"Liabilities.{period}"] = revenue * rng.uniform(0.3, 1.2, n_rows)
        data[f"Market.Cap.{period}"] = (2 * revenue + 15 * ebit) * rng.uniform(0.8, 1.2, n_rows)

    return pd.DataFrame(data)


@pytest.fixture
def financials():
    """40 companies, three years, no gaps."""
    return make_financials()
