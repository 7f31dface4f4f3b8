import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt


def plot_monthly_trend(trend, key, outpath, title):
    """Stacked qj bars per month, one colour per row of `trend` (m1..m12 columns)."""
    months = [c for c in trend.columns if c.startswith("m") and c[1:].isdigit()]
    pivot = trend.set_index(key)[months].T
    pivot.index = [c[1:] for c in months]
    pivot.plot(kind="bar", stacked=True, legend=len(pivot.columns) <= 20)
    plt.title(title)
    plt.xlabel("月")
    plt.ylabel("年交 (元)")
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()
