"""
Monthly lending figures for a business lender.

Loans count towards the month they were created in; repayments count towards
the month the lender confirmed them (falling back to the payment date).
"""
import calendar

import pandas as pd

MONTHS = range(1, 13)


def _monthly_sum(rows, year):
    """``rows`` are (timestamp, amount) pairs; returns a 12-row Series indexed by month."""
    if not rows:
        return pd.Series(0.0, index=MONTHS)
    df = pd.DataFrame(rows, columns=["at", "amount"])
    df["at"] = pd.to_datetime(df["at"], utc=True, errors="coerce", format="ISO8601")
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    df = df[df["at"].dt.year == year]
    return df.groupby(df["at"].dt.month)["amount"].sum().reindex(MONTHS, fill_value=0.0)


def _monthly_count(rows, year):
    if not rows:
        return pd.Series(0, index=MONTHS)
    at = pd.to_datetime(pd.Series([r[0] for r in rows]), utc=True, errors="coerce", format="ISO8601")
    at = at[at.dt.year == year]
    return at.dt.month.value_counts().reindex(MONTHS, fill_value=0)


def monthly_analytics(loans, payments, year):
    """
    Aggregate ``loans`` (lent) and confirmed ``payments`` (repaid) into
    twelve monthly buckets for ``year``.
    """
    lent_rows = [(l.get("created_at"), l.get("amount")) for l in loans]
    repaid_rows = [(p.get("confirmation_date") or p.get("payment_date"), p.get("amount")) for p in payments]

    frame = pd.DataFrame({
        "lent": _monthly_sum(lent_rows, year),
        "repaid": _monthly_sum(repaid_rows, year),
        "loans": _monthly_count(lent_rows, year),
    })
    frame["net"] = frame["lent"] - frame["repaid"]

    months = [
        {
            "month": int(month),
            "label": calendar.month_abbr[int(month)],
            "lent": round(float(row["lent"]), 2),
            "repaid": round(float(row["repaid"]), 2),
            "net": round(float(row["net"]), 2),
            "loans": int(row["loans"]),
        }
        for month, row in frame.iterrows()
    ]
    statuses = pd.Series([l.get("status") for l in loans], dtype="object").value_counts()
    return {
        "year": year,
        "months": months,
        "totals": {
            "lent": round(float(frame["lent"].sum()), 2),
            "repaid": round(float(frame["repaid"].sum()), 2),
            "loans": int(frame["loans"].sum()),
        },
        "loans_by_status": {str(k): int(v) for k, v in statuses.items()},
    }


def analytics_frame(result):
    """Spreadsheet-ready frame for the Excel export."""
    df = pd.DataFrame(result["months"])
    df = df[["label", "loans", "lent", "repaid", "net"]].rename(columns={
        "label": "Month",
        "loans": "Loans",
        "lent": "Amount Lent",
        "repaid": "Amount Repaid",
        "net": "Net Outstanding",
    })
    totals = result["totals"]
    df.loc[len(df)] = ["Total", totals["loans"], totals["lent"], totals["repaid"],
                       round(totals["lent"] - totals["repaid"], 2)]
    return df
