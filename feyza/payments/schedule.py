"""
Repayment math: duration fees, interest, presets and installment dates.

All functions are pure. Money is rounded up to whole units where a fee,
interest or payment amount is quoted, and installment amounts are split
in cents so that a schedule always sums exactly to the loan total.
"""
import calendar
import math
from datetime import date, timedelta
from decimal import Decimal, ROUND_DOWN

FREQUENCY_WEEKS = {
    "weekly": 1,
    "biweekly": 2,
    "semimonthly": 2,
    "monthly": 4,
}

LOAN_FREQUENCIES = ("weekly", "biweekly", "monthly")

# (max total weeks, fee percent, label)
DURATION_FEE_TIERS = (
    (4, 0, "No Fee"),
    (8, 2, "2% Fee"),
    (12, 4, "4% Fee"),
    (24, 6, "6% Fee"),
    (52, 8, "8% Fee"),
    (math.inf, 10, "10% Fee"),
)


def frequency_weeks(frequency):
    return FREQUENCY_WEEKS.get(frequency, 4)


def duration_fee_tier(total_weeks):
    for index, (max_weeks, percent, label) in enumerate(DURATION_FEE_TIERS):
        if total_weeks <= max_weeks:
            return index, percent, label
    return len(DURATION_FEE_TIERS) - 1, 10, "10% Fee"


def calculate_duration_fee(principal, frequency, installments):
    total_weeks = frequency_weeks(frequency) * installments
    _, percent, label = duration_fee_tier(total_weeks)
    return {
        "fee_percent": percent,
        "fee_amount": math.ceil(principal * percent / 100),
        "total_weeks": total_weeks,
        "label": label,
    }


def calculate_interest(principal, interest_rate, interest_type, frequency, installments):
    if not interest_rate or interest_rate <= 0:
        return 0
    term_months = frequency_weeks(frequency) * installments / 4
    if interest_type == "compound":
        return math.ceil(principal * (1 + interest_rate / 100 / 12) ** term_months - principal)
    return math.ceil(principal * (interest_rate / 100) * (term_months / 12))


def calculate_total(principal, interest_rate, interest_type, frequency, installments, include_duration_fee=True):
    interest = calculate_interest(principal, interest_rate, interest_type, frequency, installments)
    fee = calculate_duration_fee(principal, frequency, installments)
    fee_amount = fee["fee_amount"] if include_duration_fee else 0
    total = principal + interest + fee_amount

    result = {
        "principal": principal,
        "interest_amount": interest,
        "duration_fee": fee_amount,
        "duration_fee_percent": fee["fee_percent"] if include_duration_fee else 0,
        "total_amount": total,
        "payment_amount": math.ceil(total / installments),
        "total_weeks": fee["total_weeks"],
        "savings": None,
    }

    if include_duration_fee and fee["fee_percent"] > 0:
        index, _, _ = duration_fee_tier(fee["total_weeks"])
        lower_max_weeks, lower_percent, _ = DURATION_FEE_TIERS[index - 1]
        faster_payments = math.ceil(lower_max_weeks / frequency_weeks(frequency))
        saved = fee_amount - math.ceil(principal * lower_percent / 100)
        if saved > 0 and faster_payments >= 1:
            result["savings"] = {"faster_payments": faster_payments, "saved_amount": saved}
    return result


_PRESET_BANDS = (
    (100, [("weekly", 1, "Pay in full (1 week)", False),
           ("weekly", 2, "2 weekly payments", True),
           ("weekly", 4, "4 weekly payments", False)]),
    (500, [("weekly", 2, "2 weekly payments", False),
           ("weekly", 4, "4 weekly payments", True),
           ("biweekly", 4, "4 bi-weekly payments", False),
           ("monthly", 3, "3 monthly payments", False)]),
    (2000, [("biweekly", 4, "4 bi-weekly payments", False),
            ("monthly", 3, "3 monthly payments", True),
            ("monthly", 4, "4 monthly payments", False),
            ("monthly", 6, "6 monthly payments", False)]),
    (10000, [("monthly", 3, "3 monthly payments", False),
             ("monthly", 6, "6 monthly payments", True),
             ("monthly", 9, "9 monthly payments", False),
             ("monthly", 12, "12 monthly payments", False)]),
    (math.inf, [("monthly", 6, "6 monthly payments", False),
                ("monthly", 12, "12 monthly payments", True),
                ("monthly", 18, "18 monthly payments", False),
                ("monthly", 24, "24 monthly payments", False)]),
)


def repayment_presets(amount, interest_rate=0, include_duration_fees=True):
    """Suggested (frequency, installments) options for a loan amount."""
    if not amount or amount <= 0:
        return []
    for ceiling, options in _PRESET_BANDS:
        if amount <= ceiling:
            break

    presets = []
    for frequency, installments, label, recommended in options:
        # 4 weekly payments only from 50; 3 monthly only from 200 in the 100-500 band
        if ceiling == 100 and installments == 4 and amount < 50:
            continue
        if ceiling == 500 and frequency == "monthly" and amount < 200:
            continue
        preset = {"frequency": frequency, "installments": installments, "label": label, "recommended": recommended}
        if include_duration_fees:
            totals = calculate_total(amount, interest_rate, "simple", frequency, installments)
            preset.update({
                "payment_amount": totals["payment_amount"],
                "duration_fee": totals["duration_fee"],
                "duration_fee_percent": totals["duration_fee_percent"],
                "total_amount": totals["total_amount"],
                "total_weeks": totals["total_weeks"],
            })
        else:
            preset["payment_amount"] = math.ceil(amount / installments)
        presets.append(preset)
    return presets


def add_months(start, months):
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_dates(start_date, frequency, installments):
    if frequency == "monthly":
        return [add_months(start_date, i) for i in range(installments)]
    step = timedelta(weeks=frequency_weeks(frequency))
    return [start_date + step * i for i in range(installments)]


def split_amount(total, installments):
    """Equal installments in cents; the remainder lands on the last one."""
    total = Decimal(str(total)).quantize(Decimal("0.01"))
    base = (total / installments).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    amounts = [base] * installments
    amounts[-1] = total - base * (installments - 1)
    return amounts


def build_schedule(start_date, frequency, installments, total):
    """Rows for payment_schedule; the first installment is due on start_date."""
    if installments < 1:
        raise ValueError("installments must be at least 1")
    return [
        {"due_date": due.isoformat(), "amount": float(amount), "is_paid": False, "status": "pending"}
        for due, amount in zip(due_dates(start_date, frequency, installments), split_amount(total, installments))
    ]
