"""
Deterministic post-processing of extracted invoices.

Only fills fields that are currently absent, so applying it twice is the
same as applying it once.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN

from ..models.invoice import InvoiceRecord

BELOW_20 = [
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "ten",
    "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen", "seventeen", "eighteen", "nineteen",
]
TENS = ["", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety"]
SCALES = ["", "thousand", "million", "billion", "trillion"]

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}


def _chunk_to_words(num: int) -> str:
    words = []
    if num >= 100:
        words += [BELOW_20[num // 100], "hundred"]
        num %= 100
        if num:
            words.append("and")
    if num >= 20:
        tens = TENS[num // 10]
        words.append(f"{tens}-{BELOW_20[num % 10]}" if num % 10 else tens)
    elif num > 0:
        words.append(BELOW_20[num])
    return " ".join(words)


def _whole_units(value) -> int | None:
    try:
        return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))
    except (InvalidOperation, ValueError):
        return None


def number_to_words(value) -> str:
    """
    English words for the whole-unit part of value (short scale, up to trillions).

    Magnitudes past the last scale word come back as plain digits.

    >>> number_to_words(1234.5)
    'one thousand two hundred and thirty-four'
    """
    n = _whole_units(value) if value is not None else None
    if n is None:
        return ""
    if n == 0:
        return "zero"

    prefix = ""
    if n < 0:
        prefix, n = "minus ", -n
    if n >= 1000 ** len(SCALES):
        return prefix + str(n)

    parts = []
    scale = 0
    while n > 0:
        chunk = n % 1000
        if chunk:
            suffix = SCALES[scale]
            parts.insert(0, _chunk_to_words(chunk) + (f" {suffix}" if suffix else ""))
        n //= 1000
        scale += 1
    return prefix + " ".join(parts)


def currency_symbol(currency: str | None) -> str:
    if not currency:
        return ""
    code = str(currency).upper()
    return CURRENCY_SYMBOLS.get(code, f"{code} ")


def amount_in_words(amount, currency: str | None) -> str:
    words = number_to_words(amount)
    words = words[:1].upper() + words[1:]
    return f"{words} only ({currency_symbol(currency)}{float(amount):.2f})"


def enrich_invoice_data(record: InvoiceRecord) -> InvoiceRecord:
    """
    Fill derived fields on a copy of the record:
    - amount_in_words / tax_amount_in_words from total_amount / tax_amount
    - sgst/cgst/igst totals summed from tax_breakdown when missing
    """
    updates = {}

    if not record.amount_in_words and record.total_amount is not None:
        updates["amount_in_words"] = amount_in_words(record.total_amount, record.currency)

    if not record.tax_amount_in_words and record.tax_amount is not None:
        updates["tax_amount_in_words"] = amount_in_words(record.tax_amount, record.currency)

    missing = [f for f in ("sgst_amount", "cgst_amount", "igst_amount") if getattr(record, f) is None]
    if missing and record.tax_breakdown:
        totals = {"sgst_amount": 0.0, "cgst_amount": 0.0, "igst_amount": 0.0}
        for entry in record.tax_breakdown:
            if entry.amount is None:
                continue
            tax_type = (entry.tax_type or "").upper()
            if "SGST" in tax_type:
                totals["sgst_amount"] += entry.amount
            elif "CGST" in tax_type:
                totals["cgst_amount"] += entry.amount
            elif "IGST" in tax_type:
                totals["igst_amount"] += entry.amount
        for field in missing:
            if totals[field]:
                updates[field] = round(totals[field], 2)

    return record.model_copy(update=updates) if updates else record
