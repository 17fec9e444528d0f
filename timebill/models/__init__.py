def format_usd(cents: int) -> str:
    """Format cents as a dollar string: 285000 -> '$2,850.00', -5000 -> '-$50.00'"""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def parse_usd(text: str) -> int | None:
    """Parse a dollar amount string into cents. Returns None on invalid input.

    Accepts formats like '2850', '2850.00', '$2,850.00'.
    """
    text = text.strip().replace("$", "").replace(",", "")
    if not text:
        return None
    try:
        return int(round(float(text) * 100))
    except ValueError:
        return None
