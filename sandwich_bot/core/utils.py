"""Formatting helpers for status output."""


def format_sol(amount: float) -> str:
    """Format a SOL amount."""
    return f"{amount:.6f} SOL"


def format_usd(amount: float) -> str:
    """Format USD amount with appropriate precision."""
    if abs(amount) >= 1000:
        return f"${amount:,.0f}"
    return f"${amount:.2f}"


def format_percent(percent: float) -> str:
    """Format a value already expressed in percent."""
    return f"{percent:.2f}%"


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers, returning default if denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


def roi_percent(net_profit_sol: float, sol_price: float, capital_usd: float) -> float:
    """Return on capital in percent, with profit converted to USD."""
    return safe_divide(net_profit_sol * sol_price, capital_usd) * 100


def format_status_line(stats, sol_price: float, capital_usd: float, open_positions: int) -> str:
    """One-line summary of the running totals."""
    return (
        f"Net {format_usd(stats.net_profit * sol_price)} ({format_sol(stats.net_profit)}) | "
        f"ROI {format_percent(roi_percent(stats.net_profit, sol_price, capital_usd))} | "
        f"Success {format_percent(stats.success_rate)} "
        f"({stats.successful_sandwiches}/{stats.executed_sandwiches}) | "
        f"Opportunities {stats.total_opportunities} | Open {open_positions}"
    )
