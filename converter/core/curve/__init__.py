"""
Bonding Curve Quoting

Provides the price side of a conversion:
- PriceOracle: evaluates the curve against fresh on-chain state, retrying reads
- apply_tribute: entry/exit tribute arithmetic
- build_quote / QuoteAssembler: tribute-adjusted estimate plus slippage bound

Usage:
    from converter.core.curve import PriceOracle, QuoteAssembler

    oracle = PriceOracle(market, LocalBancorFormula(), registry)
    assembler = QuoteAssembler(oracle)

    await assembler.on_input_changed(Amount(10**18))
    quote = assembler.quote   # None until the oracle publishes
"""

from .models import (
    PCT_BASE,
    PPM,
    ConversionDirection,
    ConversionQuote,
    ConversionRequest,
    CurveParameters,
    CurvePrice,
    EditingField,
    MarketSnapshot,
)

from .tribute import (
    apply_tribute,
    tribute_of,
    tribute_pct,
)

from .formula import (
    CurveFormula,
    FormulaError,
    LocalBancorFormula,
    purchase_return,
    sale_return,
)

from .oracle import (
    OracleState,
    PriceOracle,
)

from .quotes import (
    QuoteAssembler,
    apply_slippage,
    build_quote,
)

__all__ = [
    # Models
    "PCT_BASE",
    "PPM",
    "ConversionDirection",
    "ConversionQuote",
    "ConversionRequest",
    "CurveParameters",
    "CurvePrice",
    "EditingField",
    "MarketSnapshot",
    # Tribute
    "apply_tribute",
    "tribute_of",
    "tribute_pct",
    # Formula
    "CurveFormula",
    "FormulaError",
    "LocalBancorFormula",
    "purchase_return",
    "sale_return",
    # Oracle
    "OracleState",
    "PriceOracle",
    # Quotes
    "QuoteAssembler",
    "apply_slippage",
    "build_quote",
]
