"""Portfolio accounting engine: positions, transactions and valuation."""
