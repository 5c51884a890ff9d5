"""orderscan: chunked order-book event collector for EVM chains."""

__version__ = "0.1.0"
