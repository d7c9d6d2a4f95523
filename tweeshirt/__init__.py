"""Order configuration & submission service for custom printed t-shirts."""
