"""Personal expense tracking: expenses, categories and a monthly budget."""

__version__ = "1.0.0"
