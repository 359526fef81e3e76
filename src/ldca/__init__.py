"""Leveraged dollar-cost-averaging calculator and budget reporting."""
