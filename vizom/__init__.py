"""Vizom - AI-assisted chart generation backed by a resilient DeepSeek client."""
