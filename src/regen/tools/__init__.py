"""Running external update tools."""
