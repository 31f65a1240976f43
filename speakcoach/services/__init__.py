"""Services: persistence, analysis providers, processing and aggregation."""
