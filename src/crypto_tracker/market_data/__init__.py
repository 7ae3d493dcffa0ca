"""Market-data pipeline: symbol catalog, baselines, push feed and dispatch."""
