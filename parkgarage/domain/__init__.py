"""Domain layer: models, strategies and aggregates"""
