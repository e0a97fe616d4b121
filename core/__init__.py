# Path: core/__init__.py
# Purpose: Package initializer for core application layer.
# Layer: core.
# Details: Aggregates subpackages for embedders, vector index, concepts, expansion, metrics, search and models.
