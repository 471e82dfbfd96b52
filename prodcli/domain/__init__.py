"""Domain Layer: value objects, interfaces, events and errors.

Has no dependencies on the core or infrastructure layers.
"""
