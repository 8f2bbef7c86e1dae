"""SpecFlow core - state consistency and schema migration for SpecFlow projects."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed
