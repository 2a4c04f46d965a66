"""Domain value types: identifiers, names, and class descriptors."""
