"""Calendar provider integrations."""
