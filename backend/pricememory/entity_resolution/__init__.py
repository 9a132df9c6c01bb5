"""Entity resolution package: name normalization and tiered catalog matching."""
