"""HTTP service exposing the Concrete Passport registry."""
