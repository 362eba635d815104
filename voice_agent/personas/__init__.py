"""Bundled persona definitions (one YAML file per voice name)."""
