"""Framework-free domain code: models, configuration, registry, exporter."""
