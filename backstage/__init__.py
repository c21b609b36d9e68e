"""backstage: chat bot backend built around cached entity registries."""

__version__ = "0.1.0"
