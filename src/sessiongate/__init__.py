"""sessiongate - share CliApp instances between concurrent terminal sessions."""

__version__ = "0.1.0"
