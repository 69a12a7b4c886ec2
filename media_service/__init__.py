"""Media processing service: image conversion, waveform peaks and batch archives."""

__version__ = "0.1.0"
