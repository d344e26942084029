"""hugolive: live Hugo preview that follows the file being edited."""

__version__ = "0.1.0"
