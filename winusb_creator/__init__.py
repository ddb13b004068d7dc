"""Create bootable Windows installer USB drives from ISO images."""

from winusb_creator.__version__ import __version__


__all__ = ["__version__"]
