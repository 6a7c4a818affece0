from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

try:
    __version__ = version("madrasa")
except PackageNotFoundError:
    # Running from a checkout without the package installed.
    __version__ = "0.0.0"
