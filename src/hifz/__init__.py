from hifz.consts import VERSION

__version__ = VERSION
