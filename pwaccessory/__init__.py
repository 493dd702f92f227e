# pwAccessory Module
# -*- coding: utf-8 -*-
"""
 Python module to present Tesla Energy Gateways and Powerwalls as accessories

 For more information see README.md

 Features
    * Works with one or more local Tesla Energy Gateways (Powerwall 2, +, 3)
    * Logs in with customer credentials and refreshes the token every 24 hours
    * Reconnects with exponential backoff (15s doubling to 60s)
    * Polls seven gateway resources concurrently every 15s, all or nothing
    * Normalises gateway and Powerwall data into per-serial snapshots
    * Derives power flow, charging, battery level and low battery state
    * Certificate verification is disabled for gateway sessions only

 Classes
    PowerwallPlatform(config, accessories, settings, fetcher)

 Functions
    set_debug(toggle, color)  # Enable verbose logging
    normalize(bundle, config) # Reduce one resource bundle to DeviceSnapshots
    scale_value(value, smin, smax, tmin, tmax)

 Requirements
    This module requires the following modules: requests, pydantic, pydantic-settings
    pip install requests pydantic pydantic-settings
"""
import logging
import sys

version_tuple = (0, 1, 0)
version = __version__ = '%d.%d.%d' % version_tuple

from pwaccessory.accessories import AccessoryRegistry, LoggingAccessoryRegistry
from pwaccessory.config import PlatformConfig, Settings
from pwaccessory.models import ChargingState, DerivedState, DeviceSnapshot, DeviceType
from pwaccessory.normalizer import normalize
from pwaccessory.platform import PowerwallPlatform
from pwaccessory.scaler import scale_value

log = logging.getLogger(__name__)
log.debug('%s version %s', __name__, __version__)
log.debug('Python %s on %s', sys.version, sys.platform)


def set_debug(toggle=True, color=True):
    """Enable verbose logging"""
    if toggle:
        if color:
            logging.basicConfig(format='\x1b[31;1m%(levelname)s:%(name)s:%(message)s\x1b[0m', level=logging.DEBUG)
        else:
            logging.basicConfig(format='%(levelname)s:%(name)s:%(message)s', level=logging.DEBUG)
        log.setLevel(logging.DEBUG)
        log.debug("%s [%s]\n" % (__name__, __version__))
    else:
        log.setLevel(logging.NOTSET)


__all__ = [
    'AccessoryRegistry', 'LoggingAccessoryRegistry', 'PlatformConfig', 'Settings', 'ChargingState',
    'DerivedState', 'DeviceSnapshot', 'DeviceType', 'normalize', 'PowerwallPlatform', 'scale_value',
    'set_debug', 'version', '__version__',
]
